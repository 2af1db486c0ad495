"""Interfaces of the external lock session and helpers for plugging one in."""
from __future__ import annotations

import logging
import threading
from importlib import import_module
from typing import Any, Callable, Optional, Protocol

from .errors import ConfigurationError
from .models import Credential, DeviceIdentity, SignedTime

LOGGER = logging.getLogger(__name__)


class SessionListener(Protocol):
    """Callbacks a lock session emits while a connection attempt is alive."""

    def on_connection_changed(self, is_connecting: bool, is_connected: bool) -> None: ...

    def on_notification(self, message: bytes) -> None: ...

    def on_lock_status_changed(self, current_state: int, status: int) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class LockSession(Protocol):
    """Stateful secure connection to one accessory, owned outside this package.

    Implementations own the BLE transport and the handshake. Failures are
    raised as exceptions; a factory reset condition must be raised or reported
    as ``DeviceResetRequiredError``.
    """

    def connect(
        self,
        identity: DeviceIdentity,
        credential: Credential,
        *,
        keep_connection: bool,
        listener: SessionListener,
    ) -> None: ...

    def disconnect(self) -> None: ...

    def send_command(self, opcode: int, params: Optional[bytes] = None) -> Optional[bytes]: ...

    def get_lock_state(self) -> Optional[bytes]: ...

    def get_device_settings(self, is_adding: bool = False) -> Any: ...

    def get_firmware_version(self, is_adding: bool = False) -> Any: ...

    def set_signed_time(self, signed_time: SignedTime) -> None: ...

    def clear(self) -> None: ...


class SignedTimeSource(Protocol):
    def get_signed_time(self) -> SignedTime: ...


class SignedTimeProvider:
    """Fetch signed time off-thread and hand it to a session callback."""

    def __init__(self, source: SignedTimeSource) -> None:
        self.source = source

    def get_signed_time(
        self,
        callback: Callable[[SignedTime], None],
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> threading.Thread:
        def _worker() -> None:
            try:
                signed_time = self.source.get_signed_time()
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.error("SignedTimeProvider: failed to get signed time: %s", exc)
                if on_error is not None:
                    on_error(exc)
                return
            LOGGER.debug("SignedTimeProvider: got signed time successfully")
            callback(signed_time)

        thread = threading.Thread(target=_worker, name="signed-time", daemon=True)
        thread.start()
        return thread


SessionFactory = Callable[..., LockSession]


def load_session_factory(path: str) -> SessionFactory:
    """Resolve a ``package.module:callable`` path to a session factory."""
    module_name, sep, attr_name = path.partition(":")
    if not sep or not module_name or not attr_name:
        raise ConfigurationError(f"Session factory {path!r} must look like 'package.module:callable'")
    try:
        module = import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import session factory module {module_name!r}: {exc}") from exc
    try:
        factory = getattr(module, attr_name)
    except AttributeError as exc:
        raise ConfigurationError(f"Module {module_name!r} has no attribute {attr_name!r}") from exc
    if not callable(factory):
        raise ConfigurationError(f"Session factory {path!r} is not callable")
    return factory


__all__ = [
    "LockSession",
    "SessionFactory",
    "SessionListener",
    "SignedTimeProvider",
    "SignedTimeSource",
    "load_session_factory",
]
