"""Translate named host commands into calls against one external lock session."""
from __future__ import annotations

import logging
import string
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Tuple

from .certificates import CertificateProvisioningService
from .decoding import (
    OPCODE_CLOSE,
    OPCODE_OPEN,
    OPCODE_PULL_SPRING,
    describe_command_result,
    describe_value,
)
from .errors import (
    AlreadyConnectedError,
    BridgeClosedError,
    ConfigurationError,
    DeviceResetRequiredError,
    InvalidArgumentError,
    LockBridgeError,
    SessionError,
)
from .models import (
    Command,
    CommandOutcome,
    CommandResult,
    ConnectionState,
    DeviceIdentity,
    HostEvent,
    StructuredError,
)
from .session import LockSession, SignedTimeSource
from .state_machine import ConnectionStateMachine

LOGGER = logging.getLogger(__name__)

INVALID_HEX = "INVALID_HEX"
NOT_IMPLEMENTED = "NOT_IMPLEMENTED"

Job = Callable[[], Any]
PrepareFn = Callable[[Dict[str, Any]], Job]


def identity_from_arguments(arguments: Dict[str, Any]) -> DeviceIdentity:
    """Validate connect arguments and build the device identity."""
    values: Dict[str, str] = {}
    missing = []
    for key in ("serialNumber", "deviceId", "name"):
        raw = arguments.get(key)
        text = "" if raw is None or isinstance(raw, bool) else str(raw).strip()
        if not text:
            missing.append(key)
        values[key] = text
    if missing:
        raise InvalidArgumentError(f"Missing required arguments: {', '.join(missing)}")
    if not values["deviceId"].isdigit():
        raise InvalidArgumentError(f"deviceId must be numeric, got {values['deviceId']!r}")
    return DeviceIdentity(
        serial_number=values["serialNumber"],
        device_id=values["deviceId"],
        name=values["name"],
    )


def _strip_hex_prefix(value: str) -> str:
    cleaned = value.strip()
    if cleaned[:2].lower() == "0x":
        cleaned = cleaned[2:]
    return cleaned


def parse_hex_command(value: Any) -> int:
    """Parse "0x51", "0X51" or "51" into a single opcode byte."""
    if value is None:
        raise InvalidArgumentError("Missing hex command")
    if not isinstance(value, str):
        raise InvalidArgumentError(f"Invalid hex format: {value!r}", code=INVALID_HEX)
    cleaned = _strip_hex_prefix(value)
    if not cleaned or any(ch not in string.hexdigits for ch in cleaned):
        raise InvalidArgumentError(f"Invalid hex format: {value}", code=INVALID_HEX)
    opcode = int(cleaned, 16)
    if opcode > 0xFF:
        raise InvalidArgumentError(f"Hex command out of range (single byte): {value}", code=INVALID_HEX)
    return opcode


def parse_hex_params(value: Any) -> Optional[bytes]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidArgumentError(f"Invalid hex params: {value!r}", code=INVALID_HEX)
    cleaned = _strip_hex_prefix(value).replace(" ", "")
    try:
        return bytes.fromhex(cleaned)
    except ValueError as exc:
        raise InvalidArgumentError(f"Invalid hex params: {value}", code=INVALID_HEX) from exc


def _error_code(exc: BaseException, failure_code: str) -> str:
    if isinstance(exc, DeviceResetRequiredError):
        return exc.code
    if isinstance(exc, SessionError) or not isinstance(exc, LockBridgeError):
        return failure_code
    return exc.code


class SessionBridge:
    """Own one lock session and serve host commands against it.

    Every ``dispatch`` returns a future that resolves exactly once with a
    ``CommandOutcome``. Session work runs on a single worker thread so
    connect, disconnect and sends never overlap; outcomes and host events are
    delivered in order on a single host-facing thread.
    """

    def __init__(
        self,
        session: LockSession,
        provisioning: CertificateProvisioningService,
        *,
        signed_time_source: Optional[SignedTimeSource] = None,
        event_sink: Optional[Callable[[HostEvent], None]] = None,
        keep_connection_default: bool = True,
    ) -> None:
        self.session = session
        self.provisioning = provisioning
        self.signed_time_source = signed_time_source
        self.keep_connection_default = keep_connection_default
        self._event_sink = event_sink
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lock-session")
        self._host = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lock-host")
        self._close_lock = threading.Lock()
        self._closed = False
        self._attempt_lock = threading.Lock()
        self._attempt_active = False
        self.state_machine = ConnectionStateMachine(self._deliver_event)
        self.state_machine.add_state_observer(self._on_state_changed)
        self._commands: Dict[str, Tuple[str, PrepareFn]] = {
            "connect": ("CONNECT_FAILED", self._prepare_connect),
            "disconnect": ("DISCONNECT_FAILED", self._prepare_disconnect),
            "openLock": ("OPEN_FAILED", self._raw_command(OPCODE_OPEN)),
            "closeLock": ("CLOSE_FAILED", self._raw_command(OPCODE_CLOSE)),
            "pullSpring": ("PULL_FAILED", self._raw_command(OPCODE_PULL_SPRING)),
            "getLockState": ("GET_STATE_FAILED", self._prepare_get_lock_state),
            "getDeviceSettings": ("GET_SETTINGS_FAILED", self._prepare_get_device_settings),
            "getFirmwareVersion": ("GET_FIRMWARE_FAILED", self._prepare_get_firmware_version),
            "getSignedTime": ("GET_SIGNED_TIME_FAILED", self._prepare_get_signed_time),
            "setSignedTime": ("SET_SIGNED_TIME_FAILED", self._prepare_set_signed_time),
            "sendCustomCommand": ("SEND_COMMAND_FAILED", self._prepare_custom_command),
        }

    # Public API ---------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self.state_machine.state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def commands(self) -> Tuple[str, ...]:
        return tuple(self._commands)

    def dispatch(self, command_name: str, arguments: Optional[Dict[str, Any]] = None) -> "Future[CommandOutcome]":
        """Queue a named command; the returned future resolves exactly once."""
        future: "Future[CommandOutcome]" = Future()
        command = Command(command_name, dict(arguments or {}))
        entry = self._commands.get(command.name)
        if entry is None:
            LOGGER.warning("Unknown command requested: %s", command.name)
            self._complete(future, self._failure(command.name, NOT_IMPLEMENTED, f"Unknown command: {command.name}"))
            return future
        if self._closed:
            self._complete(future, self._failure(command.name, BridgeClosedError.code, "Bridge is closed"))
            return future

        failure_code, prepare = entry
        try:
            job = prepare(command.arguments)
        except InvalidArgumentError as exc:
            LOGGER.info("Rejected %s: %s", command.name, exc.message)
            self._complete(future, self._failure(command.name, exc.code, exc.message))
            return future

        try:
            self._worker.submit(self._run, future, command.name, failure_code, job)
        except RuntimeError:
            self._complete(future, self._failure(command.name, BridgeClosedError.code, "Bridge is closed"))
        return future

    def close(self) -> None:
        """Release the lock session once; later calls are no-ops."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        LOGGER.info("Tearing down lock session bridge")
        self._worker.shutdown(wait=True)
        try:
            self.session.clear()
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.warning("Failed to clear lock session: %s", exc)
        self._host.shutdown(wait=False)

    def __enter__(self) -> "SessionBridge":
        return self

    def __exit__(self, *_exc_info: Any) -> None:
        self.close()

    # Execution ----------------------------------------------------------
    def _run(self, future: "Future[CommandOutcome]", name: str, failure_code: str, job: Job) -> None:
        if self._closed:
            outcome = self._failure(name, BridgeClosedError.code, "Bridge is closed")
        else:
            try:
                outcome = CommandOutcome(name, value=job())
            except LockBridgeError as exc:
                LOGGER.error("Command %s failed: %s", name, exc)
                outcome = self._failure(name, _error_code(exc, failure_code), str(exc) or type(exc).__name__)
            except Exception as exc:  # pylint: disable=broad-except
                LOGGER.exception("Command %s failed", name)
                outcome = self._failure(name, failure_code, str(exc) or type(exc).__name__)
        self._deliver(lambda: self._complete(future, outcome))

    @staticmethod
    def _failure(name: str, code: str, message: str) -> CommandOutcome:
        return CommandOutcome(name, error=StructuredError(code, message))

    @staticmethod
    def _complete(future: "Future[CommandOutcome]", outcome: CommandOutcome) -> None:
        if not future.set_running_or_notify_cancel():
            LOGGER.debug("Host cancelled %s before it resolved", outcome.command)
            return
        future.set_result(outcome)

    def _deliver(self, callback: Callable[[], None]) -> None:
        try:
            self._host.submit(callback)
        except RuntimeError:
            # Host context already shut down; resolve on the current thread.
            callback()

    def _deliver_event(self, event: HostEvent) -> None:
        if self._event_sink is None:
            LOGGER.debug("Dropping host event without sink: %s", event.description)
            return
        sink = self._event_sink

        def _push() -> None:
            try:
                sink(event)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("Host event sink failed for %s", event.kind.value)

        self._deliver(_push)

    def _on_state_changed(self, state: ConnectionState) -> None:
        if state is ConnectionState.DISCONNECTED:
            with self._attempt_lock:
                self._attempt_active = False

    # Command preparation ------------------------------------------------
    def _prepare_connect(self, arguments: Dict[str, Any]) -> Job:
        identity = identity_from_arguments(arguments)
        keep_connection = arguments.get("keepConnection")
        if keep_connection is None:
            keep_connection = self.keep_connection_default
        elif not isinstance(keep_connection, bool):
            raise InvalidArgumentError(f"keepConnection must be a boolean, got {keep_connection!r}")

        def _connect() -> bool:
            with self._attempt_lock:
                if self._attempt_active or self.state_machine.state is not ConnectionState.DISCONNECTED:
                    raise AlreadyConnectedError(
                        f"Connect rejected: session is {self.state_machine.state.value} or an attempt is pending"
                    )
                self._attempt_active = True
            try:
                credential = self.provisioning.obtain_credential(identity)
                self.session.connect(
                    identity,
                    credential,
                    keep_connection=keep_connection,
                    listener=self.state_machine,
                )
            except BaseException:
                with self._attempt_lock:
                    self._attempt_active = False
                raise
            LOGGER.info("Connect attempt accepted for %s (keepConnection=%s)", identity.cache_key, keep_connection)
            return True

        return _connect

    def _prepare_disconnect(self, _arguments: Dict[str, Any]) -> Job:
        def _disconnect() -> None:
            self.session.disconnect()
            if self.state_machine.state is ConnectionState.DISCONNECTED:
                with self._attempt_lock:
                    self._attempt_active = False

        return _disconnect

    def _raw_command(self, opcode: int) -> PrepareFn:
        def _prepare(_arguments: Dict[str, Any]) -> Job:
            return lambda: self._send_raw(opcode)

        return _prepare

    def _prepare_custom_command(self, arguments: Dict[str, Any]) -> Job:
        opcode = parse_hex_command(arguments.get("hexCommand"))
        params = parse_hex_params(arguments.get("params"))
        return lambda: self._send_raw(opcode, params)

    def _prepare_get_lock_state(self, _arguments: Dict[str, Any]) -> Job:
        def _get_lock_state() -> CommandResult:
            raw = self.session.get_lock_state()
            return CommandResult(bytes(raw) if raw else None, describe_command_result(raw))

        return _get_lock_state

    def _prepare_get_device_settings(self, _arguments: Dict[str, Any]) -> Job:
        # The lock is already paired, so this is never an "adding device" query.
        return lambda: self._query_result(self.session.get_device_settings(False))

    def _prepare_get_firmware_version(self, _arguments: Dict[str, Any]) -> Job:
        return lambda: self._query_result(self.session.get_firmware_version(False))

    def _prepare_get_signed_time(self, _arguments: Dict[str, Any]) -> Job:
        def _get_signed_time() -> CommandResult:
            signed_time = self._signed_time_source().get_signed_time()
            return CommandResult(None, str(signed_time))

        return _get_signed_time

    def _prepare_set_signed_time(self, _arguments: Dict[str, Any]) -> Job:
        def _set_signed_time() -> CommandResult:
            signed_time = self._signed_time_source().get_signed_time()
            self.session.set_signed_time(signed_time)
            return CommandResult(None, f"Signed time set: {signed_time}")

        return _set_signed_time

    # Helpers ------------------------------------------------------------
    def _send_raw(self, opcode: int, params: Optional[bytes] = None) -> CommandResult:
        LOGGER.debug("Sending opcode 0x%02X (params=%s)", opcode, params.hex() if params else "none")
        response = self.session.send_command(opcode, params)
        raw = bytes(response) if response else None
        return CommandResult(raw, describe_command_result(raw))

    @staticmethod
    def _query_result(value: Any) -> CommandResult:
        raw = bytes(value) if isinstance(value, (bytes, bytearray)) and value else None
        return CommandResult(raw, describe_value(value))

    def _signed_time_source(self) -> SignedTimeSource:
        if self.signed_time_source is None:
            raise ConfigurationError("No signed time source configured")
        return self.signed_time_source


__all__ = [
    "SessionBridge",
    "identity_from_arguments",
    "parse_hex_command",
    "parse_hex_params",
]
