"""Normalize lock session callbacks into a small host-facing event model."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .decoding import (
    describe_lock_state,
    describe_lock_status,
    describe_notification,
    describe_status,
    hex_dump,
    is_inconclusive,
    notification_debug_info,
)
from .errors import DeviceResetRequiredError
from .models import ConnectionState, HostEvent, HostEventKind, NotificationEvent

LOGGER = logging.getLogger(__name__)

STATE_DESCRIPTIONS = {
    ConnectionState.DISCONNECTED: "Disconnected",
    ConnectionState.CONNECTING: "Connecting...",
    ConnectionState.CONNECTED: "Secure session established",
}

RESET_REQUIRED_DESCRIPTION = "Device needs factory reset"


class SessionEventKind(str, Enum):
    CONNECTION_CHANGED = "connection_changed"
    NOTIFICATION = "notification"
    LOCK_STATUS_CHANGED = "lock_status_changed"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    """Tagged union of everything a lock session can report."""

    kind: SessionEventKind
    is_connecting: bool = False
    is_connected: bool = False
    payload: bytes = b""
    current_state: int = 0
    status: int = 0
    error: Optional[BaseException] = None


StateObserver = Callable[[ConnectionState], None]


class ConnectionStateMachine:
    """Own the connection state and translate session events for the host.

    The four listener methods match the session callback contract and only
    build a ``SessionEvent``; all state changes happen in ``handle``.
    """

    def __init__(self, sink: Callable[[HostEvent], None]) -> None:
        self._sink = sink
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.RLock()
        self._observers: List[StateObserver] = []
        self._handlers: Dict[SessionEventKind, Callable[[SessionEvent], None]] = {
            SessionEventKind.CONNECTION_CHANGED: self._handle_connection_changed,
            SessionEventKind.NOTIFICATION: self._handle_notification,
            SessionEventKind.LOCK_STATUS_CHANGED: self._handle_lock_status,
            SessionEventKind.ERROR: self._handle_error,
        }

    @property
    def state(self) -> ConnectionState:
        return self._state

    def add_state_observer(self, observer: StateObserver) -> None:
        with self._lock:
            self._observers.append(observer)

    # Session listener contract -----------------------------------------
    def on_connection_changed(self, is_connecting: bool, is_connected: bool) -> None:
        self.handle(
            SessionEvent(
                SessionEventKind.CONNECTION_CHANGED,
                is_connecting=bool(is_connecting),
                is_connected=bool(is_connected),
            )
        )

    def on_notification(self, message: bytes) -> None:
        self.handle(SessionEvent(SessionEventKind.NOTIFICATION, payload=bytes(message or b"")))

    def on_lock_status_changed(self, current_state: int, status: int) -> None:
        self.handle(
            SessionEvent(
                SessionEventKind.LOCK_STATUS_CHANGED,
                current_state=int(current_state) & 0xFF,
                status=int(status) & 0xFF,
            )
        )

    def on_error(self, error: BaseException) -> None:
        self.handle(SessionEvent(SessionEventKind.ERROR, error=error))

    # Dispatch -----------------------------------------------------------
    def handle(self, event: SessionEvent) -> None:
        with self._lock:
            self._handlers[event.kind](event)

    def _handle_connection_changed(self, event: SessionEvent) -> None:
        LOGGER.debug(
            "Connection changed - isConnecting: %s, isConnected: %s",
            event.is_connecting,
            event.is_connected,
        )
        if event.is_connecting:
            target = ConnectionState.CONNECTING
        elif event.is_connected:
            target = ConnectionState.CONNECTED
        else:
            self._settle_disconnected()
            return
        self._transition_to(target)

    def _handle_notification(self, event: SessionEvent) -> None:
        message = event.payload
        if not message:
            return
        LOGGER.debug("Notification bytes: %s", hex_dump(message))
        readable = describe_notification(message)
        details: Dict[str, object] = {}
        if is_inconclusive(readable):
            debug = notification_debug_info(message)
            details.update(debug)
            description = (
                f"Notification: {readable}\n"
                f"DEBUG INFO:\n"
                f"- First byte (command): {debug['firstByte']}\n"
                f"- Second byte (status): {debug['secondByte']}\n"
                f"- Total bytes: {debug['totalBytes']}\n"
                f"- Full hex: {debug['hex']}"
            )
        else:
            description = f"Notification: {readable}"
        self._emit(NotificationEvent(message, description, details).as_host_event())

    def _handle_lock_status(self, event: SessionEvent) -> None:
        LOGGER.debug(
            "Lock status changed - currentState: %s, status: %s",
            event.current_state,
            event.status,
        )
        self._emit(
            HostEvent(
                HostEventKind.LOCK_STATUS,
                describe_lock_status(event.current_state, event.status),
                {
                    "currentState": event.current_state,
                    "status": event.status,
                    "state": describe_lock_state(event.current_state),
                    "statusDescription": describe_status(event.status),
                },
            )
        )

    def _handle_error(self, event: SessionEvent) -> None:
        error = event.error
        if isinstance(error, DeviceResetRequiredError):
            LOGGER.warning("Device needs factory reset")
            self._settle_disconnected()
            self._emit(
                HostEvent(
                    HostEventKind.RESET_REQUIRED,
                    RESET_REQUIRED_DESCRIPTION,
                    {"state": ConnectionState.DISCONNECTED.value},
                )
            )
            return

        error_type = type(error).__name__ if error is not None else "UnknownError"
        message = str(error) if error is not None else ""
        LOGGER.error("Lock session error: %s: %s", error_type, message)
        self._settle_disconnected()
        description = f"Error: {error_type}: {message}" if message else f"Error: {error_type}"
        self._emit(
            HostEvent(
                HostEventKind.ERROR,
                description,
                {
                    "errorType": error_type,
                    "message": message,
                    "state": ConnectionState.DISCONNECTED.value,
                },
            )
        )

    # State --------------------------------------------------------------
    def _settle_disconnected(self) -> None:
        """Move to Disconnected, or re-announce it to observers when already there."""
        if not self._transition_to(ConnectionState.DISCONNECTED):
            self._notify_observers(ConnectionState.DISCONNECTED)

    def _transition_to(self, target: ConnectionState) -> bool:
        current = self._state
        if target is current:
            return False
        if target is ConnectionState.CONNECTED and current is ConnectionState.DISCONNECTED:
            LOGGER.warning("Session reported connected without connecting; emitting Connecting first")
            self._enter(ConnectionState.CONNECTING)
        elif target is ConnectionState.CONNECTING and current is ConnectionState.CONNECTED:
            self._enter(ConnectionState.DISCONNECTED)
        self._enter(target)
        return True

    def _enter(self, state: ConnectionState) -> None:
        self._state = state
        LOGGER.info("Connection state -> %s", state.value)
        self._emit(
            HostEvent(
                HostEventKind.CONNECTION_STATE,
                STATE_DESCRIPTIONS[state],
                {
                    "state": state.value,
                    "commandsAvailable": state is ConnectionState.CONNECTED,
                    "resetHostState": state is ConnectionState.DISCONNECTED,
                },
            )
        )
        self._notify_observers(state)

    def _notify_observers(self, state: ConnectionState) -> None:
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:  # pylint: disable=broad-except
                LOGGER.exception("State observer failed")

    def _emit(self, event: HostEvent) -> None:
        self._sink(event)


__all__ = [
    "ConnectionStateMachine",
    "RESET_REQUIRED_DESCRIPTION",
    "STATE_DESCRIPTIONS",
    "SessionEvent",
    "SessionEventKind",
]
