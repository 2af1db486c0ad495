from __future__ import annotations

import threading
import time
from typing import Any, Callable, List, Optional, Tuple

import pytest

from lock_bridge.bridge import SessionBridge, parse_hex_command
from lock_bridge.errors import (
    DeviceResetRequiredError,
    GenericSessionError,
    InvalidArgumentError,
    ProvisioningError,
)
from lock_bridge.models import (
    CommandOutcome,
    CommandResult,
    ConnectionState,
    Credential,
    DeviceIdentity,
    HostEvent,
    HostEventKind,
    SignedTime,
)

CONNECT_ARGS = {"serialNumber": "10530206-030484", "deviceId": "273450", "name": "Lock-40C5"}
CREDENTIAL = Credential(certificate=b"cert", device_public_key=b"device", mobile_public_key=b"mobile")
TIMEOUT = 5


class FakeProvisioning:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests: List[DeviceIdentity] = []

    def obtain_credential(self, identity: DeviceIdentity) -> Credential:
        self.requests.append(identity)
        if self.error is not None:
            raise self.error
        return CREDENTIAL


class FakeSession:
    def __init__(self) -> None:
        self.listener: Any = None
        self.connects: List[Tuple[DeviceIdentity, Credential, bool]] = []
        self.sent: List[Tuple[int, Optional[bytes]]] = []
        self.send_error: Exception | None = None
        self.query_flags: List[bool] = []
        self.signed_times: List[SignedTime] = []
        self.disconnects = 0
        self.cleared = 0

    def connect(self, identity, credential, *, keep_connection, listener) -> None:
        self.connects.append((identity, credential, keep_connection))
        self.listener = listener
        listener.on_connection_changed(True, False)
        listener.on_connection_changed(False, True)

    def disconnect(self) -> None:
        self.disconnects += 1
        if self.listener is not None:
            self.listener.on_connection_changed(False, False)

    def send_command(self, opcode: int, params: Optional[bytes] = None) -> Optional[bytes]:
        self.sent.append((opcode, params))
        if self.send_error is not None:
            raise self.send_error
        return bytes([opcode, 0x00])

    def get_lock_state(self) -> bytes:
        return bytes([0x5A, 0x00, 0x06, 0x00])

    def get_device_settings(self, is_adding: bool = False) -> bytes:
        self.query_flags.append(is_adding)
        return b"\x01\x02"

    def get_firmware_version(self, is_adding: bool = False) -> str:
        self.query_flags.append(is_adding)
        return "2.3.1"

    def set_signed_time(self, signed_time: SignedTime) -> None:
        self.signed_times.append(signed_time)

    def clear(self) -> None:
        self.cleared += 1


class FakeTimeSource:
    def get_signed_time(self) -> SignedTime:
        return SignedTime(signed_at="2026-10-17T10:00:00Z", signature="c2ln")


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def events() -> List[HostEvent]:
    return []


@pytest.fixture
def bridge(session, events):
    instance = SessionBridge(
        session,
        FakeProvisioning(),
        signed_time_source=FakeTimeSource(),
        event_sink=events.append,
    )
    yield instance
    instance.close()


def _call(bridge: SessionBridge, name: str, arguments: Optional[dict] = None) -> CommandOutcome:
    return bridge.dispatch(name, arguments).result(timeout=TIMEOUT)


@pytest.mark.parametrize("text", ["0x51", "51", "0X51", " 0x51 "])
def test_parse_hex_command_accepts_common_forms(text: str) -> None:
    assert parse_hex_command(text) == 0x51


@pytest.mark.parametrize("text", ["zz", "", "0x", "0x100", "5 1"])
def test_parse_hex_command_rejects_malformed(text: str) -> None:
    with pytest.raises(InvalidArgumentError) as excinfo:
        parse_hex_command(text)
    assert excinfo.value.code == "INVALID_HEX"


def test_parse_hex_command_requires_value() -> None:
    with pytest.raises(InvalidArgumentError) as excinfo:
        parse_hex_command(None)
    assert excinfo.value.code == "INVALID_ARGS"


def test_connect_scenario(bridge, session, events) -> None:
    outcome = _call(bridge, "connect", CONNECT_ARGS)

    assert outcome.ok and outcome.value is True
    identity, credential, keep_connection = session.connects[0]
    assert identity == DeviceIdentity("10530206-030484", "273450", "Lock-40C5")
    assert credential == CREDENTIAL
    assert keep_connection is True
    assert [e.description for e in events] == ["Connecting...", "Secure session established"]
    assert bridge.state is ConnectionState.CONNECTED


def test_connect_accepts_numeric_device_id_and_keep_connection(bridge, session) -> None:
    outcome = _call(bridge, "connect", {**CONNECT_ARGS, "deviceId": 273450, "keepConnection": False})

    assert outcome.ok
    assert session.connects[0][0].device_id == "273450"
    assert session.connects[0][2] is False


def test_connect_with_missing_arguments_resolves_immediately(bridge, session) -> None:
    future = bridge.dispatch("connect", {"serialNumber": "10530206-030484", "deviceId": "273450"})

    assert future.done()
    outcome = future.result()
    assert outcome.error.code == "INVALID_ARGS"
    assert "name" in outcome.error.message
    assert session.connects == []


def test_second_connect_is_rejected(bridge, session) -> None:
    assert _call(bridge, "connect", CONNECT_ARGS).ok
    outcome = _call(bridge, "connect", CONNECT_ARGS)

    assert outcome.error.code == "ALREADY_CONNECTED"
    assert len(session.connects) == 1


def test_reconnect_after_disconnect(bridge, session, events) -> None:
    assert _call(bridge, "connect", CONNECT_ARGS).ok
    assert _call(bridge, "disconnect").ok
    assert events[-1].description == "Disconnected"

    assert _call(bridge, "connect", CONNECT_ARGS).ok
    assert len(session.connects) == 2


def test_provisioning_failure_keeps_state(session, events) -> None:
    provisioning = FakeProvisioning(error=ProvisioningError("api down"))
    with SessionBridge(session, provisioning, event_sink=events.append) as bridge:
        outcome = _call(bridge, "connect", CONNECT_ARGS)
        assert outcome.error.code == "PROVISIONING_FAILED"
        assert bridge.state is ConnectionState.DISCONNECTED
        assert session.connects == []

        provisioning.error = None
        assert _call(bridge, "connect", CONNECT_ARGS).ok


@pytest.mark.parametrize(
    ("name", "opcode"),
    [("openLock", 0x51), ("closeLock", 0x50), ("pullSpring", 0x52)],
)
def test_fixed_opcodes_ignore_arguments(bridge, session, name: str, opcode: int) -> None:
    outcome = _call(bridge, name, {"hexCommand": "0x99", "params": "ff"})

    assert outcome.ok
    assert session.sent == [(opcode, None)]
    assert isinstance(outcome.value, CommandResult)
    assert outcome.value.raw_bytes == bytes([opcode, 0x00])


def test_custom_pull_spring_while_connected(bridge, session) -> None:
    assert _call(bridge, "connect", CONNECT_ARGS).ok
    outcome = _call(bridge, "sendCustomCommand", {"hexCommand": "0x52"})

    assert session.sent == [(0x52, None)]
    assert outcome.value.description == "PULL_SPRING: SUCCESS"
    assert outcome.export_dict() == {
        "method": "sendCustomCommand",
        "success": True,
        "result": {"raw": "5200", "description": "PULL_SPRING: SUCCESS"},
    }


def test_custom_command_with_params(bridge, session) -> None:
    assert _call(bridge, "sendCustomCommand", {"hexCommand": "51", "params": "0x01 02"}).ok
    assert session.sent == [(0x51, b"\x01\x02")]


def test_custom_command_with_bad_hex(bridge, session) -> None:
    future = bridge.dispatch("sendCustomCommand", {"hexCommand": "zz"})

    assert future.done()
    assert future.result().error.code == "INVALID_HEX"
    assert session.sent == []


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (RuntimeError("gatt write failed"), "OPEN_FAILED"),
        (GenericSessionError("link lost"), "OPEN_FAILED"),
        (DeviceResetRequiredError("pairing lost"), "DEVICE_RESET_REQUIRED"),
    ],
)
def test_session_failures_become_structured_errors(bridge, session, error, code: str) -> None:
    assert _call(bridge, "connect", CONNECT_ARGS).ok
    session.send_error = error

    outcome = _call(bridge, "openLock")

    assert not outcome.ok
    assert outcome.error.code == code
    assert bridge.state is ConnectionState.CONNECTED


def test_queries(bridge, session) -> None:
    state = _call(bridge, "getLockState").value
    settings = _call(bridge, "getDeviceSettings").value
    firmware = _call(bridge, "getFirmwareVersion").value

    assert state.description == "GET_STATE: SUCCESS (State: LOCKED, Status: OK)"
    assert settings.description == "0x01 0x02"
    assert firmware.description == "2.3.1"
    assert session.query_flags == [False, False]


def test_signed_time_commands(bridge, session) -> None:
    fetched = _call(bridge, "getSignedTime").value
    pushed = _call(bridge, "setSignedTime").value

    assert fetched.description == "SignedTime(datetime=2026-10-17T10:00:00Z, signature=c2ln)"
    assert pushed.description.startswith("Signed time set:")
    assert session.signed_times == [FakeTimeSource().get_signed_time()]


def test_signed_time_without_source(session) -> None:
    with SessionBridge(session, FakeProvisioning()) as bridge:
        outcome = _call(bridge, "getSignedTime")
    assert outcome.error.code == "CONFIGURATION_ERROR"


def test_unknown_command(bridge) -> None:
    future = bridge.dispatch("selfDestruct")
    assert future.done()
    assert future.result().error.code == "NOT_IMPLEMENTED"


def test_close_is_idempotent(session) -> None:
    bridge = SessionBridge(session, FakeProvisioning())
    bridge.close()
    bridge.close()

    assert session.cleared == 1
    assert bridge.closed
    outcome = bridge.dispatch("openLock").result(timeout=TIMEOUT)
    assert outcome.error.code == "BRIDGE_CLOSED"
    assert session.sent == []


def test_failing_event_sink_does_not_break_commands(session) -> None:
    def _broken_sink(event: HostEvent) -> None:
        raise RuntimeError("host went away")

    with SessionBridge(session, FakeProvisioning(), event_sink=_broken_sink) as bridge:
        assert _call(bridge, "connect", CONNECT_ARGS).ok
        assert bridge.state is ConnectionState.CONNECTED


def test_reset_event_reaches_host(bridge, session, events) -> None:
    assert _call(bridge, "connect", CONNECT_ARGS).ok
    session.listener.on_error(DeviceResetRequiredError("pairing lost"))
    assert _call(bridge, "getLockState").ok

    kinds = [e.kind for e in events]
    assert HostEventKind.RESET_REQUIRED in kinds
    assert HostEventKind.ERROR not in kinds
    assert bridge.state is ConnectionState.DISCONNECTED


class HandshakeStuckSession(FakeSession):
    def connect(self, identity, credential, *, keep_connection, listener) -> None:
        self.connects.append((identity, credential, keep_connection))
        self.listener = listener
        listener.on_connection_changed(True, False)


class UnreachableLockSession(FakeSession):
    def __init__(self, report: Callable[[Any], None]) -> None:
        super().__init__()
        self.report = report

    def connect(self, identity, credential, *, keep_connection, listener) -> None:
        self.connects.append((identity, credential, keep_connection))
        self.listener = listener
        self.report(listener)


class BlockingSession(FakeSession):
    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def send_command(self, opcode: int, params: Optional[bytes] = None) -> Optional[bytes]:
        self.started.set()
        self.release.wait(TIMEOUT)
        return super().send_command(opcode, params)


def test_connect_while_connecting_is_rejected(events) -> None:
    session = HandshakeStuckSession()
    with SessionBridge(session, FakeProvisioning(), event_sink=events.append) as bridge:
        assert _call(bridge, "connect", CONNECT_ARGS).ok
        outcome = _call(bridge, "connect", CONNECT_ARGS)

        assert bridge.state is ConnectionState.CONNECTING
        assert outcome.error.code == "ALREADY_CONNECTED"
        assert len(session.connects) == 1


@pytest.mark.parametrize(
    "report",
    [
        lambda listener: listener.on_error(GenericSessionError("lock not in range")),
        lambda listener: listener.on_connection_changed(False, False),
    ],
    ids=["error", "disconnected"],
)
def test_retry_after_attempt_fails_before_connecting(events, report) -> None:
    session = UnreachableLockSession(report)
    with SessionBridge(session, FakeProvisioning(), event_sink=events.append) as bridge:
        assert _call(bridge, "connect", CONNECT_ARGS).ok
        assert bridge.state is ConnectionState.DISCONNECTED

        retry = _call(bridge, "connect", CONNECT_ARGS)

        assert retry.ok
        assert len(session.connects) == 2


def test_work_queued_at_close_resolves_bridge_closed() -> None:
    session = BlockingSession()
    bridge = SessionBridge(session, FakeProvisioning())
    running = bridge.dispatch("openLock")
    assert session.started.wait(TIMEOUT)
    queued = bridge.dispatch("closeLock")

    closer = threading.Thread(target=bridge.close)
    closer.start()
    deadline = time.monotonic() + TIMEOUT
    while not bridge.closed and time.monotonic() < deadline:
        time.sleep(0.01)
    session.release.set()
    closer.join(TIMEOUT)

    assert running.result(timeout=TIMEOUT).ok
    assert queued.result(timeout=TIMEOUT).error.code == "BRIDGE_CLOSED"
    assert session.sent == [(0x51, None)]
    assert session.cleared == 1
