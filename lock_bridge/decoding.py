"""Readable descriptions for lock command results, states and notifications.

Decoding never raises: anything that does not match a known layout yields a
description containing ``unknown`` so callers can attach the raw bytes.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

OPCODE_CLOSE = 0x50
OPCODE_OPEN = 0x51
OPCODE_PULL_SPRING = 0x52
OPCODE_GET_STATE = 0x5A

COMMAND_NAMES = {
    OPCODE_CLOSE: "LOCK",
    OPCODE_OPEN: "UNLOCK",
    OPCODE_PULL_SPRING: "PULL_SPRING",
    OPCODE_GET_STATE: "GET_STATE",
}

RESULT_NAMES = {
    0x00: "SUCCESS",
    0x01: "INVALID_PARAM",
    0x02: "ERROR",
    0x03: "BUSY",
    0x05: "NOT_CALIBRATED",
    0x06: "UNLOCK_ALREADY_CALLED_BY_AUTOUNLOCK",
    0x07: "UNLOCK_ALREADY_CALLED_BY_OTHER_OPERATION",
    0x08: "NOT_CONFIGURED",
    0x09: "DISMOUNTED",
}

LOCK_STATE_NAMES = {
    0x00: "UNCALIBRATED",
    0x01: "CALIBRATION",
    0x02: "UNLOCKED",
    0x03: "SEMI_LOCKED",
    0x04: "UNLOCKING",
    0x05: "LOCKING",
    0x06: "LOCKED",
    0x07: "PULL_SPRING",
    0x08: "PULLING",
    0x09: "UNKNOWN",
    0x12: "UPDATING",
}

STATUS_NAMES = {
    0x00: "OK",
    0x01: "JAMMED",
}

NOTIFICATION_LOCK_STATUS_CHANGE = 0xBA
NOTIFICATION_NEED_DATETIME = 0xA4

NOTIFICATION_NAMES = {
    NOTIFICATION_LOCK_STATUS_CHANGE: "LOCK_STATUS_CHANGE",
    NOTIFICATION_NEED_DATETIME: "NEED_DATE_TIME",
}


def hex_byte(value: int) -> str:
    return f"0x{value & 0xFF:02X}"


def hex_dump(data: Optional[bytes]) -> str:
    if not data:
        return ""
    return " ".join(hex_byte(byte) for byte in data)


def describe_lock_state(value: int) -> str:
    return LOCK_STATE_NAMES.get(value & 0xFF, f"Unknown state ({hex_byte(value)})")


def describe_status(value: int) -> str:
    return STATUS_NAMES.get(value & 0xFF, f"Unknown status ({hex_byte(value)})")


def describe_lock_status(current_state: int, status: int) -> str:
    return f"State: {describe_lock_state(current_state)}, Status: {describe_status(status)}"


def describe_command_result(raw: Optional[bytes]) -> str:
    """Describe a raw command response laid out as [opcode, result, payload...]."""
    if not raw:
        return "No response"
    command = COMMAND_NAMES.get(raw[0])
    if command is None:
        return f"Unknown result for command {hex_byte(raw[0])}: {hex_dump(raw)}"
    if len(raw) < 2:
        return f"{command}: unknown result (no status byte)"
    result = RESULT_NAMES.get(raw[1])
    if result is None:
        return f"{command}: unknown result {hex_byte(raw[1])}"
    if raw[0] == OPCODE_GET_STATE and result == "SUCCESS" and len(raw) >= 4:
        return f"{command}: {result} ({describe_lock_status(raw[2], raw[3])})"
    return f"{command}: {result}"


def describe_notification(raw: bytes) -> str:
    if not raw:
        return "Empty notification"
    kind = NOTIFICATION_NAMES.get(raw[0])
    if kind is None:
        return f"Unknown notification {hex_byte(raw[0])}"
    if raw[0] == NOTIFICATION_LOCK_STATUS_CHANGE:
        if len(raw) < 3:
            return f"{kind}: unknown payload"
        return f"{kind}: {describe_lock_status(raw[1], raw[2])}"
    return kind


def is_inconclusive(description: str) -> bool:
    return "unknown" in description.lower()


def notification_debug_info(raw: bytes) -> Dict[str, Any]:
    """Raw byte breakdown attached to inconclusive notifications."""
    second: Optional[str] = None
    if len(raw) > 1:
        second = f"{raw[1]} ({hex_byte(raw[1])})"
    return {
        "firstByte": f"{raw[0]} ({hex_byte(raw[0])})",
        "secondByte": second if second is not None else "N/A",
        "totalBytes": len(raw),
        "hex": hex_dump(raw),
    }


def describe_value(value: Any) -> str:
    """Describe a session query result that is not a raw byte payload."""
    if value is None:
        return "No response"
    if isinstance(value, (bytes, bytearray)):
        return hex_dump(bytes(value)) or "No response"
    return str(value)


__all__ = [
    "COMMAND_NAMES",
    "LOCK_STATE_NAMES",
    "OPCODE_CLOSE",
    "OPCODE_GET_STATE",
    "OPCODE_OPEN",
    "OPCODE_PULL_SPRING",
    "RESULT_NAMES",
    "STATUS_NAMES",
    "describe_command_result",
    "describe_lock_state",
    "describe_lock_status",
    "describe_notification",
    "describe_status",
    "describe_value",
    "hex_byte",
    "hex_dump",
    "is_inconclusive",
    "notification_debug_info",
]
