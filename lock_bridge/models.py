"""Data model shared by provisioning, the bridge and the host adapters."""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class DeviceIdentity:
    """Identifies one physical lock accessory."""

    serial_number: str
    device_id: str
    name: str

    @property
    def cache_key(self) -> str:
        return f"{self.serial_number}:{self.device_id}"


@dataclass(frozen=True)
class Credential:
    """Trust material required to open a secure session with one lock."""

    certificate: bytes
    device_public_key: bytes
    mobile_public_key: bytes
    expiration: Optional[datetime] = None

    @property
    def is_usable(self) -> bool:
        return bool(self.certificate) and bool(self.device_public_key) and bool(self.mobile_public_key)

    def to_record(self) -> Dict[str, Any]:
        """Serialize into a JSON-safe record (base64 fields, ISO expiration)."""
        return {
            "certificate": base64.b64encode(self.certificate).decode("ascii"),
            "devicePublicKey": base64.b64encode(self.device_public_key).decode("ascii"),
            "mobilePublicKey": base64.b64encode(self.mobile_public_key).decode("ascii"),
            "expiration": self.expiration.isoformat() if self.expiration else None,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Credential":
        """Build a credential from a stored or API record.

        Raises ValueError when a field is not valid base64 or the expiration
        is not ISO-8601.
        """
        return cls(
            certificate=_b64_field(record, "certificate"),
            device_public_key=_b64_field(record, "devicePublicKey"),
            mobile_public_key=_b64_field(record, "mobilePublicKey"),
            expiration=parse_timestamp(record.get("expiration") or record.get("expirationDate")),
        )


def _b64_field(record: Dict[str, Any], key: str) -> bytes:
    value = record.get(key)
    if not value:
        return b""
    try:
        return base64.b64decode(str(value), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Field {key!r} is not valid base64") from exc


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid timestamp: {value!r}") from exc


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class Command:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CommandResult:
    """Decoded response of a raw command or session query."""

    raw_bytes: Optional[bytes]
    description: str

    def export_dict(self) -> Dict[str, Any]:
        return {
            "raw": self.raw_bytes.hex() if self.raw_bytes else None,
            "description": self.description,
        }


@dataclass(frozen=True)
class NotificationEvent:
    """Decoded lock notification plus any raw byte breakdown."""

    raw_bytes: bytes
    description: str
    details: Dict[str, Any] = field(default_factory=dict)

    def as_host_event(self) -> "HostEvent":
        return HostEvent(
            HostEventKind.NOTIFICATION,
            self.description,
            {"raw": self.raw_bytes.hex(), **self.details},
        )


@dataclass(frozen=True)
class StructuredError:
    code: str
    message: str

    def export_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class CommandOutcome:
    """Single resolution of a dispatched command."""

    command: str
    value: Any = None
    error: Optional[StructuredError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def export_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"method": self.command, "success": self.ok}
        if self.error is not None:
            payload["error"] = self.error.export_dict()
        elif isinstance(self.value, CommandResult):
            payload["result"] = self.value.export_dict()
        else:
            payload["result"] = self.value
        return payload


@dataclass(frozen=True)
class SignedTime:
    """Trusted time issued by the remote API for the lock's clock."""

    signed_at: str
    signature: str

    def __str__(self) -> str:
        return f"SignedTime(datetime={self.signed_at}, signature={self.signature})"


class HostEventKind(str, Enum):
    CONNECTION_STATE = "connection_state"
    NOTIFICATION = "notification"
    LOCK_STATUS = "lock_status"
    ERROR = "error"
    RESET_REQUIRED = "reset_required"


@dataclass(frozen=True)
class HostEvent:
    """Event pushed to the host's event channel."""

    kind: HostEventKind
    description: str
    data: Dict[str, Any] = field(default_factory=dict)

    def export_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "description": self.description, "data": dict(self.data)}


__all__ = [
    "Command",
    "CommandOutcome",
    "CommandResult",
    "ConnectionState",
    "Credential",
    "DeviceIdentity",
    "HostEvent",
    "HostEventKind",
    "NotificationEvent",
    "SignedTime",
    "StructuredError",
    "parse_timestamp",
]
