"""Error taxonomy for the lock bridge."""
from __future__ import annotations

from typing import Optional


class LockBridgeError(Exception):
    """Base error carrying a stable code for structured host responses."""

    code = "LOCK_BRIDGE_ERROR"

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigurationError(LockBridgeError):
    """Raised when required settings are missing or malformed."""

    code = "CONFIGURATION_ERROR"


class InvalidArgumentError(LockBridgeError):
    """Raised for missing/malformed command arguments."""

    code = "INVALID_ARGS"


class StorageError(LockBridgeError):
    """Raised when the credential cache cannot be read or written."""

    code = "STORAGE_ERROR"


class KeyMaterialError(LockBridgeError):
    """Raised when the mobile key pair cannot be loaded or created."""

    code = "KEY_MATERIAL_ERROR"


class RegistrationApiError(LockBridgeError):
    """Base error for remote registration API failures."""

    code = "API_ERROR"


class NetworkError(RegistrationApiError):
    """Raised when the registration API cannot be reached."""

    code = "NETWORK_ERROR"


class ServerError(RegistrationApiError):
    """Raised when the registration API answers with an error or garbage."""

    code = "SERVER_ERROR"


class NotFoundError(RegistrationApiError):
    """Raised when the registration API does not know the device."""

    code = "NOT_FOUND"


class ProvisioningError(LockBridgeError):
    """Raised when a credential could not be provisioned."""

    code = "PROVISIONING_FAILED"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class SessionError(LockBridgeError):
    """Base error for failures reported by the external lock session."""

    code = "SESSION_ERROR"


class DeviceResetRequiredError(SessionError):
    """Raised by a session when the accessory must be factory reset."""

    code = "DEVICE_RESET_REQUIRED"


class GenericSessionError(SessionError):
    """Catch-all transport/session failure."""

    code = "SESSION_ERROR"


class AlreadyConnectedError(LockBridgeError):
    """Raised when a connect is issued while an attempt is in progress."""

    code = "ALREADY_CONNECTED"


class BridgeClosedError(LockBridgeError):
    """Raised when a command reaches a bridge that has been torn down."""

    code = "BRIDGE_CLOSED"


__all__ = [
    "AlreadyConnectedError",
    "BridgeClosedError",
    "ConfigurationError",
    "DeviceResetRequiredError",
    "GenericSessionError",
    "InvalidArgumentError",
    "KeyMaterialError",
    "LockBridgeError",
    "NetworkError",
    "NotFoundError",
    "ProvisioningError",
    "RegistrationApiError",
    "ServerError",
    "SessionError",
    "StorageError",
]
