"""Certificate provisioning and command bridge for BLE lock sessions."""

from importlib import import_module
from typing import Any

_EXPORT_MAP = {
    "SessionBridge": (".bridge", "SessionBridge"),
    "parse_hex_command": (".bridge", "parse_hex_command"),
    "CertificateProvisioningService": (".certificates", "CertificateProvisioningService"),
    "build_provisioning_service": (".certificates", "build_provisioning_service"),
    "BridgeSettings": (".config", "BridgeSettings"),
    "load_settings": (".config", "load_settings"),
    "CredentialStore": (".credential_store", "CredentialStore"),
    "MobileKeyProvider": (".keys", "MobileKeyProvider"),
    "RegistrationApiClient": (".registration_client", "RegistrationApiClient"),
    "ConnectionStateMachine": (".state_machine", "ConnectionStateMachine"),
    "LockSession": (".session", "LockSession"),
    "SessionListener": (".session", "SessionListener"),
    "SignedTimeProvider": (".session", "SignedTimeProvider"),
    "MqttHost": (".mqtt_host", "MqttHost"),
    "CommandOutcome": (".models", "CommandOutcome"),
    "CommandResult": (".models", "CommandResult"),
    "ConnectionState": (".models", "ConnectionState"),
    "Credential": (".models", "Credential"),
    "DeviceIdentity": (".models", "DeviceIdentity"),
    "HostEvent": (".models", "HostEvent"),
    "HostEventKind": (".models", "HostEventKind"),
    "LockBridgeError": (".errors", "LockBridgeError"),
}

__all__ = list(_EXPORT_MAP.keys())


def __getattr__(name: str) -> Any:
    try:
        module_name, attr_name = _EXPORT_MAP[name]
    except KeyError as exc:  # pragma: no cover - mirrors default behaviour
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}") from exc
    module = import_module(module_name, __name__)
    return getattr(module, attr_name)


def __dir__() -> list[str]:  # pragma: no cover - minimal helper
    return sorted(set(globals().keys()) | set(__all__))
