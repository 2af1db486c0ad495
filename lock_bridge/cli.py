"""Command line entry point for provisioning and serving the lock bridge."""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Optional

from .bridge import SessionBridge
from .certificates import build_provisioning_service
from .config import BridgeSettings, load_settings
from .credential_store import CredentialStore
from .errors import ConfigurationError, LockBridgeError
from .models import DeviceIdentity
from .mqtt_host import MqttHost
from .registration_client import build_client
from .session import SignedTimeProvider, load_session_factory

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not verbose:
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="lock-bridge", description="BLE lock session bridge.")
    parser.add_argument("--env-file", help="Path to a .env file with LOCK_* settings")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    provision = sub.add_parser("provision", help="Obtain and cache a certificate for a lock")
    provision.add_argument("--serial", required=True, help="Lock serial number (e.g. 10530206-030484)")
    provision.add_argument("--device-id", required=True, help="Lock device id (e.g. 273450)")
    provision.add_argument("--name", required=True, help="Lock name (e.g. Lock-40C5)")

    forget = sub.add_parser("forget", help="Drop the cached certificate of a lock")
    forget.add_argument("--serial", required=True)
    forget.add_argument("--device-id", required=True)

    sub.add_parser("signed-time", help="Print the signed time issued by the API")
    sub.add_parser("serve", help="Run the MQTT command/event channel")
    return parser.parse_args(argv)


def cmd_provision(settings: BridgeSettings, args: argparse.Namespace) -> int:
    identity = DeviceIdentity(serial_number=args.serial, device_id=args.device_id, name=args.name)
    credential = build_provisioning_service(settings).obtain_credential(identity)
    expires = credential.expiration.isoformat() if credential.expiration else "n/a"
    print(f"Certificate ready for {identity.name} ({identity.cache_key})")
    print(f"  certificate bytes : {len(credential.certificate)}")
    print(f"  device key bytes  : {len(credential.device_public_key)}")
    print(f"  expires           : {expires}")
    return 0


def cmd_forget(settings: BridgeSettings, args: argparse.Namespace) -> int:
    identity = DeviceIdentity(serial_number=args.serial, device_id=args.device_id, name="")
    if CredentialStore(settings.credential_path).delete(identity):
        print(f"Removed cached certificate for {identity.cache_key}")
        return 0
    print(f"No cached certificate for {identity.cache_key}")
    return 1


def cmd_signed_time(settings: BridgeSettings, _args: argparse.Namespace) -> int:
    print(build_client(settings).get_signed_time())
    return 0


def cmd_serve(settings: BridgeSettings, _args: argparse.Namespace) -> int:
    if not settings.session_factory:
        raise ConfigurationError("LOCK_SESSION_FACTORY is not configured")
    factory = load_session_factory(settings.session_factory)
    provisioning = build_provisioning_service(settings)
    api_client = build_client(settings)
    session = factory(
        key_provider=provisioning.key_provider,
        signed_time_provider=SignedTimeProvider(api_client),
    )
    host = MqttHost.from_settings(settings)
    bridge = SessionBridge(
        session,
        provisioning,
        signed_time_source=api_client,
        event_sink=host.publish_event,
        keep_connection_default=settings.keep_connection,
    )
    host.attach(bridge)

    def _handle_signal(signum, _frame):  # pylint: disable=unused-argument
        LOGGER.info("Stopping lock bridge (signal=%s)", signum)
        host.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    try:
        host.run()
    finally:
        bridge.close()
    return 0


COMMANDS = {
    "provision": cmd_provision,
    "forget": cmd_forget,
    "signed-time": cmd_signed_time,
    "serve": cmd_serve,
}


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    try:
        settings = load_settings(args.env_file)
        return COMMANDS[args.command](settings, args)
    except LockBridgeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
