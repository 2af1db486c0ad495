"""Certificate provisioning with cache-first semantics."""
from __future__ import annotations

import logging
from threading import Lock

from .config import BridgeSettings
from .credential_store import CredentialStore
from .errors import ProvisioningError
from .keys import KeyProvider, MobileKeyProvider
from .models import Credential, DeviceIdentity
from .registration_client import RegistrationClient, build_client

LOGGER = logging.getLogger(__name__)


class CertificateProvisioningService:
    """Supply the trust material needed to open a secure session.

    Reconnects hit the credential cache and make no network calls. A cache miss
    registers the mobile key exactly once and fetches the device certificate;
    the result is persisted before it is returned. Registration is not
    idempotent on the remote side, so misses are serialized.
    """

    def __init__(
        self,
        store: CredentialStore,
        key_provider: KeyProvider,
        registration_client: RegistrationClient,
    ) -> None:
        self.store = store
        self.key_provider = key_provider
        self.registration_client = registration_client
        self._lock = Lock()

    def obtain_credential(self, identity: DeviceIdentity) -> Credential:
        with self._lock:
            cached = self.store.get(identity)
            if cached is not None:
                LOGGER.debug("Using cached certificate for %s", identity.cache_key)
                return cached

            LOGGER.info(
                "Generating new certificate for %s (S/N: %s, Device ID: %s)",
                identity.name,
                identity.serial_number,
                identity.device_id,
            )
            credential = self._provision(identity)
            self.store.put(identity, credential)
            return credential

    def _provision(self, identity: DeviceIdentity) -> Credential:
        try:
            public_key = self.key_provider.get_or_create_mobile_key_pair()
            if not public_key:
                raise ValueError("Key provider returned an empty mobile public key")
            registration_id = self.registration_client.register_mobile(identity.name, public_key)
            credential = self.registration_client.fetch_certificate(registration_id, identity.device_id)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.error("Failed to provision certificate for %s: %s", identity.cache_key, exc)
            raise ProvisioningError(f"Failed to provision certificate: {exc}", cause=exc) from exc

        if not credential.is_usable:
            raise ProvisioningError("Certificate response is missing certificate or key material")
        return credential


def build_provisioning_service(settings: BridgeSettings) -> CertificateProvisioningService:
    """Wire the default store, key provider and API client from settings."""
    return CertificateProvisioningService(
        store=CredentialStore(settings.credential_path),
        key_provider=MobileKeyProvider(settings.mobile_key_path),
        registration_client=build_client(settings),
    )


__all__ = ["CertificateProvisioningService", "build_provisioning_service"]
