"""HTTP client for mobile registration and device certificates."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import requests
from requests import RequestException

from .config import BridgeSettings, DEFAULT_API_BASE_URL, DEFAULT_API_TIMEOUT, DEFAULT_API_VERSION
from .errors import ConfigurationError, NetworkError, NotFoundError, ServerError
from .models import Credential, SignedTime

LOGGER = logging.getLogger(__name__)

OPERATING_SYSTEM_ANDROID = 3


class RegistrationClient(Protocol):
    def register_mobile(self, name: str, public_key: str) -> str:
        """Create a new remote mobile registration and return its id."""

    def fetch_certificate(self, registration_id: str, device_id: str) -> Credential:
        """Fetch the device certificate issued for registration_id."""


def _ensure_scheme(url: str) -> str:
    if url.startswith("http://") or url.startswith("https://"):
        return url
    LOGGER.warning("LOCK_API_BASE_URL missing scheme; defaulting to https://")
    return f"https://{url}"


class RegistrationApiClient:
    """Thin wrapper around the mobile registration REST endpoints."""

    def __init__(
        self,
        personal_key: Optional[str],
        base_url: str = DEFAULT_API_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_API_TIMEOUT,
    ) -> None:
        self.base_url = _ensure_scheme(base_url).rstrip("/")
        self.api_version = api_version.strip("/")
        self.personal_key = personal_key
        self.timeout = timeout

    # Endpoints ---------------------------------------------------------
    def register_mobile(self, name: str, public_key: str) -> str:
        """POST /my/mobile to register this mobile's public key."""
        body = {
            "name": name,
            "operatingSystem": OPERATING_SYSTEM_ANDROID,
            "publicKey": public_key,
        }
        LOGGER.info("Registering mobile %r with remote API", name)
        try:
            response = requests.post(
                self._url("my/mobile"),
                headers=self._headers(),
                json=body,
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise NetworkError(f"Failed to contact registration API: {exc}") from exc
        result = self._parse_response(response)
        registration_id = result.get("id") if isinstance(result, dict) else None
        if registration_id in (None, ""):
            raise ServerError("Registration response missing 'id'")
        LOGGER.info("Mobile registered with ID: %s", registration_id)
        return str(registration_id)

    def fetch_certificate(self, registration_id: str, device_id: str) -> Credential:
        """GET /my/devicecertificate/getformobile for one device."""
        params = {"MobileId": registration_id, "DeviceId": _numeric_device_id(device_id)}
        try:
            response = requests.get(
                self._url("my/devicecertificate/getformobile"),
                headers=self._headers(),
                params=params,
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise NetworkError(f"Failed to contact registration API: {exc}") from exc
        result = self._parse_response(response)
        if not isinstance(result, dict):
            raise ServerError("Certificate response is not an object")
        try:
            credential = Credential.from_record(result)
        except ValueError as exc:
            raise ServerError(f"Malformed certificate response: {exc}") from exc
        LOGGER.info(
            "Certificate received for device %s (bytes=%d, expires=%s)",
            device_id,
            len(credential.certificate),
            credential.expiration.isoformat() if credential.expiration else "n/a",
        )
        return credential

    def get_signed_time(self) -> SignedTime:
        """GET /datetime/getsignedtime for the lock's trusted clock."""
        try:
            response = requests.get(
                self._url("datetime/getsignedtime"),
                headers=self._headers(),
                timeout=self.timeout,
            )
        except RequestException as exc:
            raise NetworkError(f"Failed to contact registration API: {exc}") from exc
        result = self._parse_response(response)
        try:
            return SignedTime(signed_at=str(result["datetime"]), signature=str(result["signature"]))
        except (KeyError, TypeError) as exc:
            raise ServerError(f"Missing required field in signed time response: {exc}") from exc

    # Helpers -----------------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/{self.api_version}/{path}"

    def _headers(self) -> Dict[str, str]:
        if not self.personal_key:
            raise ConfigurationError("LOCK_API_PERSONAL_KEY is not configured")
        return {
            "Authorization": f"PersonalKey {self.personal_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _parse_response(response: requests.Response) -> Any:
        if response.status_code == 404:
            raise NotFoundError(f"Registration API resource not found: {response.url}")
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise ServerError(f"Registration API error: {exc}") from exc
        try:
            data = response.json()
        except ValueError as exc:  # includes JSONDecodeError
            raise ServerError(f"Failed to decode registration API response: {exc}") from exc
        if not isinstance(data, dict):
            raise ServerError("Registration API response is not an object")
        if data.get("success") is False:
            messages = data.get("errorMessages") or []
            raise ServerError(f"Registration API reported failure: {'; '.join(map(str, messages)) or 'unknown'}")
        if "result" not in data:
            raise ServerError("Registration API response missing 'result'")
        return data["result"]


def _numeric_device_id(device_id: str) -> int:
    try:
        return int(str(device_id).strip())
    except ValueError as exc:
        raise NotFoundError(f"Device id {device_id!r} is not numeric") from exc


def build_client(settings: BridgeSettings) -> RegistrationApiClient:
    """Factory that maps settings onto the client."""
    return RegistrationApiClient(
        personal_key=settings.personal_key,
        base_url=settings.api_base_url,
        api_version=settings.api_version,
        timeout=settings.api_timeout,
    )


__all__ = ["RegistrationApiClient", "RegistrationClient", "build_client"]
