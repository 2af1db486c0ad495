"""Mobile key pair provider used for registration with the remote API."""
from __future__ import annotations

import base64
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from .config import cache_dir, ensure_runtime_dirs
from .errors import KeyMaterialError

LOGGER = logging.getLogger(__name__)

PUBLIC_KEY_CACHE_SUFFIX = ".pub.b64"


class KeyProvider(Protocol):
    def get_or_create_mobile_key_pair(self) -> str:
        """Return the mobile public key, creating a key pair when none exists."""


class MobileKeyProvider:
    """EC P-256 key pair kept on disk as a private PEM plus a cached public key.

    The public key is exchanged as base64 DER SubjectPublicKeyInfo, which is
    what the registration API expects in ``publicKey``.
    """

    def __init__(self, key_path: Optional[Path | str] = None, password: Optional[str] = None) -> None:
        if key_path is None:
            ensure_runtime_dirs()
            key_path = cache_dir() / "mobile_private.pem"
        self.key_path = Path(key_path)
        self.public_key_path = self.key_path.with_name(self.key_path.name + PUBLIC_KEY_CACHE_SUFFIX)
        self._password = password.encode("utf-8") if password else None
        self._lock = threading.Lock()
        self._private_key: Optional[ec.EllipticCurvePrivateKey] = None

    def get_or_create_mobile_key_pair(self) -> str:
        with self._lock:
            cached = self._read_cached_public_key()
            if cached:
                return cached
            private_key = self._load_or_generate()
            public_b64 = encode_public_key(private_key.public_key())
            self._write_file(self.public_key_path, public_b64.encode("ascii"))
            return public_b64

    def load_private_key(self) -> ec.EllipticCurvePrivateKey:
        """Return the private key, generating a new pair on first use."""
        with self._lock:
            return self._load_or_generate()

    # Internal helpers ---------------------------------------------------
    def _read_cached_public_key(self) -> Optional[str]:
        if not self.key_path.exists() or not self.public_key_path.exists():
            return None
        try:
            cached = self.public_key_path.read_text(encoding="ascii").strip()
        except OSError as exc:
            LOGGER.warning("Unable to read cached public key %s: %s", self.public_key_path, exc)
            return None
        return cached or None

    def _load_or_generate(self) -> ec.EllipticCurvePrivateKey:
        if self._private_key is not None:
            return self._private_key
        if self.key_path.exists():
            try:
                loaded = serialization.load_pem_private_key(
                    self.key_path.read_bytes(),
                    password=self._password,
                )
            except (OSError, ValueError, TypeError) as exc:
                raise KeyMaterialError(f"Failed to load mobile private key {self.key_path}: {exc}") from exc
            if not isinstance(loaded, ec.EllipticCurvePrivateKey):
                raise KeyMaterialError(f"Mobile private key {self.key_path} is not an EC key")
            LOGGER.debug("Loaded mobile private key from %s", self.key_path)
            self._private_key = loaded
            return loaded

        private_key = ec.generate_private_key(ec.SECP256R1())
        encryption: serialization.KeySerializationEncryption
        if self._password:
            encryption = serialization.BestAvailableEncryption(self._password)
        else:
            encryption = serialization.NoEncryption()
        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
        self._write_file(self.key_path, private_bytes)
        LOGGER.info("Generated new mobile key pair at %s", self.key_path)
        self._private_key = private_key
        return private_key

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            os.chmod(path, 0o600)
        except OSError as exc:
            raise KeyMaterialError(f"Failed to write key material to {path}: {exc}") from exc


def encode_public_key(public_key: ec.EllipticCurvePublicKey) -> str:
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der).decode("ascii")


__all__ = ["KeyProvider", "MobileKeyProvider", "encode_public_key"]
