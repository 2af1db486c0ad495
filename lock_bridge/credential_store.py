"""Persisted credential cache keyed by device identity."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import cache_dir, ensure_runtime_dirs
from .errors import StorageError
from .models import Credential, DeviceIdentity

LOGGER = logging.getLogger(__name__)


def _default_store_path() -> Path:
    ensure_runtime_dirs()
    return cache_dir() / "credentials.json"


class CredentialStore:
    """Thread-safe JSON credential cache with atomic whole-document writes.

    Each identity maps to one record holding certificate, device public key and
    mobile public key together, so readers never observe a mix of old and new
    fields.
    """

    def __init__(self, path: Optional[Path | str] = None) -> None:
        self.path = Path(path) if path else _default_store_path()
        self._lock = threading.Lock()
        self._records: Dict[str, Dict[str, Any]] = {}
        self._load_from_disk()

    # Public API ---------------------------------------------------------
    def get(self, identity: DeviceIdentity) -> Optional[Credential]:
        """Return the cached credential for identity, or None on a miss."""
        with self._lock:
            record = self._records.get(identity.cache_key)
        if record is None:
            return None
        try:
            credential = Credential.from_record(record)
        except ValueError as exc:
            LOGGER.warning("Discarding malformed credential for %s: %s", identity.cache_key, exc)
            return None
        if not credential.is_usable:
            LOGGER.info("Cached credential for %s is incomplete; treating as miss", identity.cache_key)
            return None
        return credential

    def put(self, identity: DeviceIdentity, credential: Credential) -> None:
        """Persist credential for identity as a single record."""
        record = credential.to_record()
        record["name"] = identity.name
        with self._lock:
            updated = dict(self._records)
            updated[identity.cache_key] = record
            self._flush(updated)
            self._records = updated
        LOGGER.info("Persisted credential for %s", identity.cache_key)

    def delete(self, identity: DeviceIdentity) -> bool:
        """Drop the cached credential for identity; return whether one existed."""
        with self._lock:
            if identity.cache_key not in self._records:
                return False
            updated = {key: value for key, value in self._records.items() if key != identity.cache_key}
            self._flush(updated)
            self._records = updated
        LOGGER.info("Removed credential for %s", identity.cache_key)
        return True

    def identities(self) -> List[str]:
        with self._lock:
            return sorted(self._records)

    # Internal helpers ---------------------------------------------------
    def _load_from_disk(self) -> None:
        if not self.path.exists():
            LOGGER.debug("No credential store found at %s; starting empty", self.path)
            return
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read credential store {self.path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Failed to parse credential store JSON: %s", exc)
            return
        if isinstance(data, dict):
            self._records = {str(key): value for key, value in data.items() if isinstance(value, dict)}
            LOGGER.info("Loaded %d credentials from %s", len(self._records), self.path)

    def _flush(self, records: Dict[str, Dict[str, Any]]) -> None:
        payload = json.dumps(records, indent=2, sort_keys=True)
        tmp_name: Optional[str] = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise StorageError(f"Failed to write credential store {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass


__all__ = ["CredentialStore"]
