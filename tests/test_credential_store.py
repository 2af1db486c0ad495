from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from lock_bridge import credential_store
from lock_bridge.credential_store import CredentialStore
from lock_bridge.errors import StorageError
from lock_bridge.models import Credential, DeviceIdentity

IDENTITY = DeviceIdentity(serial_number="10530206-030484", device_id="273450", name="Lock-40C5")
OTHER = DeviceIdentity(serial_number="10530206-099999", device_id="273451", name="Lock-Back")


def _credential(tag: bytes = b"a") -> Credential:
    return Credential(
        certificate=b"cert-" + tag,
        device_public_key=b"device-" + tag,
        mobile_public_key=b"mobile-" + tag,
        expiration=datetime(2027, 1, 1, tzinfo=timezone.utc),
    )


def test_put_then_get_survives_reload(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    store = CredentialStore(path)
    store.put(IDENTITY, _credential())

    reloaded = CredentialStore(path)
    assert reloaded.get(IDENTITY) == _credential()
    assert reloaded.identities() == ["10530206-030484:273450"]

    record = json.loads(path.read_text(encoding="utf-8"))["10530206-030484:273450"]
    assert record["name"] == "Lock-40C5"
    assert record["expiration"] == "2027-01-01T00:00:00+00:00"


def test_identities_are_stored_independently(tmp_path) -> None:
    store = CredentialStore(tmp_path / "credentials.json")
    store.put(IDENTITY, _credential(b"a"))
    store.put(OTHER, _credential(b"b"))

    assert store.get(IDENTITY).certificate == b"cert-a"
    assert store.get(OTHER).certificate == b"cert-b"


def test_missing_identity_is_a_miss(tmp_path) -> None:
    store = CredentialStore(tmp_path / "credentials.json")
    assert store.get(IDENTITY) is None


def test_incomplete_record_is_treated_as_miss(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text(
        json.dumps({IDENTITY.cache_key: {"certificate": "Y2VydA==", "devicePublicKey": "", "mobilePublicKey": ""}}),
        encoding="utf-8",
    )
    assert CredentialStore(path).get(IDENTITY) is None


def test_malformed_base64_is_treated_as_miss(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text(
        json.dumps({IDENTITY.cache_key: {"certificate": "!!", "devicePublicKey": "!!", "mobilePublicKey": "!!"}}),
        encoding="utf-8",
    )
    assert CredentialStore(path).get(IDENTITY) is None


def test_corrupt_document_starts_empty(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    path.write_text("{not json", encoding="utf-8")

    store = CredentialStore(path)
    assert store.identities() == []
    store.put(IDENTITY, _credential())
    assert CredentialStore(path).get(IDENTITY) == _credential()


def test_failed_write_keeps_previous_document(tmp_path, monkeypatch) -> None:
    path = tmp_path / "credentials.json"
    store = CredentialStore(path)
    store.put(IDENTITY, _credential(b"a"))
    before = path.read_text(encoding="utf-8")

    def _fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(credential_store.os, "replace", _fail_replace)
    with pytest.raises(StorageError):
        store.put(OTHER, _credential(b"b"))

    assert path.read_text(encoding="utf-8") == before
    assert store.get(OTHER) is None
    assert store.get(IDENTITY).certificate == b"cert-a"
    assert [p.name for p in tmp_path.iterdir()] == ["credentials.json"]


def test_delete_removes_only_that_identity(tmp_path) -> None:
    path = tmp_path / "credentials.json"
    store = CredentialStore(path)
    store.put(IDENTITY, _credential(b"a"))
    store.put(OTHER, _credential(b"b"))

    assert store.delete(IDENTITY) is True
    assert store.delete(IDENTITY) is False
    assert CredentialStore(path).identities() == [OTHER.cache_key]
