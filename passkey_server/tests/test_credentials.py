from __future__ import annotations

import base64

import pytest

from passkey_server.credentials import (
    CounterRegressionError,
    CredentialAlreadyRegisteredError,
    CredentialNotFoundError,
    StoredCredential,
)

PUBLIC_KEY_BYTES = bytes(range(77))


def make_credential(credential_id: str = "cred-1", sign_count: int = 0) -> StoredCredential:
    return StoredCredential(
        credential_id=credential_id,
        public_key=base64.b64encode(PUBLIC_KEY_BYTES).decode("ascii"),
        sign_count=sign_count,
        device_type="platform",
        device_label="Mac",
        transports=["internal"],
    )


def test_store_round_trip(credential_store):
    record_id = credential_store.save("user-1", make_credential())

    loaded = credential_store.find_by_credential_id("user-1", "cred-1")

    assert loaded is not None
    assert loaded.record_id == record_id
    assert loaded.owner_user_id == "user-1"
    assert loaded.device_type == "platform"
    assert loaded.transports == ["internal"]
    assert loaded.sign_count == 0
    assert base64.b64decode(loaded.public_key) == PUBLIC_KEY_BYTES


def test_lookups_are_scoped(credential_store):
    credential_store.save("user-1", make_credential("cred-a"))
    credential_store.save("user-1", make_credential("cred-b"))
    credential_store.save("user-2", make_credential("cred-c"))

    assert [c.credential_id for c in credential_store.list_by_user("user-1")] == ["cred-a", "cred-b"]
    assert credential_store.list_by_user("nobody") == []
    assert credential_store.find_by_credential_id("user-2", "cred-a") is None
    assert credential_store.find_owner_by_credential_id("cred-c") == "user-2"
    assert credential_store.find_owner_by_credential_id("missing") is None


def test_credential_id_is_globally_unique(credential_store):
    credential_store.save("user-1", make_credential("cred-1"))
    with pytest.raises(CredentialAlreadyRegisteredError):
        credential_store.save("user-2", make_credential("cred-1"))
    assert credential_store.find_owner_by_credential_id("cred-1") == "user-1"


def test_update_counter_never_decreases(credential_store):
    record_id = credential_store.save("user-1", make_credential())
    accepted = []
    for counter in [3, 5, 4, 5, 9, 2]:
        try:
            credential_store.update_counter("user-1", record_id, counter)
        except CounterRegressionError:
            continue
        accepted.append(counter)

    assert accepted == [3, 5, 9]
    stored = credential_store.find_by_credential_id("user-1", "cred-1")
    assert stored.sign_count == max(accepted)
    assert stored.last_used_at is not None


def test_counterless_authenticator_stays_at_zero(credential_store):
    record_id = credential_store.save("user-1", make_credential())
    credential_store.update_counter("user-1", record_id, 0)
    credential_store.update_counter("user-1", record_id, 0)
    credential_store.update_counter("user-1", record_id, 1)
    with pytest.raises(CounterRegressionError) as excinfo:
        credential_store.update_counter("user-1", record_id, 0)
    assert excinfo.value.stored == 1
    assert excinfo.value.attempted == 0


def test_update_counter_requires_owner(credential_store):
    record_id = credential_store.save("user-1", make_credential())
    with pytest.raises(CredentialNotFoundError):
        credential_store.update_counter("user-2", record_id, 1)
    with pytest.raises(CredentialNotFoundError):
        credential_store.update_counter("user-1", record_id + 100, 1)
