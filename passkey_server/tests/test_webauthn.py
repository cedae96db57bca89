from __future__ import annotations

import hashlib

import cbor2
import pytest

from passkey_server.webauthn import (
    MalformedDataError,
    b64url_decode,
    b64url_encode,
    parse_attestation_object,
    parse_authenticator_data,
    parse_client_data,
)
from softauth import build_authenticator_data


def test_parse_authenticator_data_with_attested_credential():
    cose_key = cbor2.dumps({1: 2, 3: -7, -1: 1, -2: b"x" * 32, -3: b"y" * 32})
    raw = build_authenticator_data(
        rp_id="example.com",
        sign_count=7,
        credential_id=b"cred",
        credential_public_key=cose_key,
        backup_eligible=True,
    )

    parsed = parse_authenticator_data(raw)

    assert parsed.rp_id_hash == hashlib.sha256(b"example.com").digest()
    assert parsed.sign_count == 7
    assert parsed.user_present and parsed.user_verified
    assert parsed.backup_eligible and parsed.backed_up
    assert parsed.credential_id == b"cred"
    assert parsed.credential_public_key[3] == -7
    assert parsed.credential_public_key_bytes == cose_key


def test_parse_authenticator_data_assertion_has_no_credential():
    raw = build_authenticator_data(rp_id="example.com", sign_count=3, user_verified=False)
    parsed = parse_authenticator_data(raw)
    assert parsed.credential_id is None
    assert not parsed.user_verified
    assert parsed.sign_count == 3


def test_parse_authenticator_data_rejects_short_and_trailing_bytes():
    with pytest.raises(MalformedDataError):
        parse_authenticator_data(b"\x00" * 36)
    raw = build_authenticator_data(rp_id="example.com", sign_count=1)
    with pytest.raises(MalformedDataError):
        parse_authenticator_data(raw + b"\x00")


def test_parse_authenticator_data_rejects_truncated_credential():
    raw = build_authenticator_data(
        rp_id="example.com",
        sign_count=0,
        credential_id=b"c" * 40,
        credential_public_key=b"",
    )
    with pytest.raises(MalformedDataError):
        parse_authenticator_data(raw[:60])


def test_b64url_helpers():
    assert b64url_encode(b"\xfb\xff") == "-_8"
    assert b64url_decode("-_8") == b"\xfb\xff"
    with pytest.raises(MalformedDataError):
        b64url_decode("")


def test_parse_client_data_requires_object():
    assert parse_client_data(b'{"type":"webauthn.get"}')["type"] == "webauthn.get"
    with pytest.raises(MalformedDataError):
        parse_client_data(b"[1, 2]")
    with pytest.raises(MalformedDataError):
        parse_client_data(b"\xff\xfe")


def test_parse_attestation_object_validates_shape():
    auth_data = build_authenticator_data(rp_id="example.com", sign_count=0)
    parsed = parse_attestation_object(cbor2.dumps({"fmt": "none", "authData": auth_data, "attStmt": {}}))
    assert parsed["authData"] == auth_data

    with pytest.raises(MalformedDataError):
        parse_attestation_object(cbor2.dumps({"fmt": "none", "authData": "text", "attStmt": {}}))
    with pytest.raises(MalformedDataError):
        parse_attestation_object(b"\xff")
