"""Parsing helpers for WebAuthn binary structures."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, Optional

import cbor2

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_BE = 0x08
FLAG_BS = 0x10
FLAG_AT = 0x40
FLAG_ED = 0x80


class MalformedDataError(ValueError):
    pass


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    if not isinstance(data, str) or not data:
        raise MalformedDataError("Missing base64 value")
    padding = "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(data + padding)
    except (binascii.Error, ValueError) as exc:
        raise MalformedDataError("Invalid base64url value") from exc


def b64_encode(data: bytes) -> str:
    """Standard base64, used for public keys at rest."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(data: str) -> bytes:
    return base64.b64decode(data)


def rp_id_hash(rp_id: str) -> bytes:
    return hashlib.sha256(rp_id.encode("idna")).digest()


@dataclass
class AuthenticatorData:
    rp_id_hash: bytes
    flags: int
    sign_count: int
    aaguid: Optional[bytes] = None
    credential_id: Optional[bytes] = None
    credential_public_key: Optional[Dict[int, Any]] = None
    credential_public_key_bytes: Optional[bytes] = None

    @property
    def user_present(self) -> bool:
        return bool(self.flags & FLAG_UP)

    @property
    def user_verified(self) -> bool:
        return bool(self.flags & FLAG_UV)

    @property
    def backup_eligible(self) -> bool:
        return bool(self.flags & FLAG_BE)

    @property
    def backed_up(self) -> bool:
        return bool(self.flags & FLAG_BS)


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    if len(data) < 37:
        raise MalformedDataError("Authenticator data too short")
    idx = 0
    rp_hash = data[idx : idx + 32]
    idx += 32
    flags = data[idx]
    idx += 1
    sign_count = int.from_bytes(data[idx : idx + 4], "big")
    idx += 4

    parsed = AuthenticatorData(rp_id_hash=rp_hash, flags=flags, sign_count=sign_count)

    if flags & FLAG_AT:
        if len(data) < idx + 18:
            raise MalformedDataError("Malformed attested credential data")
        parsed.aaguid = data[idx : idx + 16]
        idx += 16
        cred_len = int.from_bytes(data[idx : idx + 2], "big")
        idx += 2
        if len(data) < idx + cred_len:
            raise MalformedDataError("Credential id exceeds authenticator data")
        parsed.credential_id = data[idx : idx + cred_len]
        idx += cred_len
        stream = BytesIO(data[idx:])
        try:
            public_key = cbor2.CBORDecoder(stream).decode()
        except (cbor2.CBORDecodeError, EOFError) as exc:
            raise MalformedDataError("Invalid credential public key") from exc
        if not isinstance(public_key, dict):
            raise MalformedDataError("Credential public key is not a COSE map")
        parsed.credential_public_key = public_key
        parsed.credential_public_key_bytes = data[idx : idx + stream.tell()]
        idx += stream.tell()

    if not flags & FLAG_ED and idx != len(data):
        raise MalformedDataError("Unexpected trailing bytes in authenticator data")
    return parsed


def parse_client_data(client_data_json: bytes) -> Dict[str, Any]:
    try:
        client_data = json.loads(client_data_json.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedDataError("clientDataJSON is not valid JSON") from exc
    if not isinstance(client_data, dict):
        raise MalformedDataError("clientDataJSON is not an object")
    return client_data


def parse_attestation_object(data: bytes) -> Dict[str, Any]:
    try:
        attestation = cbor2.loads(data)
    except (cbor2.CBORDecodeError, EOFError, ValueError) as exc:
        raise MalformedDataError("Invalid attestationObject") from exc
    if not isinstance(attestation, dict):
        raise MalformedDataError("attestationObject is not a map")
    auth_data = attestation.get("authData")
    if not isinstance(auth_data, (bytes, bytearray)):
        raise MalformedDataError("Invalid authenticator data")
    if not isinstance(attestation.get("fmt"), str):
        raise MalformedDataError("Missing attestation format")
    if not isinstance(attestation.get("attStmt", {}), dict):
        raise MalformedDataError("Invalid attestation statement")
    return attestation
