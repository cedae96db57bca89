"""WebAuthn registration and authentication ceremonies.

Builds the option structures handed to ``navigator.credentials`` and verifies the
responses an authenticator sends back. Verification never raises: every parsing,
binding or cryptographic failure is returned as a failed ``VerificationResult``
whose ``error`` names the check that did not hold.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar, Union

import cbor2
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from fido2.cose import CoseKey
from pydantic import BaseModel, ValidationError

from .config import RPSettings
from .credentials import CROSS_PLATFORM, PLATFORM, StoredCredential
from .errors import CeremonyError, ErrorKind, VerificationResult
from .schemas import (
    AuthenticationResponse,
    PubKeyCredParam,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRequestOptions,
    RegistrationResponse,
    RelyingPartyEntity,
    UserEntity,
)
from .webauthn import (
    AuthenticatorData,
    MalformedDataError,
    b64_decode,
    b64_encode,
    b64url_decode,
    b64url_encode,
    parse_attestation_object,
    parse_authenticator_data,
    parse_client_data,
    rp_id_hash,
)

LOGGER = logging.getLogger(__name__)

CHALLENGE_BYTES = 32

ModelT = TypeVar("ModelT", bound=BaseModel)


def _coerce(model: Type[ModelT], payload: Union[ModelT, Dict[str, Any], None]) -> ModelT:
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, dict):
        raise CeremonyError(ErrorKind.INVALID_INPUT, "Missing credential response")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise CeremonyError(ErrorKind.INVALID_INPUT, f"Malformed response: {exc}") from exc


def counter_advances(stored: int, reported: int) -> bool:
    """Whether ``reported`` is an acceptable successor of ``stored``.

    Authenticators without counter support report 0 on every use.
    """
    if stored == 0 and reported == 0:
        return True
    return reported > stored


def _parse_cose_key(cose: Dict[int, Any]) -> CoseKey:
    try:
        return CoseKey.parse(cose)
    except (ValueError, KeyError, TypeError) as exc:
        raise CeremonyError(ErrorKind.INVALID_INPUT, "Unparseable credential public key") from exc


def _verify_signature(key: CoseKey, message: bytes, signature: bytes) -> None:
    try:
        key.verify(message, signature)
    except InvalidSignature as exc:
        raise CeremonyError(ErrorKind.SIGNATURE_INVALID, "Signature verification failed") from exc
    except (ValueError, TypeError, KeyError, NotImplementedError) as exc:
        raise CeremonyError(ErrorKind.SIGNATURE_INVALID, f"Unusable public key: {exc}") from exc


class CeremonyEngine:
    def __init__(self, settings: RPSettings) -> None:
        self.settings = settings
        self._rp_id_hash = rp_id_hash(settings.rp_id)

    # Options ------------------------------------------------------------
    def build_registration_challenge(
        self,
        user_id: str,
        user_name: str,
        exclude_credentials: Iterable[StoredCredential] = (),
    ) -> Tuple[Dict[str, Any], str]:
        challenge = b64url_encode(secrets.token_bytes(CHALLENGE_BYTES))
        options = PublicKeyCredentialCreationOptions(
            challenge=challenge,
            rp=RelyingPartyEntity(id=self.settings.rp_id, name=self.settings.rp_name),
            user=UserEntity(
                id=b64url_encode(user_id.encode("utf-8")),
                name=user_name,
                displayName=user_name,
            ),
            pubKeyCredParams=[
                PubKeyCredParam(alg=alg) for alg in self.settings.supported_algorithms
            ],
            timeout=self.settings.timeout_ms,
            excludeCredentials=[
                PublicKeyCredentialDescriptor(
                    id=cred.credential_id, transports=list(cred.transports) or None
                )
                for cred in exclude_credentials
            ],
        )
        return options.model_dump(exclude_none=True), challenge

    def build_authentication_challenge(
        self, allowed_credentials: Optional[Iterable[StoredCredential]] = None
    ) -> Tuple[Dict[str, Any], str]:
        challenge = b64url_encode(secrets.token_bytes(CHALLENGE_BYTES))
        options = PublicKeyCredentialRequestOptions(
            challenge=challenge,
            rpId=self.settings.rp_id,
            timeout=self.settings.timeout_ms,
            allowCredentials=[
                PublicKeyCredentialDescriptor(
                    id=cred.credential_id, transports=list(cred.transports) or None
                )
                for cred in (allowed_credentials or [])
            ],
        )
        return options.model_dump(exclude_none=True), challenge

    # Verification -------------------------------------------------------
    def verify_registration_response(
        self,
        response: Union[RegistrationResponse, Dict[str, Any], None],
        expected_challenge: str,
    ) -> VerificationResult:
        try:
            return self._verify_registration(response, expected_challenge)
        except CeremonyError as exc:
            LOGGER.warning("Registration verification failed (%s): %s", exc.kind.value, exc.detail)
            return VerificationResult.failure(exc.kind, exc.detail)
        except MalformedDataError as exc:
            LOGGER.warning("Registration response malformed: %s", exc)
            return VerificationResult.failure(ErrorKind.INVALID_INPUT, str(exc))
        except Exception as exc:
            LOGGER.exception("Unexpected registration verification error")
            return VerificationResult.failure(ErrorKind.INVALID_INPUT, str(exc))

    def verify_authentication_response(
        self,
        response: Union[AuthenticationResponse, Dict[str, Any], None],
        expected_challenge: str,
        credential: StoredCredential,
    ) -> VerificationResult:
        try:
            return self._verify_authentication(response, expected_challenge, credential)
        except CeremonyError as exc:
            level = logging.ERROR if exc.kind is ErrorKind.POSSIBLE_CLONE else logging.WARNING
            LOGGER.log(level, "Authentication verification failed (%s): %s", exc.kind.value, exc.detail)
            return VerificationResult.failure(exc.kind, exc.detail)
        except MalformedDataError as exc:
            LOGGER.warning("Authentication response malformed: %s", exc)
            return VerificationResult.failure(ErrorKind.INVALID_INPUT, str(exc))
        except Exception as exc:
            LOGGER.exception("Unexpected authentication verification error")
            return VerificationResult.failure(ErrorKind.INVALID_INPUT, str(exc))

    def _verify_registration(self, response, expected_challenge: str) -> VerificationResult:
        payload = _coerce(RegistrationResponse, response)
        if payload.rawId != payload.id:
            raise CeremonyError(ErrorKind.INVALID_INPUT, "rawId does not match id")
        client_data_json = b64url_decode(payload.response.clientDataJSON)
        self._check_client_data(client_data_json, "webauthn.create", expected_challenge)

        attestation = parse_attestation_object(b64url_decode(payload.response.attestationObject))
        auth_data_bytes = bytes(attestation["authData"])
        auth_data = parse_authenticator_data(auth_data_bytes)
        self._check_authenticator_data(auth_data)

        if auth_data.credential_id is None or auth_data.credential_public_key is None:
            raise CeremonyError(ErrorKind.INVALID_INPUT, "Missing attested credential data")
        credential_id = b64url_encode(auth_data.credential_id)
        if credential_id != payload.id:
            raise CeremonyError(ErrorKind.INVALID_INPUT, "Credential id does not match response id")

        algorithm = auth_data.credential_public_key.get(3)
        if algorithm not in self.settings.supported_algorithms:
            raise CeremonyError(ErrorKind.INVALID_INPUT, f"Unsupported algorithm {algorithm}")
        public_key = _parse_cose_key(auth_data.credential_public_key)

        client_data_hash = hashlib.sha256(client_data_json).digest()
        self._verify_attestation_statement(
            attestation["fmt"],
            attestation.get("attStmt", {}),
            auth_data_bytes + client_data_hash,
            public_key,
            algorithm,
        )

        credential = StoredCredential(
            credential_id=credential_id,
            public_key=b64_encode(auth_data.credential_public_key_bytes),
            sign_count=auth_data.sign_count,
            device_type=CROSS_PLATFORM if auth_data.backup_eligible else PLATFORM,
            transports=list(payload.response.transports),
            backed_up=auth_data.backed_up,
        )
        return VerificationResult(verified=True, credential=credential)

    def _verify_authentication(
        self, response, expected_challenge: str, credential: StoredCredential
    ) -> VerificationResult:
        payload = _coerce(AuthenticationResponse, response)
        if payload.rawId != payload.id:
            raise CeremonyError(ErrorKind.INVALID_INPUT, "rawId does not match id")
        if payload.id != credential.credential_id:
            raise CeremonyError(ErrorKind.INVALID_INPUT, "Response is for a different credential")

        client_data_json = b64url_decode(payload.response.clientDataJSON)
        self._check_client_data(client_data_json, "webauthn.get", expected_challenge)

        auth_data_bytes = b64url_decode(payload.response.authenticatorData)
        auth_data = parse_authenticator_data(auth_data_bytes)
        self._check_authenticator_data(auth_data)

        if payload.response.userHandle:
            try:
                handle = b64url_decode(payload.response.userHandle).decode("utf-8")
            except UnicodeDecodeError as exc:
                raise CeremonyError(ErrorKind.INVALID_INPUT, "Undecodable user handle") from exc
            if credential.owner_user_id is not None and handle != credential.owner_user_id:
                raise CeremonyError(ErrorKind.INVALID_INPUT, "User handle does not own credential")

        reported = auth_data.sign_count
        if not counter_advances(credential.sign_count, reported):
            raise CeremonyError(
                ErrorKind.POSSIBLE_CLONE,
                f"Counter for {credential.credential_id} did not advance "
                f"(stored={credential.sign_count}, reported={reported})",
            )

        try:
            cose = cbor2.loads(b64_decode(credential.public_key))
        except (cbor2.CBORDecodeError, ValueError) as exc:
            raise CeremonyError(ErrorKind.SIGNATURE_INVALID, "Stored public key unreadable") from exc
        if not isinstance(cose, dict):
            raise CeremonyError(ErrorKind.SIGNATURE_INVALID, "Stored public key is not a COSE map")
        public_key = _parse_cose_key(cose)
        signature = b64url_decode(payload.response.signature)
        client_data_hash = hashlib.sha256(client_data_json).digest()
        _verify_signature(public_key, auth_data_bytes + client_data_hash, signature)

        return VerificationResult(verified=True, new_counter=reported)

    # Checks -------------------------------------------------------------
    def _check_client_data(self, client_data_json: bytes, expected_type: str, expected_challenge: str) -> None:
        client_data = parse_client_data(client_data_json)
        if client_data.get("type") != expected_type:
            raise CeremonyError(
                ErrorKind.INVALID_INPUT, f"Unexpected client data type {client_data.get('type')!r}"
            )
        challenge = client_data.get("challenge")
        if not isinstance(challenge, str) or not secrets.compare_digest(
            challenge.encode("utf-8"), expected_challenge.encode("utf-8")
        ):
            raise CeremonyError(ErrorKind.CHALLENGE_MISMATCH, "Challenge mismatch")
        origin = client_data.get("origin")
        if origin not in self.settings.expected_origins:
            raise CeremonyError(ErrorKind.ORIGIN_MISMATCH, f"Unexpected origin {origin!r}")

    def _check_authenticator_data(self, auth_data: AuthenticatorData) -> None:
        if not secrets.compare_digest(auth_data.rp_id_hash, self._rp_id_hash):
            raise CeremonyError(ErrorKind.RPID_MISMATCH, "RP ID hash mismatch")
        if not auth_data.user_present:
            raise CeremonyError(ErrorKind.USER_NOT_VERIFIED, "User presence flag not set")
        if not auth_data.user_verified:
            raise CeremonyError(ErrorKind.USER_NOT_VERIFIED, "User verification flag not set")

    def _verify_attestation_statement(
        self,
        fmt: str,
        statement: Dict[str, Any],
        signed_data: bytes,
        credential_key: CoseKey,
        algorithm: int,
    ) -> None:
        if fmt == "none":
            if statement:
                raise CeremonyError(ErrorKind.INVALID_INPUT, "'none' attestation carries a statement")
            return
        if fmt != "packed":
            raise CeremonyError(ErrorKind.INVALID_INPUT, f"Unsupported attestation format {fmt!r}")

        statement_alg = statement.get("alg")
        signature = statement.get("sig")
        if statement_alg not in self.settings.supported_algorithms or not isinstance(
            signature, (bytes, bytearray)
        ):
            raise CeremonyError(ErrorKind.INVALID_INPUT, "Malformed packed attestation statement")

        chain: List[Any] = statement.get("x5c") or []
        if chain:
            try:
                certificate = x509.load_der_x509_certificate(bytes(chain[0]))
                key = CoseKey.for_alg(statement_alg).from_cryptography_key(certificate.public_key())
            except (ValueError, TypeError, AttributeError) as exc:
                raise CeremonyError(ErrorKind.INVALID_INPUT, "Unusable attestation certificate") from exc
        else:
            # Self attestation: signed by the credential key itself.
            if statement_alg != algorithm:
                raise CeremonyError(ErrorKind.INVALID_INPUT, "Self attestation algorithm mismatch")
            key = credential_key
        _verify_signature(key, signed_data, bytes(signature))
