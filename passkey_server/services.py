"""Two-phase passkey registration and login flows."""

from __future__ import annotations

import json
import logging
import secrets
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .ceremony import CeremonyEngine
from .challenges import ChallengeStore
from .credentials import (
    CounterRegressionError,
    CredentialAlreadyRegisteredError,
    CredentialNotFoundError,
    CredentialStore,
    StoredCredential,
)
from .errors import CeremonyOutcome, ErrorKind
from .schemas import AuthenticationResponse
from .sessions import AuthenticatedSession, PendingSession, SessionIssuer
from .users import UserDirectory, UserProfile

LOGGER = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3

STAGE_LABELS = {
    "register": "Register",
    "authn": "Authenticate",
}

EVENT_LABELS = {
    ("register", "options.start"): "Creating Register Options",
    ("register", "options.invalid"): "Rejected Register Request",
    ("register", "options.success"): "Issued Register Options",
    ("register", "verify.start"): "Verifying Registration",
    ("register", "verify.expired"): "Registration Challenge Expired",
    ("register", "verify.failed"): "Registration Verification Failed",
    ("register", "verify.duplicate"): "Credential Already Registered",
    ("register", "verify.success"): "Registration Completed",
    ("authn", "options.start"): "Creating Authentication Options",
    ("authn", "options.success"): "Issued Authentication Options",
    ("authn", "verify.start"): "Verifying Authentication",
    ("authn", "verify.expired"): "Authentication Challenge Expired",
    ("authn", "verify.unknown_credential"): "Authentication Unknown Credential",
    ("authn", "verify.failed"): "Authentication Verification Failed",
    ("authn", "verify.clone"): "Possible Cloned Authenticator",
    ("authn", "verify.success"): "Authentication Completed",
}

DEVICE_LABELS = (
    (("iphone", "ipad"), "iPhone"),
    (("windows",), "Windows"),
    (("android",), "Android"),
    (("mac",), "Mac"),
)


def _truncate(value: str, limit: int = 64) -> str:
    if len(value) <= limit:
        return value
    half = limit // 2
    return f"{value[:half]}…{value[-half:]}"


def _build_payload(req: str, **fields: object) -> dict[str, object]:
    payload: dict[str, object] = {"request_id": req}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, str):
            payload[key] = _truncate(value)
        else:
            payload[key] = value
    return payload


def _log(stage: str, event: str, req: str, level: int = logging.INFO, **fields: object) -> None:
    stage_label = STAGE_LABELS.get(stage, stage.title())
    event_label = EVENT_LABELS.get((stage, event), event)
    payload = json.dumps(_build_payload(req, **fields), indent=2, sort_keys=True, default=str)
    message = f"[RP Server: {stage_label}]: {event_label}\n{payload}"
    LOGGER.log(level, message)


def detect_device_label(user_agent: Optional[str]) -> str:
    ua = (user_agent or "").lower()
    for needles, label in DEVICE_LABELS:
        if any(needle in ua for needle in needles):
            return label
    return "Unknown"


@dataclass
class CeremonyStart:
    options: Dict[str, Any]
    pending: PendingSession


class AuthOrchestrator:
    def __init__(
        self,
        engine: CeremonyEngine,
        challenges: ChallengeStore,
        credentials: CredentialStore,
        sessions: SessionIssuer,
        users: UserDirectory,
    ) -> None:
        self.engine = engine
        self.challenges = challenges
        self.credentials = credentials
        self.sessions = sessions
        self.users = users

    # Registration -------------------------------------------------------
    def start_registration(self, username: Any) -> Tuple[Optional[CeremonyStart], Optional[ErrorKind]]:
        req_id = secrets.token_hex(4)
        if not isinstance(username, str) or len(username.strip()) < MIN_USERNAME_LENGTH:
            _log("register", "options.invalid", req_id, level=logging.WARNING)
            return None, ErrorKind.INVALID_INPUT
        username = username.strip()
        _log("register", "options.start", req_id, user=username)

        session_id = str(uuid.uuid4())
        user_id = str(uuid.uuid4())
        existing = self.credentials.list_by_user(user_id)
        options, challenge = self.engine.build_registration_challenge(user_id, username, existing)
        self.challenges.store(session_id, challenge, pending_user_id=user_id)
        pending = self.sessions.issue_pending(
            "register", session_id, user_id=user_id, username=username
        )
        _log(
            "register",
            "options.success",
            req_id,
            user=username,
            user_id=user_id,
            session_id=session_id,
            excluded=len(existing),
        )
        return CeremonyStart(options=options, pending=pending), None

    def finish_registration(
        self,
        pending_token: Optional[str],
        response: Any,
        user_agent: Optional[str] = None,
    ) -> CeremonyOutcome:
        req_id = secrets.token_hex(4)
        if not isinstance(response, dict):
            return CeremonyOutcome.failure(ErrorKind.INVALID_INPUT)
        pending = self.sessions.get_pending(pending_token, "register")
        if pending is None or not pending.user_id or not pending.username:
            _log("register", "verify.expired", req_id, reason="pending session", level=logging.WARNING)
            return CeremonyOutcome.failure(ErrorKind.SESSION_EXPIRED)
        _log("register", "verify.start", req_id, user=pending.username, session_id=pending.session_id)

        # Single attempt: the challenge and pending session are gone from here on.
        challenge = self.challenges.consume(pending.session_id)
        self.sessions.revoke(pending.token)
        if challenge is None or challenge.pending_user_id != pending.user_id:
            _log("register", "verify.expired", req_id, user=pending.username, level=logging.WARNING)
            return CeremonyOutcome.failure(ErrorKind.SESSION_EXPIRED)

        result = self.engine.verify_registration_response(response, challenge.challenge)
        if not result.verified or result.credential is None:
            _log(
                "register",
                "verify.failed",
                req_id,
                user=pending.username,
                error=result.error.value if result.error else None,
                detail=result.detail,
                level=logging.WARNING,
            )
            return CeremonyOutcome.failure(result.error or ErrorKind.INVALID_INPUT)

        credential = result.credential
        if self.credentials.find_owner_by_credential_id(credential.credential_id) is not None:
            _log(
                "register",
                "verify.duplicate",
                req_id,
                user=pending.username,
                credential_id=credential.credential_id,
                level=logging.WARNING,
            )
            return CeremonyOutcome.failure(ErrorKind.CREDENTIAL_ALREADY_REGISTERED)

        credential.device_label = detect_device_label(user_agent)
        try:
            self.credentials.save(pending.user_id, credential, display_name=pending.username)
        except CredentialAlreadyRegisteredError:
            _log(
                "register",
                "verify.duplicate",
                req_id,
                user=pending.username,
                credential_id=credential.credential_id,
                level=logging.WARNING,
            )
            return CeremonyOutcome.failure(ErrorKind.CREDENTIAL_ALREADY_REGISTERED)

        session = self.sessions.issue_authenticated(pending.user_id, pending.username)
        _log(
            "register",
            "verify.success",
            req_id,
            user=pending.username,
            user_id=pending.user_id,
            credential_id=credential.credential_id,
            device_type=credential.device_type,
            device_label=credential.device_label,
            sign_count=credential.sign_count,
        )
        return CeremonyOutcome(
            ok=True,
            user_id=pending.user_id,
            username=pending.username,
            session_token=session.token,
            extra={
                "deviceType": credential.device_type,
                "deviceLabel": credential.device_label,
            },
        )

    # Authentication -----------------------------------------------------
    def start_authentication(self) -> CeremonyStart:
        req_id = secrets.token_hex(4)
        _log("authn", "options.start", req_id)
        session_id = str(uuid.uuid4())
        options, challenge = self.engine.build_authentication_challenge()
        self.challenges.store(session_id, challenge)
        pending = self.sessions.issue_pending("login", session_id)
        _log("authn", "options.success", req_id, session_id=session_id)
        return CeremonyStart(options=options, pending=pending)

    def finish_authentication(self, pending_token: Optional[str], response: Any) -> CeremonyOutcome:
        req_id = secrets.token_hex(4)
        if not isinstance(response, dict):
            return CeremonyOutcome.failure(ErrorKind.INVALID_INPUT)
        pending = self.sessions.get_pending(pending_token, "login")
        if pending is None:
            _log("authn", "verify.expired", req_id, reason="pending session", level=logging.WARNING)
            return CeremonyOutcome.failure(ErrorKind.SESSION_EXPIRED)
        _log("authn", "verify.start", req_id, session_id=pending.session_id)

        challenge = self.challenges.consume(pending.session_id)
        self.sessions.revoke(pending.token)
        if challenge is None:
            _log("authn", "verify.expired", req_id, session_id=pending.session_id, level=logging.WARNING)
            return CeremonyOutcome.failure(ErrorKind.SESSION_EXPIRED)

        try:
            parsed = AuthenticationResponse.model_validate(response)
        except ValidationError:
            _log("authn", "verify.failed", req_id, error=ErrorKind.INVALID_INPUT.value, level=logging.WARNING)
            return CeremonyOutcome.failure(ErrorKind.INVALID_INPUT)

        credential_id = parsed.id
        user_id = self.credentials.find_owner_by_credential_id(credential_id)
        credential = (
            self.credentials.find_by_credential_id(user_id, credential_id) if user_id else None
        )
        if credential is None:
            _log(
                "authn",
                "verify.unknown_credential",
                req_id,
                credential_id=credential_id,
                level=logging.WARNING,
            )
            return CeremonyOutcome.failure(ErrorKind.UNRECOGNIZED_CREDENTIAL)

        result = self.engine.verify_authentication_response(parsed, challenge.challenge, credential)
        if not result.verified:
            clone = result.error is ErrorKind.POSSIBLE_CLONE
            _log(
                "authn",
                "verify.clone" if clone else "verify.failed",
                req_id,
                user_id=user_id,
                credential_id=credential_id,
                error=result.error.value if result.error else None,
                detail=result.detail,
                level=logging.ERROR if clone else logging.WARNING,
            )
            return CeremonyOutcome.failure(result.error or ErrorKind.INVALID_INPUT)

        try:
            self.credentials.update_counter(user_id, credential.record_id, result.new_counter)
        except CounterRegressionError as exc:
            # Another authentication with this counter value committed first.
            _log(
                "authn",
                "verify.clone",
                req_id,
                user_id=user_id,
                credential_id=credential_id,
                stored=exc.stored,
                reported=exc.attempted,
                level=logging.ERROR,
            )
            return CeremonyOutcome.failure(ErrorKind.POSSIBLE_CLONE)
        except CredentialNotFoundError:
            return CeremonyOutcome.failure(ErrorKind.UNRECOGNIZED_CREDENTIAL)

        self.users.update_last_login(user_id)
        profile = self.users.get_user(user_id)
        username = profile.display_name if profile else None
        session = self.sessions.issue_authenticated(user_id, username)
        _log(
            "authn",
            "verify.success",
            req_id,
            user_id=user_id,
            credential_id=credential_id,
            sign_count=result.new_counter,
        )
        return CeremonyOutcome(
            ok=True, user_id=user_id, username=username, session_token=session.token
        )

    # Sessions -----------------------------------------------------------
    def current_session(self, token: Optional[str]) -> Optional[Tuple[AuthenticatedSession, UserProfile]]:
        session = self.sessions.get_authenticated(token)
        if session is None:
            return None
        profile = self.users.get_user(session.user_id)
        if profile is None:
            self.sessions.revoke(session.token)
            return None
        return session, profile

    def logout(self, *tokens: Optional[str]) -> None:
        for token in tokens:
            self.sessions.revoke(token)

    def list_credentials(self, user_id: str) -> List[StoredCredential]:
        return self.credentials.list_by_user(user_id)
