"""Flask application exposing the passkey endpoints."""

from __future__ import annotations

import logging
from functools import wraps
from typing import Optional

from flask import Flask, g, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from .ceremony import CeremonyEngine
from .challenges import ChallengeStore
from .config import RPSettings
from .credentials import CredentialStore
from .database import Database
from .errors import CeremonyOutcome, ErrorKind, StoreUnavailableError
from .schemas import CeremonyFinishRequest, RegisterStartRequest, RPResponse
from .services import AuthOrchestrator
from .sessions import SessionIssuer
from .users import UserDirectory

LOGGER = logging.getLogger(__name__)

REGISTER_COOKIE = "passkey_session"
LOGIN_COOKIE = "auth_session"
SESSION_COOKIE = "session"

AUTH_FAILED = "Authentication failed. Please try again."

ERROR_RESPONSES = {
    ErrorKind.INVALID_INPUT: (400, "Invalid request"),
    ErrorKind.SESSION_EXPIRED: (400, "Session expired. Please try again."),
    ErrorKind.CHALLENGE_MISMATCH: (400, AUTH_FAILED),
    ErrorKind.ORIGIN_MISMATCH: (400, AUTH_FAILED),
    ErrorKind.RPID_MISMATCH: (400, AUTH_FAILED),
    ErrorKind.USER_NOT_VERIFIED: (400, AUTH_FAILED),
    ErrorKind.SIGNATURE_INVALID: (400, AUTH_FAILED),
    ErrorKind.POSSIBLE_CLONE: (400, AUTH_FAILED),
    ErrorKind.UNRECOGNIZED_CREDENTIAL: (401, "Passkey not recognized. Please register first."),
    ErrorKind.CREDENTIAL_ALREADY_REGISTERED: (400, "This passkey is already registered."),
}


def _error(kind: ErrorKind, login: bool = False):
    status, message = ERROR_RESPONSES[kind]
    # Login failures are reported as 401 regardless of which check failed.
    if login and kind not in (ErrorKind.INVALID_INPUT, ErrorKind.SESSION_EXPIRED):
        status = 401
    return jsonify(RPResponse(success=False, message=message).model_dump()), status


def build_orchestrator(settings: RPSettings, db: Database) -> AuthOrchestrator:
    return AuthOrchestrator(
        engine=CeremonyEngine(settings),
        challenges=ChallengeStore(db, ttl_seconds=settings.challenge_ttl_seconds),
        credentials=CredentialStore(db),
        sessions=SessionIssuer(
            db,
            pending_ttl_seconds=settings.pending_session_ttl_seconds,
            session_ttl_seconds=settings.session_ttl_seconds,
        ),
        users=UserDirectory(db),
    )


def create_app(
    settings: RPSettings | None = None,
    orchestrator: Optional[AuthOrchestrator] = None,
) -> Flask:
    settings = settings or RPSettings()
    if orchestrator is None:
        db = Database(settings)
        db.create_all()
        orchestrator = build_orchestrator(settings, db)

    app = Flask(__name__)
    app.extensions["passkey_orchestrator"] = orchestrator
    CORS(app, origins=settings.expected_origins, supports_credentials=True)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    def set_cookie(response, name: str, value: str, max_age: int) -> None:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            httponly=True,
            secure=settings.cookie_secure,
            samesite="Strict",
            path="/",
        )

    def finish_payload() -> Optional[dict]:
        try:
            return CeremonyFinishRequest.model_validate(request.get_json(silent=True) or {}).response
        except ValidationError:
            return None

    def signed_in(outcome: CeremonyOutcome, message: str, clear_cookie: str):
        response = jsonify(
            RPResponse(
                success=True,
                message=message,
                data={"userId": outcome.user_id, "username": outcome.username, **outcome.extra},
            ).model_dump()
        )
        response.delete_cookie(clear_cookie, path="/")
        set_cookie(response, SESSION_COOKIE, outcome.session_token, settings.session_ttl_seconds)
        return response

    def login_required(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            current = orchestrator.current_session(request.cookies.get(SESSION_COOKIE))
            if current is None:
                return jsonify(RPResponse(success=False, message="Not authenticated").model_dump()), 401
            g.auth_session, g.user = current
            return view(*args, **kwargs)

        return wrapper

    @app.post("/auth/register")
    def register_start():
        try:
            payload = RegisterStartRequest.model_validate(request.get_json(silent=True) or {})
        except ValidationError:
            return _error(ErrorKind.INVALID_INPUT)
        start, error = orchestrator.start_registration(payload.username)
        if error is not None:
            return (
                jsonify(
                    RPResponse(
                        success=False, message="Username must be at least 3 characters"
                    ).model_dump()
                ),
                400,
            )
        response = jsonify(RPResponse(success=True, data={"options": start.options}).model_dump())
        set_cookie(response, REGISTER_COOKIE, start.pending.token, settings.pending_session_ttl_seconds)
        return response

    @app.put("/auth/register")
    def register_finish():
        payload = finish_payload()
        if payload is None:
            return _error(ErrorKind.INVALID_INPUT)
        outcome = orchestrator.finish_registration(
            request.cookies.get(REGISTER_COOKIE),
            payload,
            user_agent=request.headers.get("User-Agent"),
        )
        if not outcome.ok:
            response, status = _error(outcome.error)
            response.delete_cookie(REGISTER_COOKIE, path="/")
            return response, status
        label = outcome.extra.get("deviceLabel", "Unknown")
        return signed_in(outcome, f"Passkey registered for {label}!", REGISTER_COOKIE)

    @app.post("/auth/login")
    def login_start():
        start = orchestrator.start_authentication()
        response = jsonify(RPResponse(success=True, data={"options": start.options}).model_dump())
        set_cookie(response, LOGIN_COOKIE, start.pending.token, settings.pending_session_ttl_seconds)
        return response

    @app.put("/auth/login")
    def login_finish():
        payload = finish_payload()
        if payload is None:
            return _error(ErrorKind.INVALID_INPUT, login=True)
        outcome = orchestrator.finish_authentication(request.cookies.get(LOGIN_COOKIE), payload)
        if not outcome.ok:
            response, status = _error(outcome.error, login=True)
            response.delete_cookie(LOGIN_COOKIE, path="/")
            return response, status
        return signed_in(outcome, "Authentication successful!", LOGIN_COOKIE)

    @app.get("/auth/session")
    def session_status():
        current = orchestrator.current_session(request.cookies.get(SESSION_COOKIE))
        if current is None:
            response = jsonify({"authenticated": False, "user": None})
            response.delete_cookie(SESSION_COOKIE, path="/")
            return response
        session, user = current
        return jsonify(
            {
                "authenticated": True,
                "user": {
                    "id": user.id,
                    "name": session.username or user.display_name,
                    "lastLogin": user.last_login,
                },
            }
        )

    @app.delete("/auth/session")
    def logout():
        orchestrator.logout(
            request.cookies.get(SESSION_COOKIE),
            request.cookies.get(REGISTER_COOKIE),
            request.cookies.get(LOGIN_COOKIE),
        )
        response = jsonify(RPResponse(success=True, message="Logged out successfully").model_dump())
        for name in (SESSION_COOKIE, REGISTER_COOKIE, LOGIN_COOKIE):
            response.delete_cookie(name, path="/")
        return response

    @app.get("/auth/credentials")
    @login_required
    def credentials():
        items = [
            {
                "credentialId": cred.credential_id,
                "deviceType": cred.device_type,
                "deviceLabel": cred.device_label,
                "transports": cred.transports,
                "createdAt": cred.created_at,
                "lastUsedAt": cred.last_used_at,
            }
            for cred in orchestrator.list_credentials(g.user.id)
        ]
        return jsonify(RPResponse(success=True, data={"credentials": items}).model_dump())

    @app.errorhandler(StoreUnavailableError)
    def handle_store_unavailable(error):
        LOGGER.error("Credential store unavailable: %s", error)
        return (
            jsonify(
                RPResponse(success=False, message="Service temporarily unavailable").model_dump()
            ),
            503,
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
