from __future__ import annotations


def test_pending_session_round_trip(session_issuer):
    pending = session_issuer.issue_pending("register", "sid-1", user_id="u1", username="alice")

    loaded = session_issuer.get_pending(pending.token, "register")

    assert loaded == pending
    assert session_issuer.get_pending(pending.token, "login") is None
    assert session_issuer.get_authenticated(pending.token) is None


def test_pending_session_expires_after_five_minutes(session_issuer, clock):
    pending = session_issuer.issue_pending("login", "sid-1")
    clock.advance(300)
    assert session_issuer.get_pending(pending.token, "login") is not None
    clock.advance(1)
    assert session_issuer.get_pending(pending.token, "login") is None


def test_authenticated_session_lasts_thirty_days(session_issuer, clock):
    session = session_issuer.issue_authenticated("u1", "alice")
    assert session.expires_at - clock() == 30 * 24 * 60 * 60

    clock.advance(29 * 24 * 60 * 60)
    assert session_issuer.get_authenticated(session.token).user_id == "u1"
    clock.advance(2 * 24 * 60 * 60)
    assert session_issuer.get_authenticated(session.token) is None


def test_revoke(session_issuer):
    session = session_issuer.issue_authenticated("u1", None)
    session_issuer.revoke(session.token)
    session_issuer.revoke(session.token)
    session_issuer.revoke(None)
    assert session_issuer.get_authenticated(session.token) is None
    assert session_issuer.get_authenticated(None) is None
