# tests/services/test_session_issuer.py
"""Tests for session token issue, refresh and verification."""

import pytest
from jose import jwt
from starlette.responses import Response

from cas_gateway.api.cookies import set_session_cookie
from cas_gateway.core.errors import (
    ConfigurationError,
    SessionError,
    SessionExpired,
    SessionMalformed,
    SessionSignatureInvalid,
)
from cas_gateway.services.identity import Identity
from cas_gateway.services.session import SessionIssuer
from tests.conftest import make_settings

SECRET = "k" * 32
START = 1_700_000_000
HOUR = 60 * 60


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def issuer(clock: FakeClock) -> SessionIssuer:
    return SessionIssuer(SECRET, clock=clock)


def test_issue_then_verify_round_trip(issuer: SessionIssuer) -> None:
    session = issuer.issue(Identity("alice"))
    verified = issuer.verify(session.token)

    assert verified.identity == Identity("alice")
    assert verified.subject_id == "alice"
    assert verified.display_name == "alice"
    assert verified.issued_at == START
    assert verified.expires_at == session.expires_at


def test_expiry_is_idle_timeout_capped_by_max_lifetime(issuer: SessionIssuer) -> None:
    session = issuer.issue(Identity("alice"))
    assert session.expires_at == START + 4 * HOUR


def test_verify_after_expiry_fails(issuer: SessionIssuer, clock: FakeClock) -> None:
    session = issuer.issue(Identity("alice"))
    clock.now = session.expires_at + 1
    with pytest.raises(SessionExpired):
        issuer.verify(session.token)


def test_verify_at_expiry_instant_fails(issuer: SessionIssuer, clock: FakeClock) -> None:
    session = issuer.issue(Identity("alice"))
    clock.now = session.expires_at
    with pytest.raises(SessionExpired):
        issuer.verify(session.token)


def test_refresh_slides_idle_window_but_keeps_issue_time(
    issuer: SessionIssuer, clock: FakeClock
) -> None:
    session = issuer.issue(Identity("alice"))
    clock.now = START + HOUR
    assert issuer.needs_refresh(session) is True

    refreshed = issuer.refresh(session)
    assert refreshed.issued_at == START
    assert refreshed.refreshed_at == START + HOUR
    assert refreshed.expires_at == START + 5 * HOUR
    assert issuer.verify(refreshed.token).refreshed_at == START + HOUR


def test_refresh_never_exceeds_max_lifetime(issuer: SessionIssuer, clock: FakeClock) -> None:
    session = issuer.issue(Identity("alice"))
    for step in range(1, 30):
        clock.now = START + step * HOUR
        if clock.now >= session.expires_at:
            break
        session = issuer.refresh(session)
        assert session.expires_at <= START + 24 * HOUR
    assert session.expires_at == START + 24 * HOUR


def test_cookie_lifetime_follows_issuer_clock(issuer: SessionIssuer, clock: FakeClock) -> None:
    session = issuer.issue(Identity("alice"))
    assert session.max_age_seconds == 4 * HOUR

    refreshed = session
    for step in range(1, 24):
        clock.now = START + step * HOUR
        refreshed = issuer.refresh(refreshed)
    assert refreshed.max_age_seconds == HOUR

    response = Response()
    set_session_cookie(response, make_settings(), refreshed)
    assert f"max-age={HOUR}" in response.headers["set-cookie"].lower()


def test_needs_refresh_false_for_fresh_session(issuer: SessionIssuer, clock: FakeClock) -> None:
    session = issuer.issue(Identity("alice"))
    clock.now = START + HOUR - 1
    assert issuer.needs_refresh(session) is False


def test_refresh_of_expired_session_fails(issuer: SessionIssuer, clock: FakeClock) -> None:
    session = issuer.issue(Identity("alice"))
    clock.now = session.expires_at
    with pytest.raises(SessionExpired):
        issuer.refresh(session)


def test_tampered_payload_is_rejected(issuer: SessionIssuer) -> None:
    session = issuer.issue(Identity("alice"))
    header, _, signature = session.token.split(".")
    forged_payload = jwt.encode(
        {"sub": "mallory", "iat": START, "rat": START, "exp": START + HOUR},
        "another-secret-of-at-least-32-bytes!!",
    ).split(".")[1]

    with pytest.raises(SessionSignatureInvalid):
        issuer.verify(f"{header}.{forged_payload}.{signature}")


def test_token_signed_with_other_secret_is_rejected(clock: FakeClock) -> None:
    other = SessionIssuer("z" * 32, clock=clock)
    token = other.issue(Identity("alice")).token

    with pytest.raises(SessionSignatureInvalid):
        SessionIssuer(SECRET, clock=clock).verify(token)


@pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c"])
def test_garbage_tokens_are_malformed(issuer: SessionIssuer, token: str | None) -> None:
    with pytest.raises(SessionMalformed):
        issuer.verify(token)


def test_missing_subject_is_malformed(issuer: SessionIssuer) -> None:
    token = jwt.encode({"iat": START, "exp": START + HOUR}, SECRET, algorithm="HS256")
    with pytest.raises(SessionMalformed):
        issuer.verify(token)


def test_expiry_beyond_max_lifetime_is_malformed(issuer: SessionIssuer) -> None:
    token = jwt.encode(
        {"sub": "alice", "iat": START, "exp": START + 48 * HOUR},
        SECRET,
        algorithm="HS256",
    )
    with pytest.raises(SessionMalformed):
        issuer.verify(token)


def test_all_failures_are_session_errors(issuer: SessionIssuer) -> None:
    with pytest.raises(SessionError):
        issuer.verify("not-a-jwt")


def test_short_secret_is_refused() -> None:
    with pytest.raises(ConfigurationError):
        SessionIssuer("too-short")


def test_verify_identity(issuer: SessionIssuer) -> None:
    token = issuer.issue(Identity("bob"), display_name="Bob B.").token
    assert issuer.verify_identity(token) == Identity("bob")
    assert issuer.verify(token).display_name == "Bob B."
