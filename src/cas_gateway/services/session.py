"""Signed session tokens bound to a verified identity."""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt

from cas_gateway.core.errors import (
    ConfigurationError,
    SessionExpired,
    SessionMalformed,
    SessionSignatureInvalid,
)
from cas_gateway.core.settings import MIN_SECRET_BYTES
from cas_gateway.services.identity import Identity

DEFAULT_MAX_LIFETIME_SECONDS = 24 * 60 * 60
DEFAULT_IDLE_TIMEOUT_SECONDS = 4 * 60 * 60
DEFAULT_UPDATE_AGE_SECONDS = 60 * 60


@dataclass(frozen=True)
class Session:
    """Decoded session claims plus the token they came from."""

    subject_id: str
    display_name: str
    issued_at: int
    expires_at: int
    refreshed_at: int
    token: str

    @property
    def identity(self) -> Identity:
        return Identity(username=self.subject_id)

    @property
    def max_age_seconds(self) -> int:
        """Remaining lifetime as seen by the issuer clock when this token was minted."""
        return max(0, self.expires_at - self.refreshed_at)


def _int_claim(claims: dict[str, Any], name: str) -> int:
    value = claims.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise SessionMalformed(f"Session claim '{name}' is missing or not an integer")
    return value


class SessionIssuer:
    """Mint, refresh and verify HS256 session tokens.

    ``expires_at`` is the earlier of ``refreshed_at + idle_timeout`` and
    ``issued_at + max_lifetime``; refreshing slides the first bound but never
    the second.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        max_lifetime_seconds: int = DEFAULT_MAX_LIFETIME_SECONDS,
        idle_timeout_seconds: int = DEFAULT_IDLE_TIMEOUT_SECONDS,
        update_age_seconds: int = DEFAULT_UPDATE_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if len(secret.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ConfigurationError(
                f"Session signing secret must be at least {MIN_SECRET_BYTES} bytes"
            )
        self._secret = secret
        self.algorithm = algorithm
        self.max_lifetime_seconds = max_lifetime_seconds
        self.idle_timeout_seconds = idle_timeout_seconds
        self.update_age_seconds = update_age_seconds
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _mint(self, subject_id: str, display_name: str, issued_at: int, refreshed_at: int) -> Session:
        expires_at = min(
            refreshed_at + self.idle_timeout_seconds,
            issued_at + self.max_lifetime_seconds,
        )
        claims: dict[str, object] = {
            "sub": subject_id,
            "name": display_name,
            "iat": issued_at,
            "rat": refreshed_at,
            "exp": expires_at,
            "jti": secrets.token_hex(8),
        }
        token: str = jwt.encode(claims, self._secret, algorithm=self.algorithm)
        return Session(
            subject_id=subject_id,
            display_name=display_name,
            issued_at=issued_at,
            expires_at=expires_at,
            refreshed_at=refreshed_at,
            token=token,
        )

    def issue(self, identity: Identity, display_name: str | None = None) -> Session:
        """Create a new session for an identity that already passed IdentityPolicy."""
        now = self._now()
        return self._mint(identity.username, display_name or identity.username, now, now)

    def needs_refresh(self, session: Session) -> bool:
        return self._now() - session.refreshed_at >= self.update_age_seconds

    def refresh(self, session: Session) -> Session:
        """Re-sign ``session`` with a new activity timestamp; ``issued_at`` is preserved."""
        now = self._now()
        if now >= session.expires_at:
            raise SessionExpired("Cannot refresh an expired session")
        return self._mint(session.subject_id, session.display_name, session.issued_at, now)

    def verify(self, token: str | None) -> Session:
        """Decode and check ``token``.

        Raises:
            SessionMalformed: The token is not a JWT or lacks required claims.
            SessionSignatureInvalid: The signature does not match the server secret.
            SessionExpired: ``expires_at`` has passed.
        """
        if not token:
            raise SessionMalformed("Session token is empty")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                # expiry is checked below against the injected clock
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as err:
            try:
                jwt.get_unverified_claims(token)
            except JWTError:
                raise SessionMalformed("Session token is not a valid JWT") from err
            raise SessionSignatureInvalid("Session signature verification failed") from err

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise SessionMalformed("Session token has no subject")
        issued_at = _int_claim(claims, "iat")
        expires_at = _int_claim(claims, "exp")
        refreshed_at = claims.get("rat", issued_at)
        if isinstance(refreshed_at, bool) or not isinstance(refreshed_at, int):
            raise SessionMalformed("Session claim 'rat' is not an integer")
        if expires_at > issued_at + self.max_lifetime_seconds:
            raise SessionMalformed("Session expiry exceeds the maximum lifetime")

        if self._now() >= expires_at:
            raise SessionExpired("Session has expired")

        name = claims.get("name")
        return Session(
            subject_id=subject,
            display_name=name if isinstance(name, str) and name else subject,
            issued_at=issued_at,
            expires_at=expires_at,
            refreshed_at=refreshed_at,
            token=token,
        )

    def verify_identity(self, token: str | None) -> Identity:
        return self.verify(token).identity
