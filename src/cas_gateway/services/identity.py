"""Username format policy applied to every identity before a session is minted."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from cas_gateway.core.errors import UsernameInvalid

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{3,50}$")
_CHARSET = re.compile(r"^[A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class Identity:
    """A verified username."""

    username: str


@dataclass(frozen=True)
class IdentityCheck:
    """Outcome of :meth:`IdentityPolicy.check`; ``rule`` names the first rule that failed."""

    ok: bool
    reason: str | None = None
    rule: str | None = None


_ACCEPTED = IdentityCheck(ok=True)


class IdentityPolicy:
    """Check usernames against the gateway's format rules.

    Rules run in order (``required``, ``length``, ``charset``) and the first
    failing rule decides the rejection reason.
    """

    @staticmethod
    def check(username: Any) -> IdentityCheck:
        if not isinstance(username, str) or not username:
            return IdentityCheck(False, "Username is required and must be a string", "required")
        if len(username) < USERNAME_MIN_LENGTH:
            return IdentityCheck(
                False,
                f"Username must be at least {USERNAME_MIN_LENGTH} characters long",
                "length",
            )
        if len(username) > USERNAME_MAX_LENGTH:
            return IdentityCheck(
                False,
                f"Username must be no more than {USERNAME_MAX_LENGTH} characters long",
                "length",
            )
        # fullmatch, so a trailing newline cannot slip past the anchor
        if _CHARSET.fullmatch(username) is None:
            return IdentityCheck(
                False,
                "Username can only contain letters, numbers, dots, underscores, and hyphens",
                "charset",
            )
        return _ACCEPTED

    @classmethod
    def require(cls, username: Any) -> Identity:
        """Return an ``Identity`` or raise ``UsernameInvalid``."""
        result = cls.check(username)
        if not result.ok:
            raise UsernameInvalid(result.reason or "Invalid username", result.rule or "required")
        return Identity(username=username)
