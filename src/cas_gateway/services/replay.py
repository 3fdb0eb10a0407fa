"""Replay protection for login attempts."""

from __future__ import annotations

import logging
import re
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Final, Protocol

import redis

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_MS: Final[int] = 5 * 60 * 1000
MIN_STATE_LENGTH: Final[int] = 16
STATE_TOKEN_BYTES: Final[int] = 24  # 192 bits, 32 url-safe characters

_CLAIM_PREFIX: Final[str] = "login-state:used:"
_BINDING_PREFIX: Final[str] = "login-state:user:"
_TIMESTAMP_RE: Final = re.compile(r"-?[0-9]+")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class LoginState:
    """Anti-replay nonce bound to one login attempt."""

    state: str
    issued_at: int  # epoch milliseconds

    def to_cookie(self) -> str:
        return f"{self.state}.{self.issued_at}"

    @classmethod
    def from_cookie(cls, value: str | None) -> LoginState | None:
        """Parse ``state.issued_at``; return None for anything else."""
        if not value or "." not in value:
            return None
        state, _, issued_at = value.rpartition(".")
        parsed = _parse_issued_at(issued_at)
        if not state or parsed is None or parsed < 0:
            return None
        return cls(state=state, issued_at=parsed)


class ReplayVerdict(str, Enum):
    OK = "ok"
    EXPIRED = "expired"
    MALFORMED = "malformed"


class ReplayStore(Protocol):
    """Short-lived key/value storage for replay bookkeeping."""

    def claim(self, key: str, ttl_seconds: int) -> bool:
        """Mark ``key`` as used; return False if it was already used."""
        ...

    def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def pop(self, key: str) -> str | None: ...


class InMemoryReplayStore:
    """Process-local store. Only correct for a single-instance deployment."""

    def __init__(self, clock: Any = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = Lock()

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, expiry) in self._entries.items() if expiry <= now]
        for key in expired:
            del self._entries[key]

    def claim(self, key: str, ttl_seconds: int) -> bool:
        now = self._clock()
        with self._lock:
            self._purge(now)
            if key in self._entries:
                return False
            self._entries[key] = ("1", now + max(1, ttl_seconds))
            return True

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        now = self._clock()
        with self._lock:
            self._purge(now)
            self._entries[key] = (value, now + max(1, ttl_seconds))

    def get(self, key: str) -> str | None:
        now = self._clock()
        with self._lock:
            self._purge(now)
            entry = self._entries.get(key)
        return entry[0] if entry else None

    def pop(self, key: str) -> str | None:
        now = self._clock()
        with self._lock:
            self._purge(now)
            entry = self._entries.pop(key, None)
        return entry[0] if entry else None


class RedisReplayStore:
    """Redis-backed store shared by every gateway instance.

    A call that fails against Redis is served by an in-process store; the
    next call tries Redis again.
    """

    def __init__(self, client: Any, fallback: InMemoryReplayStore | None = None) -> None:
        self._redis = client
        self._fallback = fallback or InMemoryReplayStore()

    @classmethod
    def from_url(cls, url: str) -> RedisReplayStore:
        return cls(redis.from_url(url))  # type: ignore[no-untyped-call]

    def _degraded(self, exc: Exception) -> None:
        logger.warning("Redis replay store unavailable, using in-process fallback: %s", exc)

    def claim(self, key: str, ttl_seconds: int) -> bool:
        try:
            claimed = bool(self._redis.set(key, "1", nx=True, ex=max(1, int(ttl_seconds))))
        except redis.RedisError as exc:
            self._degraded(exc)
            return self._fallback.claim(key, ttl_seconds)
        # Keys claimed locally during an outage stay claimed.
        return claimed and self._fallback.get(key) is None

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._redis.set(key, value, ex=max(1, int(ttl_seconds)))
        except redis.RedisError as exc:
            self._degraded(exc)
            self._fallback.put(key, value, ttl_seconds)

    def pop(self, key: str) -> str | None:
        try:
            # MULTI/EXEC so GET and DEL happen atomically
            pipe = self._redis.pipeline()
            pipe.get(key)
            pipe.delete(key)
            value, _ = pipe.execute()
        except redis.RedisError as exc:
            self._degraded(exc)
            return self._fallback.pop(key)
        if value is None:
            return self._fallback.pop(key)
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _parse_issued_at(issued_at: Any) -> int | None:
    if isinstance(issued_at, bool):
        return None
    if isinstance(issued_at, int):
        return issued_at
    if isinstance(issued_at, str):
        text = issued_at.strip()
        if _TIMESTAMP_RE.fullmatch(text):
            return int(text)
    return None


class ReplayGuard:
    """Issue and consume login states.

    ``consume`` is one-shot: a state that passed once is remembered for the
    rest of its lifetime and any second presentation is reported as expired.
    """

    def __init__(
        self,
        store: ReplayStore,
        *,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        min_state_length: int = MIN_STATE_LENGTH,
    ) -> None:
        self._store = store
        self.max_age_ms = max_age_ms
        self.min_state_length = min_state_length

    @property
    def _ttl_seconds(self) -> int:
        return max(1, -(-self.max_age_ms // 1000))

    def issue(self, now: int | None = None) -> LoginState:
        """Create a fresh login state from the OS CSPRNG."""
        return LoginState(
            state=secrets.token_urlsafe(STATE_TOKEN_BYTES),
            issued_at=now_ms() if now is None else now,
        )

    def check(self, state: Any, issued_at: Any, now: int | None = None) -> ReplayVerdict:
        """Validate ``state`` and ``issued_at`` without consuming anything."""
        issued = _parse_issued_at(issued_at)
        if issued is None:
            return ReplayVerdict.MALFORMED
        if not isinstance(state, str) or len(state) < self.min_state_length:
            return ReplayVerdict.MALFORMED
        current = now_ms() if now is None else now
        delta = current - issued
        # A negative delta means a tampered or clock-skewed future timestamp.
        if delta < 0 or delta > self.max_age_ms:
            return ReplayVerdict.EXPIRED
        return ReplayVerdict.OK

    def consume(self, state: Any, issued_at: Any, now: int | None = None) -> ReplayVerdict:
        verdict = self.check(state, issued_at, now)
        if verdict is not ReplayVerdict.OK:
            return verdict
        if not self._store.claim(_CLAIM_PREFIX + state, self._ttl_seconds):
            logger.warning("Login state presented more than once")
            return ReplayVerdict.EXPIRED
        return ReplayVerdict.OK

    def bind(self, login_state: LoginState, username: str) -> None:
        """Remember which username a hand-off state was issued for."""
        self._store.put(_BINDING_PREFIX + login_state.state, username, self._ttl_seconds)

    def take_binding(self, state: str) -> str | None:
        """Return and forget the username bound to ``state``."""
        return self._store.pop(_BINDING_PREFIX + state)

    def discard(self, state: str) -> None:
        """Drop any binding for ``state`` and mark it as used."""
        self._store.pop(_BINDING_PREFIX + state)
        self._store.claim(_CLAIM_PREFIX + state, self._ttl_seconds)
