"""Request-level security helpers shared by the middleware and endpoints."""
from __future__ import annotations

import secrets
from collections.abc import Iterable
from urllib.parse import urlsplit

from starlette.requests import Request

CSRF_HEADER = "x-csrf-token"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

SECURITY_HEADERS: dict[str, str] = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self' 'unsafe-inline' 'unsafe-eval'; "
        "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:; "
        "font-src 'self' data:; connect-src 'self' https:; frame-ancestors 'none';"
    ),
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
}


def client_ip(request: Request) -> str:
    """Return the best-effort client address, preferring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or "unknown"


def generate_csrf_token() -> str:
    """Generate a cryptographically secure CSRF token."""
    return secrets.token_urlsafe(32)


def csrf_tokens_match(header_token: str | None, cookie_token: str | None) -> bool:
    """Double-submit comparison: both present and byte-for-byte equal."""
    if not header_token or not cookie_token:
        return False
    return secrets.compare_digest(header_token.encode("utf-8"), cookie_token.encode("utf-8"))


def origin_of(url: str | None) -> str | None:
    """Return ``scheme://host[:port]`` for ``url`` or None when it is not absolute."""
    if not url:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def allowed_request_origins(host: str | None, public_app_url: str | None) -> set[str]:
    """Origins accepted for mutating requests to sensitive endpoints."""
    allowed: set[str] = set()
    if host:
        allowed.add(f"https://{host}")
        allowed.add(f"http://{host}")  # development without TLS
    public_origin = origin_of(public_app_url)
    if public_origin:
        allowed.add(public_origin)
    return allowed


def request_origin_allowed(
    origin: str | None,
    referer: str | None,
    allowed: Iterable[str],
) -> bool:
    """Check ``Origin`` (preferred) or the origin of ``Referer`` against ``allowed``.

    A request carrying neither header is rejected.
    """
    allowed_set = set(allowed)
    if origin:
        return origin in allowed_set
    if referer:
        referer_origin = origin_of(referer)
        return referer_origin is not None and referer_origin in allowed_set
    return False


def referer_allowed(referer: str | None, allowed_urls: Iterable[str | None]) -> bool:
    """Check the ``Referer`` of a CAS redirect against the configured URLs.

    An absent referer passes; browsers commonly strip it on cross-site redirects.
    A present referer must share an origin with one of ``allowed_urls``.
    """
    if not referer:
        return True
    referer_origin = origin_of(referer)
    if referer_origin is None:
        return False
    allowed_origins = {origin_of(url) for url in allowed_urls if url}
    return referer_origin in allowed_origins


def path_matches(path: str, prefixes: Iterable[str]) -> bool:
    return any(path.startswith(prefix) for prefix in prefixes)


def redact_ticket(ticket: str | None) -> str:
    """Shorten a ticket for logs: only the first 10 characters are kept."""
    if not ticket:
        return "null"
    return ticket[:10] + "..."
