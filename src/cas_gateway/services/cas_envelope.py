"""Parsing of CAS ``serviceValidate`` response bodies.

CAS servers disagree on whether they prefix elements with the ``cas:``
namespace, so the default parser matches both forms. It only understands the
narrow CAS 2/3 envelope; callers depend on the :class:`EnvelopeParser`
protocol so another strategy can replace it.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from typing import Protocol

UNKNOWN_FAILURE_CODE = "UNKNOWN"
DEFAULT_FAILURE_MESSAGE = "Authentication failed"

_SUCCESS = re.compile(
    r"<(?:cas:)?authenticationSuccess\b[^>]*>(?P<body>.*?)</(?:cas:)?authenticationSuccess\s*>",
    re.DOTALL,
)
_FAILURE = re.compile(
    r"<(?:cas:)?authenticationFailure\b(?P<attrs>[^>]*)>(?P<body>.*?)"
    r"</(?:cas:)?authenticationFailure\s*>",
    re.DOTALL,
)
_FAILURE_CODE = re.compile(r"""\bcode\s*=\s*["'](?P<code>[^"']*)["']""")
_USER = re.compile(r"<(?:cas:)?user\s*>(?P<user>[^<]*)</(?:cas:)?user\s*>")
_ATTRIBUTES = re.compile(
    r"<(?:cas:)?attributes\s*>(?P<body>.*?)</(?:cas:)?attributes\s*>",
    re.DOTALL,
)
_ATTRIBUTE = re.compile(
    r"<(?:cas:)?(?P<name>[A-Za-z_][\w.-]*)\s*>(?P<value>[^<]*)</(?:cas:)?(?P=name)\s*>"
)


@dataclass(frozen=True)
class CasSuccess:
    """Success envelope. ``user`` is untrusted until IdentityPolicy accepts it."""

    user: str
    attributes: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class CasFailure:
    code: str
    message: str


@dataclass(frozen=True)
class CasMalformed:
    reason: str


CasEnvelope = CasSuccess | CasFailure | CasMalformed


class EnvelopeParser(Protocol):
    def parse(self, body: str) -> CasEnvelope: ...


def _attributes(success_body: str) -> dict[str, list[str]]:
    block = _ATTRIBUTES.search(success_body)
    if block is None:
        return {}
    collected: dict[str, list[str]] = {}
    for match in _ATTRIBUTE.finditer(block.group("body")):
        collected.setdefault(match.group("name"), []).append(
            html.unescape(match.group("value").strip())
        )
    return collected


class RegexEnvelopeParser:
    """Tolerant matcher for namespaced and unnamespaced CAS envelopes."""

    def parse(self, body: str) -> CasEnvelope:
        success = _SUCCESS.search(body)
        if success is not None:
            content = success.group("body")
            user_match = _USER.search(content)
            username = html.unescape(user_match.group("user")).strip() if user_match else ""
            if not username:
                return CasMalformed("No username in CAS response")
            return CasSuccess(user=username, attributes=_attributes(content))

        failure = _FAILURE.search(body)
        if failure is not None:
            code_match = _FAILURE_CODE.search(failure.group("attrs"))
            code = code_match.group("code").strip() if code_match else ""
            message = html.unescape(failure.group("body")).strip()
            return CasFailure(
                code=code or UNKNOWN_FAILURE_CODE,
                message=message or DEFAULT_FAILURE_MESSAGE,
            )

        return CasMalformed("Invalid CAS response format")


def parse_cas_envelope(body: str) -> CasEnvelope:
    return RegexEnvelopeParser().parse(body)
