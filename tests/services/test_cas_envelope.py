# tests/services/test_cas_envelope.py
"""Tests for the CAS serviceValidate response parser."""

from cas_gateway.services.cas_envelope import (
    CasFailure,
    CasMalformed,
    CasSuccess,
    parse_cas_envelope,
)

ATTRIBUTES = (
    "    <cas:attributes>\n"
    "      <cas:mail>alice@example.edu</cas:mail>\n"
    "      <cas:memberOf>staff</cas:memberOf>\n"
    "      <cas:memberOf>library</cas:memberOf>\n"
    "    </cas:attributes>\n"
)


def test_namespaced_success() -> None:
    body = (
        '<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">'
        "<cas:authenticationSuccess><cas:user>alice</cas:user></cas:authenticationSuccess>"
        "</cas:serviceResponse>"
    )
    assert parse_cas_envelope(body) == CasSuccess(user="alice")


def test_unprefixed_success_with_whitespace() -> None:
    body = (
        "<serviceResponse>\n  <authenticationSuccess>\n"
        "    <user>  bob  </user>\n  </authenticationSuccess>\n</serviceResponse>"
    )
    assert parse_cas_envelope(body) == CasSuccess(user="bob")


def test_success_collects_attributes() -> None:
    body = (
        "<cas:serviceResponse><cas:authenticationSuccess>"
        f"<cas:user>alice</cas:user>\n{ATTRIBUTES}"
        "</cas:authenticationSuccess></cas:serviceResponse>"
    )
    envelope = parse_cas_envelope(body)
    assert isinstance(envelope, CasSuccess)
    assert envelope.attributes == {
        "mail": ["alice@example.edu"],
        "memberOf": ["staff", "library"],
    }


def test_success_without_user_is_malformed() -> None:
    body = "<cas:serviceResponse><cas:authenticationSuccess></cas:authenticationSuccess></cas:serviceResponse>"
    assert isinstance(parse_cas_envelope(body), CasMalformed)


def test_success_with_blank_user_is_malformed() -> None:
    body = (
        "<cas:serviceResponse><cas:authenticationSuccess>"
        "<cas:user>   </cas:user></cas:authenticationSuccess></cas:serviceResponse>"
    )
    assert isinstance(parse_cas_envelope(body), CasMalformed)


def test_failure_with_code_and_message() -> None:
    body = (
        "<cas:serviceResponse>"
        '<cas:authenticationFailure code="INVALID_TICKET">\n'
        "  Ticket ST-1856339 not recognized\n"
        "</cas:authenticationFailure></cas:serviceResponse>"
    )
    assert parse_cas_envelope(body) == CasFailure(
        code="INVALID_TICKET",
        message="Ticket ST-1856339 not recognized",
    )


def test_failure_defaults() -> None:
    body = "<cas:serviceResponse><cas:authenticationFailure></cas:authenticationFailure></cas:serviceResponse>"
    assert parse_cas_envelope(body) == CasFailure(code="UNKNOWN", message="Authentication failed")


def test_failure_with_single_quoted_code() -> None:
    body = "<authenticationFailure code='INVALID_SERVICE'>bad service</authenticationFailure>"
    assert parse_cas_envelope(body) == CasFailure(code="INVALID_SERVICE", message="bad service")


def test_neither_envelope_is_malformed() -> None:
    for body in ["", "<html><body>Maintenance</body></html>", "not xml at all"]:
        assert isinstance(parse_cas_envelope(body), CasMalformed)
