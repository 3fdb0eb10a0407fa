# tests/api/test_security_middleware.py
"""Tests for rate limiting, security headers, origin checks and route authorization."""

import time

from fastapi import status
from fastapi.testclient import TestClient

from cas_gateway.core.security import SECURITY_HEADERS
from cas_gateway.services.audit import SecurityEventType, Severity
from cas_gateway.services.identity import Identity
from cas_gateway.services.rate_limit import InMemoryRateLimiter
from cas_gateway.services.session import SessionIssuer
from tests.conftest import TEST_SECRET

SESSION_COOKIE = "cas-gateway.session-token"


def _assert_security_headers(response) -> None:
    for name, value in SECURITY_HEADERS.items():
        assert response.headers[name] == value


class TestRateLimiting:
    def test_101st_request_in_window_is_rejected(self, client: TestClient, audit_sink) -> None:
        for _ in range(100):
            assert client.get("/health").status_code == status.HTTP_200_OK

        response = client.get("/health")
        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json() == {"error": "Too Many Requests", "code": "RATE_LIMITED"}
        _assert_security_headers(response)
        events = audit_sink.of_type(SecurityEventType.RATE_LIMIT_EXCEEDED)
        assert len(events) == 1
        assert events[0].severity is Severity.MEDIUM

    def test_limit_is_per_client_address(self, app_factory) -> None:
        app = app_factory(rate_limiter=InMemoryRateLimiter(limit=2))
        with TestClient(app) as client:
            first = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
            second = {"X-Forwarded-For": "198.51.100.9"}
            assert client.get("/health", headers=first).status_code == 200
            assert client.get("/health", headers=first).status_code == 200
            assert client.get("/health", headers=first).status_code == 429
            assert client.get("/health", headers=second).status_code == 200

    def test_real_ip_header_is_used_without_forwarded_for(self, app_factory, audit_sink) -> None:
        app = app_factory(rate_limiter=InMemoryRateLimiter(limit=1))
        with TestClient(app) as client:
            client.get("/health", headers={"X-Real-IP": "192.0.2.5"})
            client.get("/health", headers={"X-Real-IP": "192.0.2.5"})
        event = audit_sink.of_type(SecurityEventType.RATE_LIMIT_EXCEEDED)[0]
        assert event.ip == "192.0.2.5"


class TestSecurityHeaders:
    def test_headers_on_success(self, client: TestClient) -> None:
        _assert_security_headers(client.get("/health"))

    def test_headers_on_rejections(self, client: TestClient) -> None:
        _assert_security_headers(client.post("/api/auth/signout"))
        _assert_security_headers(client.get("/", headers={"Accept": "application/json"}))


class TestOriginValidation:
    def test_foreign_origin_is_rejected(self, csrf_client: TestClient, audit_sink) -> None:
        response = csrf_client.post(
            "/api/auth/signout",
            headers={"Origin": "https://evil.example.com"},
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json() == {"error": "Invalid Request Origin", "code": "ORIGIN_INVALID"}
        events = audit_sink.of_type(SecurityEventType.SUSPICIOUS_REQUEST)
        assert len(events) == 1
        assert events[0].severity is Severity.HIGH

    def test_missing_origin_and_referer_is_rejected(self, csrf_client: TestClient) -> None:
        csrf_client.headers.pop("Origin")
        response = csrf_client.post("/api/auth/signout")
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_referer_origin_is_accepted(self, csrf_client: TestClient) -> None:
        csrf_client.headers.pop("Origin")
        response = csrf_client.post(
            "/api/auth/signout",
            headers={"Referer": "http://testserver/login"},
        )
        assert response.status_code == status.HTTP_200_OK

    def test_public_app_url_is_accepted(self, csrf_client: TestClient) -> None:
        response = csrf_client.post(
            "/api/auth/signout",
            headers={"Origin": "https://app.example.edu"},
        )
        assert response.status_code == status.HTTP_200_OK

    def test_csrf_is_checked_before_origin(self, client: TestClient, audit_sink) -> None:
        response = client.post("/api/auth/signout", headers={"Origin": "https://evil.example.com"})
        assert response.json()["error"] == "CSRF Token Invalid"
        assert audit_sink.of_type(SecurityEventType.SUSPICIOUS_REQUEST) == []


class TestRouteAuthorization:
    def test_browser_is_redirected_to_login(self, client: TestClient, audit_sink) -> None:
        response = client.get("/", headers={"Accept": "text/html,application/xhtml+xml"})

        assert response.status_code == status.HTTP_303_SEE_OTHER
        assert response.headers["location"] == "/login"
        assert len(audit_sink.of_type(SecurityEventType.UNAUTHORIZED_ACCESS)) == 1

    def test_api_client_gets_401(self, client: TestClient) -> None:
        response = client.get("/api/env", headers={"Accept": "application/json"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["code"] == "UNAUTHENTICATED"

    def test_invalid_cookie_is_recorded(self, client: TestClient, audit_sink) -> None:
        client.cookies.set(SESSION_COOKIE, "forged.token.value")
        response = client.get("/", headers={"Accept": "application/json"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert len(audit_sink.of_type(SecurityEventType.INVALID_TOKEN)) == 1
        assert len(audit_sink.of_type(SecurityEventType.UNAUTHORIZED_ACCESS)) == 1

    def test_valid_session_passes(self, client: TestClient) -> None:
        token = SessionIssuer(TEST_SECRET).issue(Identity("alice")).token
        client.cookies.set(SESSION_COOKIE, token)
        response = client.get("/")
        assert response.status_code == status.HTTP_200_OK
        assert SESSION_COOKIE not in response.headers.get("set-cookie", "")

    def test_old_session_is_refreshed(self, client: TestClient) -> None:
        two_hours_ago = time.time() - 2 * 60 * 60
        issuer = SessionIssuer(TEST_SECRET, clock=lambda: two_hours_ago)
        old = issuer.issue(Identity("alice"))
        client.cookies.set(SESSION_COOKIE, old.token)

        response = client.get("/")

        assert response.status_code == status.HTTP_200_OK
        assert SESSION_COOKIE in response.headers.get("set-cookie", "")
        refreshed = SessionIssuer(TEST_SECRET).verify(response.cookies[SESSION_COOKIE])
        assert refreshed.issued_at == old.issued_at
        assert refreshed.expires_at > old.expires_at

    def test_public_paths_skip_authorization(self, client: TestClient, audit_sink) -> None:
        for path in ["/health", "/login", "/api/config"]:
            assert client.get(path).status_code == status.HTTP_200_OK
        assert audit_sink.of_type(SecurityEventType.UNAUTHORIZED_ACCESS) == []

    def test_anonymous_access_when_auth_not_required(self, app_factory) -> None:
        with TestClient(app_factory(require_auth=False)) as client:
            assert client.get("/").status_code == status.HTTP_200_OK
