# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789abcdef")
os.environ.setdefault("CAS_BASE_URL", "https://cas.example.edu/cas")
os.environ.setdefault("CAS_SERVICE_URL", "https://app.example.edu/api/cas/validate")
os.environ.setdefault("PUBLIC_APP_URL", "https://app.example.edu")
os.environ.setdefault("AUDIT_SINK", "memory")

from cas_gateway.core.settings import Settings
from cas_gateway.main import create_app
from cas_gateway.services.audit import MemoryAuditSink
from cas_gateway.services.container import GatewayServices, build_services
from cas_gateway.services.rate_limit import InMemoryRateLimiter

TEST_SECRET = "test-session-secret-0123456789abcdef"
CAS_BASE_URL = "https://cas.example.edu/cas"
SERVICE_URL = "https://app.example.edu/api/cas/validate"
PUBLIC_APP_URL = "https://app.example.edu"
TEST_ORIGIN = "http://testserver"


def success_envelope(user: str, attributes: str = "") -> str:
    return (
        '<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">\n'
        "  <cas:authenticationSuccess>\n"
        f"    <cas:user>{user}</cas:user>\n"
        f"{attributes}"
        "  </cas:authenticationSuccess>\n"
        "</cas:serviceResponse>\n"
    )


def failure_envelope(code: str, message: str = "Ticket not recognized") -> str:
    return (
        '<cas:serviceResponse xmlns:cas="http://www.yale.edu/tp/cas">\n'
        f'  <cas:authenticationFailure code="{code}">{message}</cas:authenticationFailure>\n'
        "</cas:serviceResponse>\n"
    )


@dataclass
class CasServerStub:
    """Programmable stand-in for the CAS ``serviceValidate`` endpoint."""

    body: str = field(default_factory=lambda: success_envelope("alice"))
    status_code: int = 200
    error: Exception | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, text=self.body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "session_secret": TEST_SECRET,
        "cas_base_url": CAS_BASE_URL,
        "cas_service_url": SERVICE_URL,
        "public_app_url": PUBLIC_APP_URL,
        "audit_sink": "memory",
        "app_env": "test",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture()
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture()
def cas_server() -> CasServerStub:
    return CasServerStub()


@pytest.fixture()
def services(
    test_settings: Settings,
    audit_sink: MemoryAuditSink,
    cas_server: CasServerStub,
) -> GatewayServices:
    return build_services(
        test_settings,
        audit_sink=audit_sink,
        cas_transport=cas_server.transport,
    )


@pytest.fixture()
def app_factory(
    audit_sink: MemoryAuditSink,
    cas_server: CasServerStub,
) -> Callable[..., FastAPI]:
    """Build an app around the shared audit sink and CAS stub, with settings overrides."""

    def factory(**overrides: Any) -> FastAPI:
        rate_limiter = overrides.pop("rate_limiter", None)
        return create_app(
            make_settings(**overrides),
            audit_sink=audit_sink,
            rate_limiter=rate_limiter or InMemoryRateLimiter(),
            cas_transport=cas_server.transport,
        )

    return factory


@pytest.fixture()
def app(app_factory: Callable[..., FastAPI]) -> FastAPI:
    return app_factory()


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture()
def csrf_client(client: TestClient) -> TestClient:
    """Client holding a CSRF cookie and sending the matching header and Origin."""
    response = client.get("/api/auth/csrf")
    token = response.json()["csrfToken"]
    client.headers.update({"X-CSRF-Token": token, "Origin": TEST_ORIGIN})
    return client
