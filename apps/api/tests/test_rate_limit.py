"""Tests for the rate limit client key."""

from starlette.requests import Request

from cabin_rotation.core.config import settings
from cabin_rotation.core.rate_limit import client_key


def _request(headers: dict[str, str]) -> Request:
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/rotation-years/2026/claims",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": ("10.0.0.7", 52100),
        }
    )


def test_forwarded_header_ignored_by_default(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", False)
    request = _request({"X-Forwarded-For": "203.0.113.9"})
    assert client_key(request) == "10.0.0.7"


def test_forwarded_header_trusted_behind_proxy(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    request = _request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
    assert client_key(request) == "203.0.113.9"


def test_proxy_without_header_uses_peer(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    assert client_key(_request({})) == "10.0.0.7"
