"""
Rate limiting tests: per-client fixed windows and client IP resolution
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

import main
from rate_limiter import RATE_LIMITS, get_client_ip, limiter

IMAGE_ID = "3f2b8c1e-9a4d-4e6f-8b2a-1c3d5e7f9a0b"


def make_request(headers=None, client=("10.0.0.1", 54321)):
    raw_headers = [(name.lower().encode(), value.encode()) for name, value in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw_headers, "client": client})


@pytest.fixture
def client(monkeypatch):
    store = Mock()
    store.get_metadata.return_value = {"id": IMAGE_ID, "paid": False, "preview_url": "https://storage.test/p.png"}
    monkeypatch.setattr(main, "portrait_store", store)
    limiter.enabled = True
    limiter.reset()
    yield TestClient(main.app)
    limiter.reset()


class TestImageInfoLimit:
    def test_window_is_per_client(self, client):
        allowed = int(RATE_LIMITS["image_info"].split("/")[0])
        params = {"imageId": IMAGE_ID}
        first_client = {"X-Forwarded-For": "203.0.113.7"}

        for _ in range(allowed):
            assert client.get("/api/image-info", params=params, headers=first_client).status_code == 200

        response = client.get("/api/image-info", params=params, headers=first_client)
        assert response.status_code == 429
        assert response.json() == {"detail": "Too many requests. Please wait a moment before trying again."}
        assert response.headers["Retry-After"] == "60"

        other = client.get("/api/image-info", params=params, headers={"X-Forwarded-For": "198.51.100.9"})
        assert other.status_code == 200


class TestClientIp:
    def test_forwarded_for_takes_first_hop(self):
        request = make_request({
            "X-Forwarded-For": "203.0.113.7, 10.1.1.1",
            "X-Real-IP": "198.51.100.2",
            "X-Vercel-Forwarded-For": "192.0.2.3",
        })
        assert get_client_ip(request) == "203.0.113.7"

    def test_real_ip_before_vercel_header(self):
        request = make_request({"X-Real-IP": "198.51.100.2", "X-Vercel-Forwarded-For": "192.0.2.3"})
        assert get_client_ip(request) == "198.51.100.2"

    def test_vercel_header(self):
        request = make_request({"X-Vercel-Forwarded-For": "192.0.2.3, 10.1.1.1"})
        assert get_client_ip(request) == "192.0.2.3"

    def test_socket_address_fallback(self):
        assert get_client_ip(make_request()) == "10.0.0.1"
