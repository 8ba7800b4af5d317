"""
Test Configuration and Fixtures

Console backend double served through httpx's mock transport.
"""

import json

import httpx
import pytest
import pytest_asyncio

from opsguard.services.backend_client import ConsoleBackendClient


class FakeConsoleBackend:
    """In-process stand-in for the console backend's HTTP API."""

    def __init__(self):
        self.user = {
            "id": "usr_7",
            "email": "lee@example.com",
            "name": "Lee",
            "role": "ops_lead",
            "app_permissions": ["refunds.process", "machines.update"],
            "security_profile": {
                "scopes": {"sites": ["loc-1"]},
                "two_factor_required": ["refunds.process"],
                "elevation": {"default_duration_minutes": 10},
            },
        }
        self.user_status = 200
        self.password = "open sesame"
        self.audit_status = 201
        self.audit_entries = []
        self.reauth_calls = 0
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/users/me"):
            if self.user_status != 200:
                return httpx.Response(self.user_status, json={"error": "nope"})
            return httpx.Response(200, json=self.user)

        if path.endswith("/functions/reauthStart"):
            self.reauth_calls += 1
            body = json.loads(request.content)
            if body.get("password") != self.password:
                return httpx.Response(401, json={"success": False, "error": "Invalid password"})
            return httpx.Response(200, json={"data": {"success": True, "step_up_token": "stp_live"}})

        if path.endswith("/entities/AuditLog"):
            if self.audit_status >= 400:
                return httpx.Response(self.audit_status, json={"error": "audit store down"})
            self.audit_entries.append(json.loads(request.content))
            return httpx.Response(self.audit_status, json={"ok": True})

        return httpx.Response(404)


@pytest.fixture
def backend():
    return FakeConsoleBackend()


@pytest_asyncio.fixture
async def client(backend):
    transport = httpx.MockTransport(backend.handler)
    async with ConsoleBackendClient(
        base_url="http://console.test/api",
        api_key="svc-key",
        transport=transport,
    ) as console:
        yield console
