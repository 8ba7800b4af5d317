"""
Console Backend Client Tests

Validates the HTTP contract for identity, step-up and audit writes.
"""

from datetime import datetime, timezone

import httpx
import pytest

from opsguard.access.audit import AuditLogEntry, AuditOutcome
from opsguard.exceptions import IdentityServiceError, NotAuthenticatedError
from opsguard.services.backend_client import ConsoleBackendClient


@pytest.mark.asyncio
async def test_fetch_current_user(client, backend):
    """Returns the raw record and sends the service key."""
    user = await client.fetch_current_user()

    assert user["email"] == "lee@example.com"
    request = backend.requests[0]
    assert request.url.path == "/api/users/me"
    assert request.headers["Authorization"] == "Bearer svc-key"


@pytest.mark.asyncio
async def test_fetch_current_user_unauthenticated(client, backend):
    backend.user_status = 401
    with pytest.raises(NotAuthenticatedError):
        await client.fetch_current_user()


@pytest.mark.asyncio
async def test_fetch_current_user_server_error(client, backend):
    backend.user_status = 503
    with pytest.raises(IdentityServiceError) as exc_info:
        await client.fetch_current_user()
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_begin_reauth_success(client):
    result = await client.begin_reauth("open sesame")
    assert result.success is True
    assert result.token == "stp_live"


@pytest.mark.asyncio
async def test_begin_reauth_rejected(client):
    result = await client.begin_reauth("guess")
    assert result.success is False
    assert result.error == "Invalid password"


@pytest.mark.asyncio
async def test_append_audit_entry(client, backend):
    entry = AuditLogEntry(
        action="process_refund",
        actor_id="usr_7",
        actor_email="lee@example.com",
        status=AuditOutcome.SUCCESS,
        occurred_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
        metadata={"when": datetime(2024, 6, 1, tzinfo=timezone.utc)},
    )

    await client.append_audit_entry(entry)

    stored = backend.audit_entries[0]
    assert stored["action"] == "process_refund"
    assert stored["status"] == "success"
    assert stored["occurred_at"] == "2024-06-01T00:00:00+00:00"


@pytest.mark.asyncio
async def test_append_audit_entry_rejected(client, backend):
    backend.audit_status = 500
    entry = AuditLogEntry(
        action="x",
        actor_id=None,
        actor_email=None,
        status=AuditOutcome.DENIED,
        occurred_at=datetime.now(timezone.utc),
    )
    with pytest.raises(IdentityServiceError):
        await client.append_audit_entry(entry)


@pytest.mark.asyncio
async def test_transport_failure():
    """Connection errors surface as IdentityServiceError."""

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with ConsoleBackendClient(
        base_url="http://console.test/api",
        transport=httpx.MockTransport(refuse),
    ) as console:
        with pytest.raises(IdentityServiceError):
            await console.fetch_current_user()
