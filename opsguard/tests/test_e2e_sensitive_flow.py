"""
End-to-End Sensitive Action Flow

Bootstrap -> gate -> guarded action -> step-up -> audit, against the
console backend double. Proves the invariant:
"Every sensitive attempt leaves exactly one audit record."
"""

from unittest.mock import AsyncMock

import pytest

from opsguard.access.audit import AuditLogger
from opsguard.access.context import AuthorizationContext
from opsguard.access.gate import GateRequirements
from opsguard.access.sensitive import ChallengeState, SensitiveActionGuard
from opsguard.exceptions import PermissionDeniedError, StepUpFailedError


@pytest.mark.asyncio
async def test_refund_flow_with_step_up(client, backend):
    """A two-factor capability goes through step-up and is audited once."""
    context = AuthorizationContext(identity_source=client)
    assert await context.load() is True

    assert context.authorize(GateRequirements.build(
        role="manager",
        permission="refunds.process",
        scopes=[{"domain": "location", "values": ["loc-1"]}],
    )).authorized

    process_refund = AsyncMock(return_value={"refund_case_id": "rc-1", "status": "approved"})
    guard = SensitiveActionGuard(
        context,
        action=process_refund,
        action_name="process_refund",
        get_required_permissions=lambda case_id: ["refunds.process"],
        build_audit_context=lambda case_id: {"refund_case_id": case_id},
        audit_logger=AuditLogger(sink=client),
        step_up_service=client,
    )

    result = await guard.execute("rc-1")
    assert result.step_up_required
    assert result.challenge.title == "Confirm process refund"

    with pytest.raises(StepUpFailedError, match="Invalid password"):
        await guard.complete_step_up("wrong")
    assert guard.state is ChallengeState.PENDING

    value = await guard.complete_step_up("open sesame")

    assert value["status"] == "approved"
    process_refund.assert_awaited_once_with("rc-1")
    assert backend.reauth_calls == 2
    assert len(backend.audit_entries) == 1
    entry = backend.audit_entries[0]
    assert entry["status"] == "success"
    assert entry["actor_id"] == "usr_7"
    assert entry["metadata"]["refund_case_id"] == "rc-1"
    assert entry["metadata"]["permissions"] == ["refunds.process"]

    # Two-factor capability demands proof again even while elevated
    assert context.is_elevation_active()
    assert (await guard.execute("rc-2")).step_up_required


@pytest.mark.asyncio
async def test_elevation_covers_ordinary_capability(client, backend):
    context = AuthorizationContext(identity_source=client)
    await context.load()
    update_machine = AsyncMock(return_value=True)
    guard = SensitiveActionGuard(
        context,
        action=update_machine,
        action_name="update_machine",
        get_required_permissions=["machines.update"],
        audit_logger=AuditLogger(sink=client),
        step_up_service=client,
    )

    assert (await guard.execute("m-1")).step_up_required
    await guard.complete_step_up("open sesame")
    assert (await guard.execute("m-2")).completed

    assert update_machine.await_count == 2
    assert backend.reauth_calls == 1
    assert [e["status"] for e in backend.audit_entries] == ["success", "success"]


@pytest.mark.asyncio
async def test_denied_when_backend_audit_is_down(client, backend):
    """Denial still raises when the audit store rejects the write."""
    backend.audit_status = 500
    context = AuthorizationContext(identity_source=client)
    await context.load()
    wipe = AsyncMock()
    guard = SensitiveActionGuard(
        context,
        action=wipe,
        action_name="wipe_all_data",
        get_required_permissions=["data.wipe"],
        audit_logger=AuditLogger(sink=client),
    )

    with pytest.raises(PermissionDeniedError):
        await guard.execute()

    wipe.assert_not_called()
    assert backend.audit_entries == []


@pytest.mark.asyncio
async def test_unauthenticated_bootstrap(client, backend):
    backend.user_status = 401
    context = AuthorizationContext(identity_source=client)

    assert await context.load() is False
    assert not context.check(role="viewer")
