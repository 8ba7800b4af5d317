"""
OPSGUARD Test Configuration
===========================

Pytest fixtures shared by the unit tests.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from opsguard.access.audit import AuditLogger, InMemoryAuditSink
from opsguard.access.context import AuthorizationContext
from opsguard.access.elevation import ElevationSessionManager


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def now():
    """Fixed reference instant."""
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(now):
    return FakeClock(now)


@pytest.fixture
def elevation(clock):
    return ElevationSessionManager(clock=clock)


@pytest.fixture
def manager_record():
    """Current-shape user record for an ops manager."""
    return {
        "id": "usr_42",
        "email": "dana@example.com",
        "full_name": "Dana Ops",
        "app_role": "manager",
        "permissions": ["alerts.read", "machines.update"],
        "claims": {
            "permissions": ["refunds.process"],
            "scopes": {"location": ["loc-1", "loc-2"], "route": "r-9"},
            "two_factor_required": ["refunds.process", 17],
            "elevation": {"default_duration_minutes": 20},
        },
        "security_profile": {
            "capabilities": ["credentials.manage"],
        },
    }


@pytest.fixture
def minimal_record():
    return {"id": "usr_1", "email": "min@example.com"}


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def audit_logger(audit_sink):
    return AuditLogger(sink=audit_sink)


@pytest.fixture
def context(manager_record, elevation):
    """Authenticated context for the manager record."""
    ctx = AuthorizationContext(elevation=elevation)
    ctx.set_user(manager_record)
    return ctx


@pytest.fixture
def step_up_service():
    """Step-up service that accepts any password."""
    service = AsyncMock()
    service.begin_reauth = AsyncMock(
        return_value={"success": True, "step_up_token": "stp_abc"}
    )
    return service
