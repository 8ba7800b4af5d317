"""
OPSGUARD - Access Module

Role hierarchy, scope matching, claims resolution, elevation sessions,
authorization gates and the sensitive-action guard.

Components:
- roles.py: Role levels and hierarchy comparisons
- scopes.py: Scope domain normalization and matching
- claims.py: Raw user record -> Claims
- elevation.py: Time-bounded step-up sessions
- gate.py: Declarative role/permission/scope requirements
- context.py: Current-user authorization state
- audit.py: Audit entries and the best-effort audit writer
- sensitive.py: Permission check, step-up, execution and audit for one action

Usage:
    from opsguard.access import (
        AuthorizationContext,
        SensitiveActionGuard,
        GateRequirements,
    )
"""

from opsguard.access.roles import (
    Role,
    ROLE_LEVELS,
    RoleHierarchy,
    meets_or_exceeds,
)

from opsguard.access.scopes import (
    WILDCARD,
    MatchMode,
    ScopeDomain,
    matches,
    normalize_domain,
)

from opsguard.access.claims import (
    Claims,
    ClaimsResolver,
    ElevationPolicy,
    ElevationWindow,
    resolve_claims,
)

from opsguard.access.elevation import (
    ElevationSession,
    ElevationSessionManager,
)

from opsguard.access.gate import (
    AuthorizationGate,
    FailureKind,
    GateDecision,
    GateFailure,
    GateRequirements,
    ScopeRequirement,
)

from opsguard.access.audit import (
    AuditLogEntry,
    AuditLogger,
    AuditOutcome,
    AuditSink,
    InMemoryAuditSink,
)

from opsguard.access.context import AuthorizationContext

from opsguard.access.sensitive import (
    ChallengeResolution,
    ChallengeState,
    GuardResult,
    GuardStatus,
    PendingChallenge,
    SensitiveActionGuard,
)

__all__ = [
    # Roles and Scopes
    "Role",
    "ROLE_LEVELS",
    "RoleHierarchy",
    "meets_or_exceeds",
    "WILDCARD",
    "MatchMode",
    "ScopeDomain",
    "matches",
    "normalize_domain",

    # Claims and Elevation
    "Claims",
    "ClaimsResolver",
    "ElevationPolicy",
    "ElevationWindow",
    "resolve_claims",
    "ElevationSession",
    "ElevationSessionManager",

    # Gate
    "AuthorizationGate",
    "FailureKind",
    "GateDecision",
    "GateFailure",
    "GateRequirements",
    "ScopeRequirement",

    # Audit
    "AuditLogEntry",
    "AuditLogger",
    "AuditOutcome",
    "AuditSink",
    "InMemoryAuditSink",

    # Context and Guard
    "AuthorizationContext",
    "ChallengeResolution",
    "ChallengeState",
    "GuardResult",
    "GuardStatus",
    "PendingChallenge",
    "SensitiveActionGuard",
]
