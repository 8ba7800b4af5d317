"""
OPSGUARD - Authorization Gate

Declarative role / permission / scope requirements evaluated against
resolved claims. The gate is a pure predicate; the structured decision tells
a presentation layer exactly which check failed so it can explain a denial.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Tuple, Union

from opsguard.access.claims import Claims
from opsguard.access.roles import RoleHierarchy, default_hierarchy
from opsguard.access.scopes import MatchMode, matches, normalize_domain


logger = logging.getLogger(__name__)


def _as_tuple(value: Union[None, str, Iterable[str]]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


# ============================================================
# Requirements
# ============================================================


@dataclass(frozen=True)
class ScopeRequirement:
    """Scope values needed in one domain. Empty values means any access there."""

    domain: str
    values: Tuple[str, ...] = ()
    mode: MatchMode = MatchMode.ANY

    def __post_init__(self):
        object.__setattr__(self, "domain", normalize_domain(self.domain))
        object.__setattr__(self, "values", tuple(str(v) for v in _as_tuple(self.values)))
        object.__setattr__(self, "mode", MatchMode(self.mode))


@dataclass(frozen=True)
class GateRequirements:
    """
    What a protected region needs.

    Every category is vacuously satisfied when empty.

    Attributes:
        roles: The actor's role must meet or exceed every one
        any_roles: The actor's role must meet or exceed at least one
        all_permissions: Every permission must be held
        any_permissions: At least one permission must be held
        scopes: Each scope requirement must match
    """

    roles: Tuple[str, ...] = ()
    any_roles: Tuple[str, ...] = ()
    all_permissions: Tuple[str, ...] = ()
    any_permissions: Tuple[str, ...] = ()
    scopes: Tuple[ScopeRequirement, ...] = ()

    @classmethod
    def build(
        cls,
        role: Union[None, str, Iterable[str]] = None,
        roles: Union[None, str, Iterable[str]] = None,
        permission: Union[None, str, Iterable[str]] = None,
        permissions: Union[None, str, Iterable[str]] = None,
        any_permissions: Union[None, str, Iterable[str]] = None,
        all_permissions: Union[None, str, Iterable[str]] = None,
        scopes: Optional[Iterable[Union[ScopeRequirement, dict]]] = None,
    ) -> "GateRequirements":
        """
        Build requirements with the console's gate vocabulary.

        ``role`` and ``permission`` are required outright, ``roles`` is any-of.
        ``permissions`` is any-of, like the console's permission gate, and
        merges with ``any_permissions``. Use ``all_permissions`` when every
        listed permission must be held.
        """
        scope_reqs = []
        for item in scopes or ():
            if isinstance(item, ScopeRequirement):
                scope_reqs.append(item)
            else:
                scope_reqs.append(ScopeRequirement(**item))
        return cls(
            roles=_as_tuple(role),
            any_roles=_as_tuple(roles),
            all_permissions=_as_tuple(permission) + _as_tuple(all_permissions),
            any_permissions=_as_tuple(permissions) + _as_tuple(any_permissions),
            scopes=tuple(scope_reqs),
        )


# ============================================================
# Decision
# ============================================================


class FailureKind(str, Enum):
    """Which category of check failed."""

    IDENTITY = "identity"
    ROLE = "role"
    ANY_ROLE = "any_role"
    PERMISSION = "permission"
    ANY_PERMISSION = "any_permission"
    SCOPE = "scope"


@dataclass(frozen=True)
class GateFailure:
    """One failed check."""

    kind: FailureKind
    requirement: Any
    detail: str


@dataclass(frozen=True)
class GateDecision:
    """Outcome of evaluating requirements against claims."""

    authorized: bool
    failures: Tuple[GateFailure, ...] = ()
    role: Optional[str] = None

    def __bool__(self) -> bool:
        return self.authorized

    def failures_of(self, kind: FailureKind) -> List[GateFailure]:
        return [f for f in self.failures if f.kind == kind]

    def to_dict(self) -> dict:
        return {
            "authorized": self.authorized,
            "role": self.role,
            "failures": [
                {"kind": f.kind.value, "requirement": f.requirement, "detail": f.detail}
                for f in self.failures
            ],
        }


# ============================================================
# Gate
# ============================================================


class AuthorizationGate:
    """Evaluates gate requirements against claims."""

    def __init__(self, hierarchy: Optional[RoleHierarchy] = None):
        self.hierarchy = hierarchy or default_hierarchy

    def evaluate(self, claims: Optional[Claims], requirements: GateRequirements) -> GateDecision:
        """Evaluate every requirement category and collect the failures."""
        if claims is None:
            return GateDecision(
                authorized=False,
                failures=(GateFailure(FailureKind.IDENTITY, None, "No authenticated user"),),
            )

        failures: List[GateFailure] = []
        role = claims.role

        for required in requirements.roles:
            if not self.hierarchy.meets_or_exceeds(role, required):
                failures.append(GateFailure(
                    FailureKind.ROLE,
                    required,
                    f"Role '{role or 'not assigned'}' does not meet required role '{required}'",
                ))

        if requirements.any_roles and not self.hierarchy.meets_any(role, requirements.any_roles):
            failures.append(GateFailure(
                FailureKind.ANY_ROLE,
                list(requirements.any_roles),
                f"Role '{role or 'not assigned'}' meets none of the accepted roles",
            ))

        for permission in requirements.all_permissions:
            if not claims.has_capability(permission):
                failures.append(GateFailure(
                    FailureKind.PERMISSION,
                    permission,
                    f"Missing permission '{permission}'",
                ))

        if requirements.any_permissions and not any(
            claims.has_capability(p) for p in requirements.any_permissions
        ):
            failures.append(GateFailure(
                FailureKind.ANY_PERMISSION,
                list(requirements.any_permissions),
                "None of the accepted permissions are held",
            ))

        for scope in requirements.scopes:
            if not matches(claims.scope(scope.domain), scope.values, scope.mode):
                failures.append(GateFailure(
                    FailureKind.SCOPE,
                    {"domain": scope.domain, "values": list(scope.values), "mode": scope.mode.value},
                    f"Scope '{scope.domain}' does not cover the requested values",
                ))

        decision = GateDecision(authorized=not failures, failures=tuple(failures), role=role)
        if failures:
            logger.warning(
                "Access denied",
                extra={"role": role, "failed_checks": [f.kind.value for f in failures]},
            )
        return decision

    def check(self, claims: Optional[Claims], **requirements) -> bool:
        """Boolean form. Keyword arguments follow :meth:`GateRequirements.build`."""
        return self.evaluate(claims, GateRequirements.build(**requirements)).authorized

    def guard(
        self,
        claims: Optional[Claims],
        requirements: GateRequirements,
        content: Union[Callable[[], Any], Any],
        fallback: Union[Callable[[GateDecision], Any], Any] = None,
    ) -> Any:
        """
        Pick the protected content or the fallback.

        Callables are invoked lazily; the fallback callable receives the
        decision so it can explain the denial.
        """
        decision = self.evaluate(claims, requirements)
        if decision.authorized:
            return content() if callable(content) else content
        return fallback(decision) if callable(fallback) else fallback

