"""
OPSGUARD - Authorization Context

The single owner of the current user, its resolved claims and the elevation
session. Guards and gates receive the context instead of reaching for
ambient state.
"""

import logging
from typing import Any, Iterable, List, Optional, Protocol, Union

from pydantic import ValidationError

from opsguard.access.claims import Claims, ClaimsResolver, as_mapping, default_resolver
from opsguard.access.elevation import ElevationSession, ElevationSessionManager
from opsguard.access.gate import AuthorizationGate, GateDecision, GateRequirements
from opsguard.access.roles import RoleHierarchy, default_hierarchy
from opsguard.access.scopes import MatchMode, matches
from opsguard.exceptions import NotAuthenticatedError, StepUpRequired
from opsguard.services.schemas import UserIdentity


logger = logging.getLogger(__name__)


class IdentitySource(Protocol):
    """Fetches the user record for the current session."""

    async def fetch_current_user(self) -> Any:
        ...


class AuthorizationContext:
    """
    Current-user authorization state.

    Usage:
        context = AuthorizationContext(identity_source=client)
        await context.load()
        if context.has_role("ops_lead"):
            ...
    """

    def __init__(
        self,
        identity_source: Optional[IdentitySource] = None,
        resolver: Optional[ClaimsResolver] = None,
        hierarchy: Optional[RoleHierarchy] = None,
        elevation: Optional[ElevationSessionManager] = None,
    ):
        self.identity_source = identity_source
        self.resolver = resolver or default_resolver
        self.hierarchy = hierarchy or default_hierarchy
        self.elevation = elevation or ElevationSessionManager()
        self.gate = AuthorizationGate(self.hierarchy)

        self._user: Any = None
        self._identity: Optional[UserIdentity] = None
        self._claims: Optional[Claims] = None
        self.load_error: Optional[Exception] = None

    # ==================== Bootstrap ====================

    async def load(self) -> bool:
        """
        Fetch the current user from the identity source.

        Failures leave the context unauthenticated; they are not retried here.

        Returns:
            True when a user was established
        """
        if self.identity_source is None:
            raise NotAuthenticatedError("No identity source configured")

        try:
            record = await self.identity_source.fetch_current_user()
        except Exception as e:
            self.load_error = e
            self.set_user(None)
            logger.warning("Failed to fetch current user", extra={"error": str(e)})
            return False

        self.load_error = None
        self.set_user(record)
        return self.is_authenticated

    refresh = load

    def set_user(self, record: Any) -> None:
        """Adopt a user record and resolve its claims."""
        if not record:
            self._user = None
            self._identity = None
            self._claims = None
            return

        self._user = record
        try:
            self._identity = UserIdentity.model_validate(dict(as_mapping(record)))
        except ValidationError as e:
            logger.warning("Malformed identity fields on user record", extra={"error": str(e)})
            self._identity = UserIdentity()
        self._claims = self.resolver.resolve(record)

    def sign_out(self) -> None:
        """Forget the user and any elevation."""
        self.set_user(None)
        self.elevation.clear()

    # ==================== Identity ====================

    @property
    def user(self) -> Any:
        return self._user

    @property
    def claims(self) -> Optional[Claims]:
        return self._claims

    @property
    def is_authenticated(self) -> bool:
        return self._claims is not None

    @property
    def actor_id(self) -> Optional[str]:
        return self._identity.id if self._identity else None

    @property
    def actor_email(self) -> Optional[str]:
        return self._identity.email if self._identity else None

    @property
    def display_name(self) -> Optional[str]:
        return self._identity.display_name if self._identity else None

    @property
    def role(self) -> Optional[str]:
        return self._claims.role if self._claims else None

    def require_claims(self) -> Claims:
        if self._claims is None:
            raise NotAuthenticatedError()
        return self._claims

    # ==================== Role & Permission Checks ====================

    def has_role(self, required_role: str) -> bool:
        """Check if the user's role meets or exceeds ``required_role``."""
        if self._claims is None:
            return False
        return self.hierarchy.meets_or_exceeds(self._claims.role, required_role)

    def has_any_role(self, required_roles: Iterable[str]) -> bool:
        return any(self.has_role(r) for r in required_roles)

    def has_permission(self, permission: str) -> bool:
        return self._claims is not None and self._claims.has_capability(permission)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return not self.missing_permissions(permissions)

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def missing_permissions(self, permissions: Iterable[str]) -> List[str]:
        """Required permissions the user does not hold."""
        return [p for p in permissions if not self.has_permission(p)]

    def has_scope(
        self,
        domain: str,
        values: Optional[Iterable] = None,
        mode: Union[MatchMode, str] = MatchMode.ANY,
    ) -> bool:
        if self._claims is None:
            return False
        return matches(self._claims.scope(domain), values, mode)

    def authorize(self, requirements: GateRequirements) -> GateDecision:
        """Evaluate gate requirements for the current user."""
        return self.gate.evaluate(self._claims, requirements)

    def check(self, **requirements) -> bool:
        return self.gate.check(self._claims, **requirements)

    # ==================== Step-up ====================

    def requires_two_factor_for(self, permission: str) -> bool:
        return self._claims is not None and self._claims.requires_two_factor_for(permission)

    def is_elevation_active(self) -> bool:
        return self.elevation.is_active(self._claims)

    def activate_elevation(
        self,
        token: str,
        duration_minutes: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> ElevationSession:
        return self.elevation.activate(
            token,
            duration_minutes=duration_minutes,
            reason=reason,
            claims=self._claims,
        )

    def clear_elevation(self) -> None:
        self.elevation.clear()

    def needs_step_up(self, permissions: Iterable[str]) -> bool:
        """
        Check if fresh identity proof is needed before using ``permissions``.

        A permission listed as two-factor-required always needs it, even while
        an elevation session is live. Otherwise step-up is needed only when no
        elevation is active. An empty permission list never needs it.
        """
        permissions = list(permissions)
        if not permissions:
            return False
        if any(self.requires_two_factor_for(p) for p in permissions):
            return True
        return not self.is_elevation_active()

    def ensure_elevated(self, permissions: Iterable[str]) -> None:
        """Raise :class:`StepUpRequired` when ``permissions`` need step-up."""
        permissions = list(permissions)
        if self.needs_step_up(permissions):
            raise StepUpRequired(permissions=permissions)
