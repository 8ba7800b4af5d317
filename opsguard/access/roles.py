"""
OPSGUARD - Role Hierarchy

Fixed ordering of console roles used for coarse "at least as privileged as"
checks. Several roles share a level (driver/tech/operator, ops_lead/manager,
admin/ops_admin).
"""

from enum import Enum
from typing import Iterable, Optional


UNKNOWN_LEVEL = -1


# ============================================================
# Roles
# ============================================================


class Role(str, Enum):
    """Console roles, lowest privilege first."""

    VIEWER = "viewer"
    DRIVER = "driver"
    TECH = "tech"
    OPERATOR = "operator"
    ACCOUNTANT = "accountant"
    OPS_LEAD = "ops_lead"
    MANAGER = "manager"
    ADMIN = "admin"
    OPS_ADMIN = "ops_admin"
    OWNER = "owner"


ROLE_LEVELS: dict[str, int] = {
    Role.VIEWER.value: 0,
    Role.DRIVER.value: 1,
    Role.TECH.value: 1,
    Role.OPERATOR.value: 1,
    Role.ACCOUNTANT.value: 2,
    Role.OPS_LEAD.value: 3,
    Role.MANAGER.value: 3,
    Role.ADMIN.value: 4,
    Role.OPS_ADMIN.value: 4,
    Role.OWNER.value: 5,
}


def _normalize(role) -> str:
    if role is None:
        return ""
    if isinstance(role, Role):
        return role.value
    return str(role).strip().lower()


# ============================================================
# Hierarchy
# ============================================================


class RoleHierarchy:
    """
    Total order over named roles.

    Unknown role names resolve to level -1. An unknown role never satisfies a
    comparison, on either side, so two unknown names are not considered equal.
    """

    def __init__(self, levels: Optional[dict[str, int]] = None):
        table = ROLE_LEVELS if levels is None else levels
        self._levels = {_normalize(name): level for name, level in table.items()}

    def level_of(self, role) -> int:
        """Level for a role name, or -1 when the name is unknown."""
        return self._levels.get(_normalize(role), UNKNOWN_LEVEL)

    def is_known(self, role) -> bool:
        return _normalize(role) in self._levels

    def meets_or_exceeds(self, held_role, required_role) -> bool:
        """Check if the held role is at least as privileged as the required role."""
        if not self.is_known(held_role) or not self.is_known(required_role):
            return False
        return self.level_of(held_role) >= self.level_of(required_role)

    def meets_any(self, held_role, required_roles: Iterable) -> bool:
        """Check if the held role meets at least one of the required roles."""
        return any(self.meets_or_exceeds(held_role, r) for r in required_roles)

    def highest_role(self, roles: Iterable) -> Optional[str]:
        """Most privileged known role among ``roles``."""
        known = [_normalize(r) for r in roles if self.is_known(r)]
        if not known:
            return None
        return max(known, key=self.level_of)

    def known_roles(self) -> list[str]:
        """All known role names ordered by level."""
        return sorted(self._levels, key=lambda name: (self._levels[name], name))


default_hierarchy = RoleHierarchy()


def meets_or_exceeds(held_role, required_role) -> bool:
    """Compare against the default console role table."""
    return default_hierarchy.meets_or_exceeds(held_role, required_role)
