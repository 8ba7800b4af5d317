"""
OPSGUARD - Claims Resolution

Turns a raw user record into one normalized Claims structure.

User records arrive from several generations of the console backend, so the
same concept can live under different keys (``app_role`` vs ``role``,
``permissions`` vs ``app_permissions``, nested ``claims`` containers, a
``security_profile`` block, legacy single-value ``site_scope`` fields).
This module is the only place that knows about those variants; everything
downstream works with :class:`Claims`.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from opsguard.access.scopes import WILDCARD, ScopeDomain, is_wildcard, normalize_domain
from opsguard.config import settings


logger = logging.getLogger(__name__)


# ============================================================
# Raw record field names
# ============================================================


ROLE_FIELDS = ("app_role", "role", "appRole")
PERMISSION_FIELDS = ("permissions", "app_permissions", "capabilities", "appPermissions")
CLAIM_CONTAINERS = ("claims", "app_claims", "access_claims", "appClaims")
PROFILE_FIELDS = ("security_profile", "securityProfile", "security")
SCOPE_FIELDS = ("scopes", "scope")
TWO_FACTOR_FIELDS = (
    "two_factor_required",
    "twoFactorRequired",
    "two_factor_required_for",
    "requires_two_factor",
    "mfa_required_for",
)
ELEVATION_FIELDS = ("elevation", "elevation_policy", "elevationPolicy")
DURATION_FIELDS = (
    "default_duration_minutes",
    "defaultDurationMinutes",
    "duration_minutes",
    "step_up_valid_minutes",
)
WINDOW_LIST_FIELDS = ("schedule_windows", "scheduleWindows", "schedule", "windows")
ACTIVE_UNTIL_FIELDS = ("active_until", "activeUntil", "elevated_until")
WINDOW_START_FIELDS = ("start", "starts_at", "from")
WINDOW_END_FIELDS = ("end", "ends_at", "to")

# Legacy single-value scope fields and the domain they feed
LEGACY_SCOPE_FIELDS: Dict[str, str] = {
    "site_scope": "sites",
    "location_scope": "sites",
    "route_scope": "routes",
    "tenant_id": "tenant",
    "tenant_scope": "tenant",
}

CORE_DOMAINS = tuple(d.value for d in ScopeDomain)

# Upper bound for any elevation grant (one day)
MAX_ELEVATION_MINUTES = 24 * 60


# ============================================================
# Claims structures
# ============================================================


@dataclass(frozen=True)
class ElevationWindow:
    """A scheduled period during which elevation is implicitly active."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        """Inclusive on both ends."""
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class ElevationPolicy:
    """How step-up grants behave for a user."""

    schedule_windows: Tuple[ElevationWindow, ...] = ()
    default_duration_minutes: int = 15
    active_until: Optional[datetime] = None


@dataclass(frozen=True)
class Claims:
    """Normalized access claims for one user record."""

    role: Optional[str] = None
    capabilities: FrozenSet[str] = frozenset()
    scopes: Mapping[str, FrozenSet[str]] = field(
        default_factory=lambda: MappingProxyType(
            {domain: frozenset() for domain in CORE_DOMAINS}
        )
    )
    two_factor_required: FrozenSet[str] = frozenset()
    elevation_policy: ElevationPolicy = field(default_factory=ElevationPolicy)

    def scope(self, domain: str) -> FrozenSet[str]:
        """Held values for a domain, accepting domain synonyms."""
        return self.scopes.get(normalize_domain(domain), frozenset())

    def has_capability(self, permission: str) -> bool:
        return permission in self.capabilities

    def requires_two_factor_for(self, permission: str) -> bool:
        return permission in self.two_factor_required


# ============================================================
# Raw value helpers
# ============================================================


def as_mapping(value: Any) -> Mapping[str, Any]:
    """View a record-ish object as a mapping. Anything else becomes empty."""
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return value
    if hasattr(value, "model_dump"):
        return value.model_dump()
    if hasattr(value, "__dict__"):
        return vars(value)
    return {}


def first_present(source: Mapping[str, Any], names: Iterable[str]) -> Any:
    """Value of the first key in ``names`` that is present and not None."""
    for name in names:
        value = source.get(name)
        if value is not None:
            return value
    return None


def as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without a trailing Z) and
    epoch numbers (seconds, or milliseconds when the value is that large).
    Returns None for anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _positive_minutes(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        minutes = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    if minutes <= 0:
        return None
    return min(minutes, MAX_ELEVATION_MINUTES)


# ============================================================
# Resolver
# ============================================================


class ClaimsResolver:
    """
    Derives :class:`Claims` from a raw user record.

    Pure and idempotent. Never raises: a record missing every optional field
    resolves to empty sets and the default elevation policy.
    """

    def __init__(self, default_duration_minutes: Optional[int] = None):
        self.default_duration_minutes = (
            default_duration_minutes or settings.DEFAULT_ELEVATION_MINUTES
        )

    def resolve(self, record: Any) -> Claims:
        """Resolve a raw user record into claims."""
        try:
            raw = as_mapping(record)
            containers = [as_mapping(raw.get(name)) for name in CLAIM_CONTAINERS]
            containers = [c for c in containers if c]
            profile = as_mapping(first_present(raw, PROFILE_FIELDS))

            return Claims(
                role=self._role(raw, containers),
                capabilities=self._capabilities(raw, containers, profile),
                scopes=self._scopes(raw, containers, profile),
                two_factor_required=self._two_factor(containers, profile),
                elevation_policy=self._elevation(containers, profile),
            )
        except Exception:
            logger.exception("Claims resolution failed; falling back to empty claims")
            return Claims(
                elevation_policy=ElevationPolicy(
                    default_duration_minutes=self.default_duration_minutes
                )
            )

    __call__ = resolve

    def _role(self, raw: Mapping[str, Any], containers: List[Mapping[str, Any]]) -> Optional[str]:
        for source in [raw, *containers]:
            role = first_present(source, ROLE_FIELDS)
            if isinstance(role, str) and role.strip():
                return role.strip().lower()
        return None

    def _capabilities(
        self,
        raw: Mapping[str, Any],
        containers: List[Mapping[str, Any]],
        profile: Mapping[str, Any],
    ) -> FrozenSet[str]:
        found = set()
        for source in [raw, *containers, profile]:
            for name in PERMISSION_FIELDS:
                found.update(p for p in as_list(source.get(name)) if isinstance(p, str) and p)
        return frozenset(found)

    def _scopes(
        self,
        raw: Mapping[str, Any],
        containers: List[Mapping[str, Any]],
        profile: Mapping[str, Any],
    ) -> Mapping[str, FrozenSet[str]]:
        collected: Dict[str, set] = {domain: set() for domain in CORE_DOMAINS}

        def add(domain: Any, values: Any) -> None:
            key = normalize_domain(domain)
            bucket = collected.setdefault(key, set())
            for value in as_list(values):
                if value is None or isinstance(value, (dict, list)):
                    continue
                bucket.add(WILDCARD if is_wildcard(value) else str(value))

        for source in [*containers, profile]:
            declared = as_mapping(first_present(source, SCOPE_FIELDS))
            for domain, values in declared.items():
                add(domain, values)

        for legacy_field, domain in LEGACY_SCOPE_FIELDS.items():
            if raw.get(legacy_field) is not None:
                add(domain, raw[legacy_field])

        return MappingProxyType(
            {domain: frozenset(values) for domain, values in collected.items()}
        )

    def _two_factor(
        self,
        containers: List[Mapping[str, Any]],
        profile: Mapping[str, Any],
    ) -> FrozenSet[str]:
        required = set()
        for source in [*containers, profile]:
            for name in TWO_FACTOR_FIELDS:
                value = source.get(name)
                # Boolean flags (e.g. mfa_required: true) are not capability lists
                if isinstance(value, bool):
                    continue
                required.update(p for p in as_list(value) if isinstance(p, str) and p)
        return frozenset(required)

    def _elevation(
        self,
        containers: List[Mapping[str, Any]],
        profile: Mapping[str, Any],
    ) -> ElevationPolicy:
        policies = [as_mapping(first_present(c, ELEVATION_FIELDS)) for c in containers]
        policies.append(as_mapping(first_present(profile, ELEVATION_FIELDS)))
        # Duration may also sit directly on the profile (security policy records)
        policies.append(profile)

        duration = None
        active_until = None
        raw_windows = None
        for policy in policies:
            if duration is None:
                duration = _positive_minutes(first_present(policy, DURATION_FIELDS))
            if active_until is None:
                active_until = parse_timestamp(first_present(policy, ACTIVE_UNTIL_FIELDS))
            if raw_windows is None and policy is not profile:
                raw_windows = first_present(policy, WINDOW_LIST_FIELDS)

        return ElevationPolicy(
            schedule_windows=tuple(self._windows(raw_windows)),
            default_duration_minutes=duration or self.default_duration_minutes,
            active_until=active_until,
        )

    def _windows(self, raw_windows: Any) -> Iterable[ElevationWindow]:
        for item in as_list(raw_windows):
            window = as_mapping(item)
            start = parse_timestamp(first_present(window, WINDOW_START_FIELDS))
            end = parse_timestamp(first_present(window, WINDOW_END_FIELDS))
            if start is None or end is None:
                logger.debug("Ignoring malformed elevation window", extra={"window": item})
                continue
            yield ElevationWindow(start=start, end=end)


default_resolver = ClaimsResolver()


def resolve_claims(record: Any) -> Claims:
    """Resolve a user record with the default resolver."""
    return default_resolver.resolve(record)
