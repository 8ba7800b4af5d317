"""
OPSGUARD - Scope Matching

Normalizes scope domain names and tests held scope sets against requests.
"""

from enum import Enum
from typing import AbstractSet, Iterable, Optional, Union


WILDCARD = "*"

# Raw values that mean "every value in this domain"
WILDCARD_ALIASES = frozenset({"*", "all"})


class ScopeDomain(str, Enum):
    """Canonical scope domains."""

    TENANT = "tenant"
    SITES = "sites"
    ROUTES = "routes"


class MatchMode(str, Enum):
    """How a multi-value scope request is satisfied."""

    ANY = "any"
    ALL = "all"


DOMAIN_SYNONYMS: dict[str, str] = {
    "site": ScopeDomain.SITES.value,
    "sites": ScopeDomain.SITES.value,
    "location": ScopeDomain.SITES.value,
    "locations": ScopeDomain.SITES.value,
    "route": ScopeDomain.ROUTES.value,
    "routes": ScopeDomain.ROUTES.value,
}


def normalize_domain(name) -> str:
    """Map a domain synonym onto its canonical name. Unknown names pass through."""
    key = str(name).strip()
    return DOMAIN_SYNONYMS.get(key.lower(), key)


def is_wildcard(value) -> bool:
    return isinstance(value, str) and value.strip().lower() in WILDCARD_ALIASES


def matches(
    held: Optional[AbstractSet[str]],
    requested: Optional[Iterable] = None,
    mode: Union[MatchMode, str] = MatchMode.ANY,
) -> bool:
    """
    Test whether a held scope set satisfies a request.

    Args:
        held: Scope values held in one domain (may contain the wildcard)
        requested: Values asked for. Empty means "any access in this domain"
        mode: "any" needs one requested value held, "all" needs every one

    Returns:
        True when the request is satisfied
    """
    held = held or frozenset()
    if WILDCARD in held:
        return True

    values = [str(v) for v in (requested or [])]
    if not values:
        return len(held) > 0

    held_values = {str(v) for v in held}
    if MatchMode(mode) is MatchMode.ALL:
        return all(v in held_values for v in values)
    return any(v in held_values for v in values)
