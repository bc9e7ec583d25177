"""ModelHub - Role Sets

Tiers and their containment ordering per resource kind.
Pure functions over fixed enumerations; no state.
"""

from enum import Enum

from .errors import InvalidTier


class Tier(str, Enum):
    """Permission tiers. `NONE` is only valid as the target of set_tier."""
    NONE = "none"
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


class ResourceKind(str, Enum):
    ORGANIZATION = "organization"
    PROJECT = "project"
    ELEMENT = "element"


# Lowest first. All permission-bearing kinds share one ordering today.
_STANDARD_TIERS = (Tier.READ, Tier.WRITE, Tier.ADMIN)

ROLE_SETS: dict[ResourceKind, tuple[Tier, ...]] = {
    ResourceKind.ORGANIZATION: _STANDARD_TIERS,
    ResourceKind.PROJECT: _STANDARD_TIERS,
    ResourceKind.ELEMENT: _STANDARD_TIERS,
}

# Older records and clients spell "remove from every tier" this way
_NONE_ALIASES = {"none", "remove_all"}


def tiers(kind: ResourceKind = ResourceKind.ORGANIZATION) -> tuple[Tier, ...]:
    """Ordered tiers for a resource kind, lowest to highest."""
    return ROLE_SETS[ResourceKind(kind)]


def rank(tier: Tier, kind: ResourceKind = ResourceKind.ORGANIZATION) -> int:
    """Position in the ordering: NONE is 0, then 1..n. Higher means more privilege."""
    tier = Tier(tier)
    if tier is Tier.NONE:
        return 0
    ordered = tiers(kind)
    if tier not in ordered:
        raise InvalidTier(f"'{tier.value}' is not a tier of {ResourceKind(kind).value}")
    return ordered.index(tier) + 1


def implied_tiers(tier: Tier, kind: ResourceKind = ResourceKind.ORGANIZATION) -> tuple[Tier, ...]:
    """Every tier a holder of `tier` must also hold, itself included. Empty for NONE."""
    return tiers(kind)[:rank(tier, kind)]


def highest(held, kind: ResourceKind = ResourceKind.ORGANIZATION) -> Tier:
    """Highest tier in `held`, or NONE."""
    best = Tier.NONE
    for t in held:
        if rank(t, kind) > rank(best, kind):
            best = Tier(t)
    return best


def parse_tier(kind: ResourceKind, value) -> Tier:
    """Turn user input into a Tier for `kind`. Accepts 'none'/'remove_all' for removal."""
    if isinstance(value, Tier):
        candidate = value.value
    elif isinstance(value, str):
        candidate = value.strip().lower()
    else:
        raise InvalidTier(f"Permission must be a string, got {type(value).__name__}")

    if candidate in _NONE_ALIASES:
        return Tier.NONE
    for t in tiers(kind):
        if t.value == candidate:
            return t
    valid = ", ".join([t.value for t in tiers(kind)] + ["none"])
    raise InvalidTier(f"'{value}' is not a valid permission. Must be one of: {valid}")
