"""ModelHub - Membership Store

Per-resource record of which usernames hold which tier.
Containment (admin ⊆ write ⊆ read) is checked by validate(); the raw
grant/revoke primitives do not check anything and are only called from
the permission engine.
"""

import copy
import json

from .errors import InvariantViolation
from .roles import ResourceKind, Tier, tiers, implied_tiers, highest


class MembershipStore:
    """Tier -> set of usernames for one resource instance."""

    def __init__(self, kind: ResourceKind = ResourceKind.ORGANIZATION, members: dict = None):
        self.kind = ResourceKind(kind)
        self._members: dict[Tier, set[str]] = {t: set() for t in tiers(self.kind)}
        for tier_name, names in (members or {}).items():
            self._members[Tier(tier_name)].update(names)

    # --- construction ---

    @classmethod
    def seeded(cls, kind: ResourceKind, creator: str) -> "MembershipStore":
        """Store for a new resource: the creator holds every tier."""
        return cls(kind, {t: {creator} for t in tiers(kind)})

    @classmethod
    def from_dict(cls, kind: ResourceKind, data) -> "MembershipStore":
        """Load either serialized shape and repair containment.

        Tier-keyed: {"read": [...], "write": [...], "admin": [...]}
        User-keyed (older records): {"alice": ["read", "write"]}
        """
        if isinstance(data, str):
            data = json.loads(data) if data else {}
        store = cls(kind)
        if not data:
            return store
        tier_names = {t.value for t in tiers(kind)}
        if set(data.keys()) <= tier_names:
            for tier_name, names in data.items():
                for name in names or []:
                    store._grant_implied(name, Tier(tier_name))
        else:
            for name, held in data.items():
                store._grant_implied(name, highest(held or [], kind))
        return store

    def _grant_implied(self, username: str, tier: Tier) -> None:
        for t in implied_tiers(tier, self.kind):
            self._members[t].add(username)

    def copy(self) -> "MembershipStore":
        return MembershipStore(self.kind, copy.deepcopy(self._members))

    # --- queries ---

    def members(self, tier: Tier) -> frozenset:
        """Usernames holding at least `tier`."""
        return frozenset(self._members[Tier(tier)])

    def has_tier(self, username: str, tier: Tier) -> bool:
        return username in self._members.get(Tier(tier), ())

    def effective_tiers(self, username: str) -> tuple[Tier, ...]:
        """Tiers implied by the highest one held; empty when none."""
        held = [t for t in tiers(self.kind) if username in self._members[t]]
        return implied_tiers(highest(held, self.kind), self.kind)

    def highest_tier(self, username: str) -> Tier:
        return highest(self.effective_tiers(username), self.kind)

    def usernames(self) -> set[str]:
        names = set()
        for group in self._members.values():
            names |= group
        return names

    # --- raw primitives (engine only) ---

    def _raw_grant(self, username: str, tier: Tier) -> None:
        self._members[Tier(tier)].add(username)

    def _raw_revoke(self, username: str, tier: Tier) -> None:
        self._members[Tier(tier)].discard(username)

    # --- invariants ---

    def validate(self) -> None:
        """Raise InvariantViolation unless every higher tier is a subset of the one below."""
        ordered = tiers(self.kind)
        for lower, upper in zip(ordered, ordered[1:]):
            stray = self._members[upper] - self._members[lower]
            if stray:
                raise InvariantViolation(
                    f"{self.kind.value} membership: {sorted(stray)} hold "
                    f"'{upper.value}' without '{lower.value}'"
                )

    # --- views ---

    def to_dict(self) -> dict[str, list[str]]:
        """Tier-keyed view used for resource serialization and storage."""
        return {t.value: sorted(self._members[t]) for t in tiers(self.kind)}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def role_map(self) -> dict[str, list[str]]:
        """User-keyed view: {"alice": ["read", "write", "admin"]}."""
        return {
            name: [t.value for t in self.effective_tiers(name)]
            for name in sorted(self.usernames())
        }

    def __eq__(self, other) -> bool:
        if not isinstance(other, MembershipStore):
            return NotImplemented
        return self.kind == other.kind and self._members == other._members

    def __repr__(self) -> str:
        return f"MembershipStore({self.kind.value}, {self.to_dict()})"
