"""ModelHub - Permission Engine

The only sanctioned way to read or change who holds which tier on an
organization, project or element.

Guarantees after every mutation:
- containment: admin ⊆ write ⊆ read on every store
- a resource never loses its last admin
- nobody demotes their own admin tier
- anyone granted a tier on a child holds at least read on every ancestor

Invariants are checked before anything is written. The resource store and
any ancestor stores that gained read are written in one transaction while
their locks are held (child first, then parent).
"""

from contextlib import ExitStack
from functools import lru_cache
from typing import Any, Optional

from . import repository
from .audit import log_audit
from .database import get_db
from .errors import (
    ModelHubError,
    PermissionDenied,
    ResourceNotFound,
    SelfDemotionForbidden,
    LastAdminProtected,
)
from .hierarchy import ResourceRef, ref_from_id
from .locks import LockRegistry, user_key
from .logging_config import get_logger
from .membership import MembershipStore
from .roles import Tier, tiers, implied_tiers, parse_tier, rank
from .user_context import Principal

logger = get_logger(__name__)


def has_access(principal: Principal, store: MembershipStore, tier: Tier) -> bool:
    """Superusers pass every check; everyone else needs `tier` in the store."""
    if principal.is_superuser:
        return True
    return store.has_tier(principal.username, tier)


def require_access(principal: Principal, ref: ResourceRef, store: MembershipStore, tier: Tier) -> None:
    """Raise PermissionDenied unless `principal` holds `tier` on the loaded store."""
    if has_access(principal, store, tier):
        return
    can_read = has_access(principal, store, Tier.READ)
    raise PermissionDenied(
        f"User '{principal.username}' does not have {Tier(tier).value} permission on {ref}",
        can_read=can_read,
    )


def apply_tier(
    actor: Principal, store: MembershipStore, target: str, new_tier: Tier,
) -> MembershipStore:
    """Steps 1-4 of a role change, on a copy. The input store is never modified."""
    current = store.highest_tier(target)

    if (
        actor.username == target
        and current is Tier.ADMIN
        and rank(new_tier, store.kind) < rank(Tier.ADMIN, store.kind)
    ):
        raise SelfDemotionForbidden("User cannot remove their own admin permission")

    admins = store.members(Tier.ADMIN)
    if target in admins and new_tier is not Tier.ADMIN and admins == {target}:
        raise LastAdminProtected(f"'{target}' is the only admin and cannot be removed or demoted")

    updated = store.copy()
    keep = implied_tiers(new_tier, store.kind)
    for t in tiers(store.kind):
        if t in keep:
            updated._raw_grant(target, t)
        else:
            updated._raw_revoke(target, t)
    updated.validate()
    return updated


class PermissionEngine:
    """Checks and mutates membership stores, serialized per resource."""

    def __init__(self, locks: Optional[LockRegistry] = None, db=None):
        self.locks = locks or LockRegistry()
        self._db = db

    def _transaction(self):
        return (self._db or get_db)()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, resource: ResourceRef) -> MembershipStore:
        with self._transaction() as cursor:
            return repository.load_permissions(cursor, resource)

    def check_access(
        self,
        user: Principal,
        resource: ResourceRef,
        required_tier: Tier,
        store: Optional[MembershipStore] = None,
    ) -> bool:
        """True iff `user` is a superuser or holds `required_tier` on `resource`.

        A missing resource is simply False; callers must answer "not found"
        either way so an unauthorized caller learns nothing. An unknown tier
        name raises InvalidTier, for superusers too.
        """
        tier = parse_tier(resource.kind, required_tier)
        if user.is_superuser:
            return True
        if store is None:
            try:
                store = self.load(resource)
            except ResourceNotFound:
                return False
        return store.has_tier(user.username, tier)

    def effective_role_map(
        self, resource: ResourceRef, actor: Optional[Principal] = None,
    ) -> dict[str, list[str]]:
        """{"alice": ["read", "write", "admin"], ...}. Requires read when an actor is given."""
        store = self.load(resource)
        if actor is not None:
            require_access(actor, resource, store, Tier.READ)
        return store.role_map()

    def find_member_tiers(self, actor: Principal, resource: ResourceRef, username: str) -> list[str]:
        """Tiers held by one user, [] if none."""
        store = self.load(resource)
        require_access(actor, resource, store, Tier.READ)
        return [t.value for t in store.effective_tiers(username)]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_tier(
        self, actor: Principal, resource: ResourceRef, target_user: str, new_tier,
    ) -> MembershipStore:
        """Reset `target_user` to exactly the tiers implied by `new_tier`.

        Absolute, not incremental, so repeating a call changes nothing.
        `new_tier` may be 'none' to remove the user from every tier.
        """
        try:
            with ExitStack() as held:
                # Target user, then the whole chain child first, before any write
                held.enter_context(self.locks.hold(user_key(target_user), *resource.lineage()))
                with self._transaction() as cursor:
                    store = repository.load_permissions(cursor, resource)
                    require_access(actor, resource, store, Tier.ADMIN)
                    tier = parse_tier(resource.kind, new_tier)
                    # Checked under the user lock so a concurrent delete_user cannot interleave
                    if not repository.user_exists(cursor, target_user):
                        raise ResourceNotFound(f"User '{target_user}' not found")

                    updated = apply_tier(actor, store, target_user, tier)
                    if updated != store:
                        repository.replace_permissions(cursor, resource, updated)

                    propagated = []
                    if tier is not Tier.NONE:
                        propagated = self.ensure_read_on_ancestors(
                            cursor, resource, target_user, held,
                        )

                    if updated != store or propagated:
                        log_audit(
                            cursor, actor, "set_role", resource.kind.value,
                            resource.qualified_id,
                            f"{target_user} -> {tier.value}"
                            + (f" (read granted on {', '.join(propagated)})" if propagated else ""),
                        )
        except ModelHubError as e:
            logger.warning(
                "Role change rejected: %s set %s to %s on %s: %s",
                actor.username, target_user, new_tier, resource, type(e).__name__,
            )
            raise

        logger.info(
            "Role changed",
            extra={
                "actor": actor.username,
                "target": target_user,
                "tier": tier.value,
                "resource": resource.qualified_id,
                "propagated": propagated,
            },
        )
        return updated

    def remove_member(self, actor: Principal, resource: ResourceRef, target_user: str) -> MembershipStore:
        """Remove `target_user` from every tier; same protections as set_tier."""
        return self.set_tier(actor, resource, target_user, Tier.NONE)

    def ensure_read_on_ancestors(
        self, cursor: Any, resource: ResourceRef, username: str, held: ExitStack,
    ) -> list[str]:
        """Grant read on every ancestor where `username` lacks it. Never lowers a tier.

        Ancestor locks are entered on `held`, after the child's, and stay held
        until the caller's transaction has committed. Returns the qualified
        ids that gained read.
        """
        granted = []
        for ancestor in resource.ancestors():
            held.enter_context(self.locks.hold(ancestor))
            store = repository.load_permissions(cursor, ancestor)
            if store.has_tier(username, Tier.READ):
                continue
            updated = store.copy()
            updated._raw_grant(username, Tier.READ)
            updated.validate()
            repository.replace_permissions(cursor, ancestor, updated)
            granted.append(ancestor.qualified_id)
        return granted

    def initial_store(
        self, cursor: Any, resource: ResourceRef, creator: str, held: ExitStack,
    ) -> MembershipStore:
        """Store for a resource being created: creator in every tier, read on ancestors.

        The caller holds the creator's user lock.
        """
        if not repository.user_exists(cursor, creator):
            raise ResourceNotFound(f"User '{creator}' not found")
        self.ensure_read_on_ancestors(cursor, resource, creator, held)
        return MembershipStore.seeded(resource.kind, creator)

    def strip_user(self, cursor: Any, username: str, held: ExitStack, delimiter: str = ":") -> int:
        """Remove a user from every store (user deletion). Refuses to orphan a resource.

        The caller holds the user's lock, so no grant to this user can land
        meanwhile. Every affected store is then locked, children before
        parents, before the first write. Returns the number of stores changed.
        """
        refs = []
        for kind in reversed(list(repository.TABLES)):
            for row_id, store in repository.list_memberships(cursor, kind):
                if username in store.usernames():
                    refs.append(ref_from_id(kind, row_id, delimiter))
        held.enter_context(self.locks.hold(*refs))

        changed = 0
        for ref in refs:
            # Re-read under the lock
            store = repository.load_permissions(cursor, ref)
            if username not in store.usernames():
                continue
            if store.members(Tier.ADMIN) == {username}:
                raise LastAdminProtected(
                    f"'{username}' is the only admin of {ref} and cannot be removed"
                )
            updated = store.copy()
            for t in tiers(ref.kind):
                updated._raw_revoke(username, t)
            updated.validate()
            repository.replace_permissions(cursor, ref, updated)
            changed += 1
        return changed


@lru_cache
def get_permission_engine() -> PermissionEngine:
    """Process-wide engine; one lock registry per process."""
    return PermissionEngine()
