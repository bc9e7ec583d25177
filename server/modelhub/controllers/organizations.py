"""ModelHub - Organization Controllers

Organizations are the root of the hierarchy. Creating and deleting them is
reserved for global admins; everything else is governed by the org's own
membership store.
"""

from contextlib import ExitStack
from typing import Optional

from .. import repository
from ..audit import log_audit
from ..config import get_settings
from ..database import get_db, retry_on_transient
from ..errors import PermissionDenied, ResourceExists, ResourceNotFound
from ..hierarchy import ResourceRef, org_ref
from ..locks import user_key
from ..logging_config import get_logger
from ..membership import MembershipStore
from ..permissions import get_permission_engine, require_access
from ..roles import ResourceKind, Tier
from ..user_context import Principal
from .common import check_updatable, clean_fields, public_view, validate_id

logger = get_logger(__name__)


def _ref(org_id: str) -> ResourceRef:
    return org_ref(org_id, get_settings().id_delimiter)


def load_org(cursor, principal: Principal, org_id: str) -> tuple[dict, MembershipStore]:
    """Row and store of an org the caller can read; ResourceNotFound otherwise."""
    row = repository.get_org(cursor, org_id)
    if row is None:
        raise ResourceNotFound(f"Organization '{org_id}' not found")
    store = MembershipStore.from_dict(ResourceKind.ORGANIZATION, row["permissions"])
    if not get_permission_engine().check_access(principal, _ref(org_id), Tier.READ, store):
        raise ResourceNotFound(f"Organization '{org_id}' not found")
    return row, store


@retry_on_transient()
def find_org(principal: Principal, org_id: str) -> dict:
    with get_db() as cursor:
        row, _ = load_org(cursor, principal, org_id)
    return public_view(row, ResourceKind.ORGANIZATION)


@retry_on_transient()
def find_orgs(principal: Principal) -> dict:
    """Organizations the caller can read."""
    engine = get_permission_engine()
    with get_db() as cursor:
        rows = repository.list_orgs(cursor)
    orgs = []
    for row in rows:
        store = MembershipStore.from_dict(ResourceKind.ORGANIZATION, row["permissions"])
        if engine.check_access(principal, _ref(row["id"]), Tier.READ, store):
            orgs.append(public_view(row, ResourceKind.ORGANIZATION))
    return {"organizations": orgs, "count": len(orgs)}


def create_org(
    principal: Principal, org_id: str, name: str, custom: Optional[dict] = None,
) -> dict:
    """
    Create an organization. Global admins only.

    The creator is seeded into every tier of the new org's store.
    """
    if not principal.is_superuser:
        raise PermissionDenied("Only global admins may create organizations")
    org_id = validate_id(org_id, "Organization")
    ref = _ref(org_id)
    engine = get_permission_engine()

    with ExitStack() as held:
        held.enter_context(engine.locks.hold(user_key(principal.username), *ref.lineage()))
        with get_db() as cursor:
            if repository.resource_exists(cursor, ref):
                raise ResourceExists(f"Organization '{org_id}' already exists")
            store = engine.initial_store(cursor, ref, principal.username, held)
            repository.insert_org(cursor, org_id, name, store, custom, principal.username)
            log_audit(cursor, principal, "create", "organization", org_id, name)
            row = repository.get_org(cursor, org_id)

    logger.info("Organization created", extra={"org": org_id, "by": principal.username})
    return public_view(row, ResourceKind.ORGANIZATION)


def update_org(principal: Principal, org_id: str, **fields) -> dict:
    """Change name, custom or archived. Requires admin on the org."""
    ref = _ref(org_id)
    with get_db() as cursor:
        row, store = load_org(cursor, principal, org_id)
        require_access(principal, ref, store, Tier.ADMIN)
        fields = clean_fields(fields, {"name", "custom", "archived"}, "an organization")
        check_updatable(row, fields, f"Organization '{org_id}'")
        repository.update_fields(cursor, ResourceKind.ORGANIZATION, org_id, fields)
        log_audit(cursor, principal, "update", "organization", org_id,
                  ", ".join(sorted(fields)))
        row = repository.get_org(cursor, org_id)
    return public_view(row, ResourceKind.ORGANIZATION)


def delete_org(principal: Principal, org_id: str) -> dict:
    """Delete an organization with all its projects and elements. Global admins only."""
    ref = _ref(org_id)
    engine = get_permission_engine()
    with engine.locks.hold(ref):
        with get_db() as cursor:
            load_org(cursor, principal, org_id)
            if not principal.is_superuser:
                raise PermissionDenied("Only global admins may delete organizations")
            counts = repository.delete_org_cascade(cursor, org_id)
            log_audit(cursor, principal, "delete", "organization", org_id,
                      f"{counts['projects']} project(s), {counts['elements']} element(s)")
    logger.info("Organization deleted", extra={"org": org_id, **counts})
    return {"deleted": True, "id": org_id, **counts}
