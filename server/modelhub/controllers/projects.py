"""ModelHub - Project Controllers

A project belongs to exactly one organization for its whole life. It is
readable by its own members and, when its visibility is 'internal', by
anyone who can read the organization.
"""

from contextlib import ExitStack
from typing import Optional

from .. import repository
from ..audit import log_audit
from ..config import get_settings
from ..database import get_db, retry_on_transient
from ..errors import PermissionDenied, ResourceArchived, ResourceExists, ResourceNotFound, ValidationFailed
from ..hierarchy import ResourceRef, project_ref
from ..locks import user_key
from ..logging_config import get_logger
from ..membership import MembershipStore
from ..permissions import get_permission_engine, has_access
from ..roles import ResourceKind, Tier
from ..user_context import Principal
from .common import check_updatable, clean_fields, public_view, validate_id
from .organizations import load_org

logger = get_logger(__name__)

VISIBILITIES = ("private", "internal")


def _ref(org_id: str, project_id: str) -> ResourceRef:
    return project_ref(org_id, project_id, get_settings().id_delimiter)


def validate_visibility(value: str) -> str:
    if value not in VISIBILITIES:
        raise ValidationFailed(f"Visibility must be one of: {', '.join(VISIBILITIES)}")
    return value


def can_read_project(
    principal: Principal, row: dict, store: MembershipStore, org_store: MembershipStore,
) -> bool:
    if has_access(principal, store, Tier.READ):
        return True
    return row.get("visibility") == "internal" and has_access(principal, org_store, Tier.READ)


class ProjectAccess:
    """A loaded project plus what the caller may do with it."""

    def __init__(self, principal: Principal, ref: ResourceRef, row: dict,
                 store: MembershipStore, org_store: MembershipStore):
        self.principal = principal
        self.ref = ref
        self.row = row
        self.store = store
        self.org_store = org_store

    def require(self, tier: Tier) -> None:
        """PermissionDenied (403) unless the caller holds `tier` on the project."""
        if not has_access(self.principal, self.store, tier):
            raise PermissionDenied(
                f"User '{self.principal.username}' does not have {tier.value} permission on {self.ref}"
            )


def load_project(cursor, principal: Principal, org_id: str, project_id: str) -> ProjectAccess:
    """Project the caller can read; ResourceNotFound otherwise (missing or hidden)."""
    _, org_store = load_org_store(cursor, org_id)
    ref = _ref(org_id, project_id)
    row = repository.get_project(cursor, ref.qualified_id)
    if row is None:
        raise ResourceNotFound(f"Project '{ref.qualified_id}' not found")
    store = MembershipStore.from_dict(ResourceKind.PROJECT, row["permissions"])
    if not can_read_project(principal, row, store, org_store):
        raise ResourceNotFound(f"Project '{ref.qualified_id}' not found")
    return ProjectAccess(principal, ref, row, store, org_store)


def load_org_store(cursor, org_id: str) -> tuple[dict, MembershipStore]:
    """Org row and store without an access check; projects apply their own rule."""
    row = repository.get_org(cursor, org_id)
    if row is None:
        raise ResourceNotFound(f"Organization '{org_id}' not found")
    return row, MembershipStore.from_dict(ResourceKind.ORGANIZATION, row["permissions"])


@retry_on_transient()
def find_project(principal: Principal, org_id: str, project_id: str) -> dict:
    with get_db() as cursor:
        access = load_project(cursor, principal, org_id, project_id)
    return public_view(access.row, ResourceKind.PROJECT)


@retry_on_transient()
def find_projects(principal: Principal, org_id: str) -> dict:
    """Projects in an org that the caller can read."""
    with get_db() as cursor:
        org_row, org_store = load_org_store(cursor, org_id)
        rows = repository.list_projects(cursor, org_id)
    projects = [
        public_view(row, ResourceKind.PROJECT)
        for row in rows
        if can_read_project(
            principal, row,
            MembershipStore.from_dict(ResourceKind.PROJECT, row["permissions"]),
            org_store,
        )
    ]
    if not projects and not has_access(principal, org_store, Tier.READ):
        raise ResourceNotFound(f"Organization '{org_id}' not found")
    return {"org": org_row["id"], "projects": projects, "count": len(projects)}


@retry_on_transient()
def find_all_projects(principal: Principal) -> dict:
    """Projects the caller can read, across every organization."""
    projects = []
    with get_db() as cursor:
        for org_row in repository.list_orgs(cursor):
            org_store = MembershipStore.from_dict(ResourceKind.ORGANIZATION, org_row["permissions"])
            for row in repository.list_projects(cursor, org_row["id"]):
                store = MembershipStore.from_dict(ResourceKind.PROJECT, row["permissions"])
                if can_read_project(principal, row, store, org_store):
                    projects.append(public_view(row, ResourceKind.PROJECT))
    return {"projects": projects, "count": len(projects)}


@retry_on_transient()
def find_project_members(principal: Principal, org_id: str, project_id: str) -> dict:
    """Role map of a project, for anyone who can read the project."""
    with get_db() as cursor:
        access = load_project(cursor, principal, org_id, project_id)
    return {"resource": access.ref.qualified_id, "kind": access.ref.kind.value,
            "members": access.store.role_map()}


@retry_on_transient()
def find_project_member(principal: Principal, org_id: str, project_id: str, username: str) -> dict:
    with get_db() as cursor:
        access = load_project(cursor, principal, org_id, project_id)
    return {"resource": access.ref.qualified_id, "username": username,
            "roles": [t.value for t in access.store.effective_tiers(username)]}


def create_project(
    principal: Principal,
    org_id: str,
    project_id: str,
    name: str,
    visibility: str = "private",
    custom: Optional[dict] = None,
) -> dict:
    """
    Create a project inside an organization. Requires write on the org.

    The creator becomes project admin and keeps (or gains) read on the org.
    """
    project_id = validate_id(project_id, "Project")
    visibility = validate_visibility(visibility or "private")
    ref = _ref(org_id, project_id)
    engine = get_permission_engine()

    with ExitStack() as held:
        held.enter_context(engine.locks.hold(user_key(principal.username), *ref.lineage()))
        with get_db() as cursor:
            org_row, _ = load_org(cursor, principal, org_id)
            if not engine.check_access(principal, ref.parent, Tier.WRITE,
                                       MembershipStore.from_dict(ResourceKind.ORGANIZATION,
                                                                 org_row["permissions"])):
                raise PermissionDenied(
                    f"User '{principal.username}' does not have write permission on {ref.parent}"
                )
            if org_row["archived"]:
                raise ResourceArchived(f"Organization '{org_id}' is archived")
            if repository.resource_exists(cursor, ref):
                raise ResourceExists(f"Project '{ref.qualified_id}' already exists")
            store = engine.initial_store(cursor, ref, principal.username, held)
            repository.insert_project(cursor, ref, name, store, visibility, custom,
                                      principal.username)
            log_audit(cursor, principal, "create", "project", ref.qualified_id, name)
            row = repository.get_project(cursor, ref.qualified_id)

    logger.info("Project created", extra={"project": ref.qualified_id, "by": principal.username})
    return public_view(row, ResourceKind.PROJECT)


def update_project(principal: Principal, org_id: str, project_id: str, **fields) -> dict:
    """Change name, custom, archived or visibility. Requires admin on the project."""
    with get_db() as cursor:
        access = load_project(cursor, principal, org_id, project_id)
        access.require(Tier.ADMIN)
        fields = clean_fields(fields, {"name", "custom", "archived", "visibility"}, "a project")
        if "visibility" in fields:
            validate_visibility(fields["visibility"])
        check_updatable(access.row, fields, f"Project '{access.ref.qualified_id}'")
        repository.update_fields(cursor, ResourceKind.PROJECT, access.ref.qualified_id, fields)
        log_audit(cursor, principal, "update", "project", access.ref.qualified_id,
                  ", ".join(sorted(fields)))
        row = repository.get_project(cursor, access.ref.qualified_id)
    return public_view(row, ResourceKind.PROJECT)


def delete_project(principal: Principal, org_id: str, project_id: str) -> dict:
    """Delete a project and its elements. Requires admin on the parent org."""
    ref = _ref(org_id, project_id)
    engine = get_permission_engine()
    with engine.locks.hold(ref):
        with get_db() as cursor:
            _, org_store = load_org_store(cursor, org_id)
            org_admin = has_access(principal, org_store, Tier.ADMIN)
            if not org_admin:
                # Hidden projects stay hidden from non-admins
                load_project(cursor, principal, org_id, project_id)
                raise PermissionDenied(
                    f"User '{principal.username}' does not have admin permission on {ref.parent}"
                )
            if not repository.resource_exists(cursor, ref):
                raise ResourceNotFound(f"Project '{ref.qualified_id}' not found")
            counts = repository.delete_project_cascade(cursor, ref.qualified_id)
            log_audit(cursor, principal, "delete", "project", ref.qualified_id,
                      f"{counts['elements']} element(s)")
    logger.info("Project deleted", extra={"project": ref.qualified_id, **counts})
    return {"deleted": True, "id": ref.qualified_id, **counts}
