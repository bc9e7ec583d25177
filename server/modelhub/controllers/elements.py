"""ModelHub - Element Controllers

Element content access follows the owning project: read on the project to
view, write on the project to create, change or delete. Each element also
owns a membership store (creator seeded) managed through the permission
engine like any other resource.
"""

from contextlib import ExitStack
from typing import Optional

from .. import repository
from ..audit import log_audit
from ..config import get_settings
from ..database import get_db, retry_on_transient
from ..errors import ResourceArchived, ResourceExists, ResourceNotFound
from ..hierarchy import ResourceRef, element_ref
from ..locks import user_key
from ..logging_config import get_logger
from ..permissions import get_permission_engine
from ..roles import ResourceKind, Tier
from ..user_context import Principal
from .common import check_updatable, clean_fields, public_view, validate_id
from .projects import load_project

logger = get_logger(__name__)


def _ref(org_id: str, project_id: str, element_id: str) -> ResourceRef:
    return element_ref(org_id, project_id, element_id, get_settings().id_delimiter)


def _load_element(cursor, ref: ResourceRef) -> dict:
    row = repository.get_element(cursor, ref.qualified_id)
    if row is None:
        raise ResourceNotFound(f"Element '{ref.qualified_id}' not found")
    return row


@retry_on_transient()
def find_element(principal: Principal, org_id: str, project_id: str, element_id: str) -> dict:
    ref = _ref(org_id, project_id, element_id)
    with get_db() as cursor:
        load_project(cursor, principal, org_id, project_id)
        row = _load_element(cursor, ref)
    return public_view(row, ResourceKind.ELEMENT)


@retry_on_transient()
def find_elements(principal: Principal, org_id: str, project_id: str) -> dict:
    with get_db() as cursor:
        access = load_project(cursor, principal, org_id, project_id)
        rows = repository.list_elements(cursor, access.ref.qualified_id)
    elements = [public_view(row, ResourceKind.ELEMENT) for row in rows]
    return {"project": access.ref.qualified_id, "elements": elements, "count": len(elements)}


def create_element(
    principal: Principal,
    org_id: str,
    project_id: str,
    element_id: str,
    name: str,
    element_type: Optional[str] = None,
    documentation: Optional[str] = None,
    custom: Optional[dict] = None,
) -> dict:
    """Create an element in a project. Requires write on the project."""
    element_id = validate_id(element_id, "Element")
    ref = _ref(org_id, project_id, element_id)
    engine = get_permission_engine()

    with ExitStack() as held:
        held.enter_context(engine.locks.hold(user_key(principal.username), *ref.lineage()))
        with get_db() as cursor:
            access = load_project(cursor, principal, org_id, project_id)
            access.require(Tier.WRITE)
            if access.row["archived"]:
                raise ResourceArchived(f"Project '{access.ref.qualified_id}' is archived")
            if repository.resource_exists(cursor, ref):
                raise ResourceExists(f"Element '{ref.qualified_id}' already exists")
            store = engine.initial_store(cursor, ref, principal.username, held)
            repository.insert_element(
                cursor, ref, name, store, element_type=element_type,
                documentation=documentation, custom=custom, created_by=principal.username,
            )
            log_audit(cursor, principal, "create", "element", ref.qualified_id, name)
            row = repository.get_element(cursor, ref.qualified_id)

    logger.info("Element created", extra={"element": ref.qualified_id, "by": principal.username})
    return public_view(row, ResourceKind.ELEMENT)


def update_element(
    principal: Principal, org_id: str, project_id: str, element_id: str, **fields,
) -> dict:
    """Change name, type, documentation, custom or archived. Requires write on the project."""
    ref = _ref(org_id, project_id, element_id)
    if "element_type" in fields:
        fields["type"] = fields.pop("element_type")
    with get_db() as cursor:
        access = load_project(cursor, principal, org_id, project_id)
        row = _load_element(cursor, ref)
        access.require(Tier.WRITE)
        fields = clean_fields(
            fields, {"name", "type", "documentation", "custom", "archived"}, "an element",
        )
        check_updatable(row, fields, f"Element '{ref.qualified_id}'")
        repository.update_fields(cursor, ResourceKind.ELEMENT, ref.qualified_id, fields)
        log_audit(cursor, principal, "update", "element", ref.qualified_id,
                  ", ".join(sorted(fields)))
        row = repository.get_element(cursor, ref.qualified_id)
    return public_view(row, ResourceKind.ELEMENT)


def delete_element(principal: Principal, org_id: str, project_id: str, element_id: str) -> dict:
    """Delete one element. Requires write on the project."""
    ref = _ref(org_id, project_id, element_id)
    engine = get_permission_engine()
    with engine.locks.hold(ref):
        with get_db() as cursor:
            access = load_project(cursor, principal, org_id, project_id)
            _load_element(cursor, ref)
            access.require(Tier.WRITE)
            repository.delete_element(cursor, ref.qualified_id)
            log_audit(cursor, principal, "delete", "element", ref.qualified_id)
    logger.info("Element deleted", extra={"element": ref.qualified_id})
    return {"deleted": True, "id": ref.qualified_id}
