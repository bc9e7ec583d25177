"""ModelHub - Repository

All SQL lives here. Every function receives a DB-API cursor as its first
parameter; the caller owns the transaction via database.get_db().

Membership stores are read with a single SELECT of the permissions column
and written with a single UPDATE of the whole document, so a reader never
observes a half-applied change.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from .database import row_to_dict, rows_to_list
from .errors import ResourceNotFound
from .hierarchy import ResourceRef
from .membership import MembershipStore
from .roles import ResourceKind

TABLES = {
    ResourceKind.ORGANIZATION: "organizations",
    ResourceKind.PROJECT: "projects",
    ResourceKind.ELEMENT: "elements",
}

# Columns a controller may change through update_fields()
UPDATABLE_COLUMNS = {
    ResourceKind.ORGANIZATION: {"name", "custom", "archived"},
    ResourceKind.PROJECT: {"name", "custom", "archived", "visibility"},
    ResourceKind.ELEMENT: {"name", "custom", "archived", "documentation", "type"},
}

JSON_COLUMNS = {"permissions", "custom"}


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode(row: Optional[dict]) -> Optional[dict]:
    """Parse JSON columns and normalise integer flags."""
    if row is None:
        return None
    for column in JSON_COLUMNS:
        if column in row and isinstance(row[column], str):
            row[column] = json.loads(row[column]) if row[column] else {}
    for flag in ("admin", "archived"):
        if flag in row:
            row[flag] = bool(row[flag])
    return row


# ============================================================================
# USERS
# ============================================================================

def get_user(cursor: Any, username: str) -> Optional[dict]:
    cursor.execute(
        "SELECT username, email, fname, lname, admin, created_by, created_on "
        "FROM users WHERE username = ?",
        (username,),
    )
    return _decode(row_to_dict(cursor, cursor.fetchone()))


def user_exists(cursor: Any, username: str) -> bool:
    cursor.execute("SELECT 1 FROM users WHERE username = ?", (username,))
    return cursor.fetchone() is not None


def list_users(cursor: Any) -> list[dict]:
    cursor.execute(
        "SELECT username, email, fname, lname, admin, created_by, created_on "
        "FROM users ORDER BY username"
    )
    return [_decode(r) for r in rows_to_list(cursor, cursor.fetchall())]


def insert_user(
    cursor: Any,
    username: str,
    email: Optional[str] = None,
    fname: Optional[str] = None,
    lname: Optional[str] = None,
    admin: bool = False,
    created_by: Optional[str] = None,
) -> None:
    cursor.execute(
        """
        INSERT INTO users (username, email, fname, lname, admin, created_by, created_on)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (username, email, fname, lname, 1 if admin else 0, created_by, utcnow()),
    )


USER_UPDATABLE_COLUMNS = {"email", "fname", "lname", "admin"}


def update_user(cursor: Any, username: str, fields: dict) -> None:
    unknown = set(fields) - USER_UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update columns {sorted(unknown)} on user")
    if not fields:
        return
    assignments = [f"{column} = ?" for column in fields]
    params = [
        (1 if value else 0) if column == "admin" else value
        for column, value in fields.items()
    ]
    cursor.execute(
        f"UPDATE users SET {', '.join(assignments)} WHERE username = ?",
        tuple(params) + (username,),
    )
    if cursor.rowcount == 0:
        raise ResourceNotFound(f"User '{username}' not found")


def delete_user(cursor: Any, username: str) -> bool:
    cursor.execute("DELETE FROM users WHERE username = ?", (username,))
    return cursor.rowcount > 0


# ============================================================================
# ORGANIZATIONS
# ============================================================================

_ORG_COLUMNS = "id, name, permissions, custom, archived, created_by, created_on, updated_on"


def get_org(cursor: Any, org_id: str) -> Optional[dict]:
    cursor.execute(f"SELECT {_ORG_COLUMNS} FROM organizations WHERE id = ?", (org_id,))
    return _decode(row_to_dict(cursor, cursor.fetchone()))


def list_orgs(cursor: Any) -> list[dict]:
    cursor.execute(f"SELECT {_ORG_COLUMNS} FROM organizations ORDER BY id")
    return [_decode(r) for r in rows_to_list(cursor, cursor.fetchall())]


def insert_org(
    cursor: Any, org_id: str, name: str, store: MembershipStore,
    custom: Optional[dict] = None, created_by: Optional[str] = None,
) -> None:
    cursor.execute(
        """
        INSERT INTO organizations (id, name, permissions, custom, archived, created_by, created_on)
        VALUES (?, ?, ?, ?, 0, ?, ?)
        """,
        (org_id, name, store.to_json(), json.dumps(custom or {}), created_by, utcnow()),
    )


# ============================================================================
# PROJECTS
# ============================================================================

_PROJECT_COLUMNS = (
    "id, org_id, project_id, name, visibility, permissions, custom, archived, "
    "created_by, created_on, updated_on"
)


def get_project(cursor: Any, project_uid: str) -> Optional[dict]:
    cursor.execute(f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_uid,))
    return _decode(row_to_dict(cursor, cursor.fetchone()))


def list_projects(cursor: Any, org_id: str) -> list[dict]:
    cursor.execute(
        f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE org_id = ? ORDER BY id", (org_id,),
    )
    return [_decode(r) for r in rows_to_list(cursor, cursor.fetchall())]


def insert_project(
    cursor: Any, ref: ResourceRef, name: str, store: MembershipStore,
    visibility: str = "private", custom: Optional[dict] = None,
    created_by: Optional[str] = None,
) -> None:
    cursor.execute(
        """
        INSERT INTO projects (id, org_id, project_id, name, visibility, permissions,
                              custom, archived, created_by, created_on)
        VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
        """,
        (
            ref.qualified_id, ref.org_id, ref.ident, name, visibility,
            store.to_json(), json.dumps(custom or {}), created_by, utcnow(),
        ),
    )


# ============================================================================
# ELEMENTS
# ============================================================================

_ELEMENT_COLUMNS = (
    "id, project_uid, org_id, element_id, name, type, documentation, permissions, "
    "custom, archived, created_by, created_on, updated_on"
)


def get_element(cursor: Any, element_uid: str) -> Optional[dict]:
    cursor.execute(f"SELECT {_ELEMENT_COLUMNS} FROM elements WHERE id = ?", (element_uid,))
    return _decode(row_to_dict(cursor, cursor.fetchone()))


def list_elements(cursor: Any, project_uid: str) -> list[dict]:
    cursor.execute(
        f"SELECT {_ELEMENT_COLUMNS} FROM elements WHERE project_uid = ? ORDER BY id",
        (project_uid,),
    )
    return [_decode(r) for r in rows_to_list(cursor, cursor.fetchall())]


def insert_element(
    cursor: Any, ref: ResourceRef, name: str, store: MembershipStore,
    element_type: Optional[str] = None, documentation: Optional[str] = None,
    custom: Optional[dict] = None, created_by: Optional[str] = None,
) -> None:
    cursor.execute(
        """
        INSERT INTO elements (id, project_uid, org_id, element_id, name, type, documentation,
                              permissions, custom, archived, created_by, created_on)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
        """,
        (
            ref.qualified_id, ref.parent.qualified_id, ref.org_id, ref.ident, name,
            element_type, documentation, store.to_json(), json.dumps(custom or {}),
            created_by, utcnow(),
        ),
    )


# ============================================================================
# SHARED: field updates, deletes, permissions
# ============================================================================

def update_fields(cursor: Any, kind: ResourceKind, row_id: str, fields: dict) -> None:
    """Update whitelisted columns of one resource row."""
    allowed = UPDATABLE_COLUMNS[kind]
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update columns {sorted(unknown)} on {kind.value}")
    if not fields:
        return
    assignments = []
    params = []
    for column, value in fields.items():
        if column in JSON_COLUMNS:
            value = json.dumps(value or {})
        elif isinstance(value, bool):
            value = 1 if value else 0
        assignments.append(f"{column} = ?")
        params.append(value)
    assignments.append("updated_on = ?")
    params.extend([utcnow(), row_id])
    cursor.execute(
        f"UPDATE {TABLES[kind]} SET {', '.join(assignments)} WHERE id = ?",
        tuple(params),
    )
    if cursor.rowcount == 0:
        raise ResourceNotFound(f"{kind.value} '{row_id}' not found")


def delete_org_cascade(cursor: Any, org_id: str) -> dict:
    """Delete an organization with all its projects and elements. Returns counts."""
    cursor.execute("DELETE FROM elements WHERE org_id = ?", (org_id,))
    elements = cursor.rowcount
    cursor.execute("DELETE FROM projects WHERE org_id = ?", (org_id,))
    projects = cursor.rowcount
    cursor.execute("DELETE FROM organizations WHERE id = ?", (org_id,))
    return {"organizations": cursor.rowcount, "projects": projects, "elements": elements}


def delete_project_cascade(cursor: Any, project_uid: str) -> dict:
    cursor.execute("DELETE FROM elements WHERE project_uid = ?", (project_uid,))
    elements = cursor.rowcount
    cursor.execute("DELETE FROM projects WHERE id = ?", (project_uid,))
    return {"projects": cursor.rowcount, "elements": elements}


def delete_element(cursor: Any, element_uid: str) -> bool:
    cursor.execute("DELETE FROM elements WHERE id = ?", (element_uid,))
    return cursor.rowcount > 0


def resource_exists(cursor: Any, ref: ResourceRef) -> bool:
    cursor.execute(f"SELECT 1 FROM {TABLES[ref.kind]} WHERE id = ?", (ref.qualified_id,))
    return cursor.fetchone() is not None


def load_permissions(cursor: Any, ref: ResourceRef) -> MembershipStore:
    """Atomic read of one resource's membership store."""
    cursor.execute(
        f"SELECT permissions FROM {TABLES[ref.kind]} WHERE id = ?", (ref.qualified_id,),
    )
    row = cursor.fetchone()
    if row is None:
        raise ResourceNotFound(f"{ref} not found")
    return MembershipStore.from_dict(ref.kind, row[0])


def replace_permissions_by_id(
    cursor: Any, kind: ResourceKind, row_id: str, store: MembershipStore,
) -> None:
    """Atomic replace-write of the full tier -> members document."""
    cursor.execute(
        f"UPDATE {TABLES[kind]} SET permissions = ?, updated_on = ? WHERE id = ?",
        (store.to_json(), utcnow(), row_id),
    )
    if cursor.rowcount == 0:
        raise ResourceNotFound(f"{kind.value} '{row_id}' not found")


def replace_permissions(cursor: Any, ref: ResourceRef, store: MembershipStore) -> None:
    replace_permissions_by_id(cursor, ref.kind, ref.qualified_id, store)


def list_memberships(cursor: Any, kind: ResourceKind) -> list[tuple[str, MembershipStore]]:
    """(row id, store) for every resource of a kind."""
    cursor.execute(f"SELECT id, permissions FROM {TABLES[kind]} ORDER BY id")
    return [
        (row[0], MembershipStore.from_dict(kind, row[1]))
        for row in cursor.fetchall()
    ]


# ============================================================================
# AUDIT LOG
# ============================================================================

def insert_audit_row(
    cursor: Any, username: str, operation: str, entity_type: str,
    entity_id: Optional[str], detail: Optional[str],
) -> None:
    cursor.execute(
        """
        INSERT INTO audit_log (id, username, operation, entity_type, entity_id, detail, timestamp)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (str(uuid.uuid4()), username, operation, entity_type, entity_id, detail, utcnow()),
    )


def list_audit_rows(cursor: Any, entity_id: Optional[str] = None, limit: int = 50) -> list[dict]:
    if entity_id:
        cursor.execute(
            "SELECT id, username, operation, entity_type, entity_id, detail, timestamp "
            "FROM audit_log WHERE entity_id = ? ORDER BY timestamp DESC",
            (entity_id,),
        )
    else:
        cursor.execute(
            "SELECT id, username, operation, entity_type, entity_id, detail, timestamp "
            "FROM audit_log ORDER BY timestamp DESC"
        )
    return rows_to_list(cursor, cursor.fetchmany(limit))
