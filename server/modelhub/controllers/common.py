"""ModelHub - helpers shared by the resource controllers"""

import re
from typing import Optional

from ..errors import ResourceArchived, ValidationFailed
from ..membership import MembershipStore
from ..roles import ResourceKind

ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{1,63}$")


def validate_id(value: str, label: str) -> str:
    """Organization, project and element ids: lowercase slug, 2-64 chars."""
    value = (value or "").strip()
    if not ID_PATTERN.match(value):
        raise ValidationFailed(
            f"{label} id must be 2-64 lowercase letters, digits, '-' or '_', "
            "starting with a letter or digit"
        )
    return value


def public_view(row: dict, kind: ResourceKind) -> dict:
    """Row as returned to callers: permissions in the tier-keyed shape."""
    data = dict(row)
    data["permissions"] = MembershipStore.from_dict(kind, row.get("permissions")).to_dict()
    return data


def check_updatable(row: dict, fields: dict, label: str) -> None:
    """Archived resources accept nothing but un-archiving."""
    if not fields:
        raise ValidationFailed("No fields to update")
    if row.get("archived") and set(fields) - {"archived"}:
        raise ResourceArchived(f"{label} is archived; unarchive it before making changes")


def clean_fields(fields: dict, allowed: set, label: Optional[str] = None) -> dict:
    """Drop None values and reject fields the resource does not have."""
    cleaned = {k: v for k, v in fields.items() if v is not None}
    unknown = set(cleaned) - allowed
    if unknown:
        raise ValidationFailed(
            f"Cannot update {', '.join(sorted(unknown))}"
            + (f" on {label}" if label else "")
        )
    return cleaned
