"""ModelHub - User Controllers"""

import re
from contextlib import ExitStack
from typing import Optional

from .. import repository
from ..audit import log_audit
from ..config import get_settings
from ..database import get_db, retry_on_transient
from ..errors import (
    PermissionDenied, ResourceExists, ResourceNotFound, SelfDemotionForbidden, ValidationFailed,
)
from ..locks import user_key
from ..logging_config import get_logger
from ..permissions import get_permission_engine
from ..user_context import Principal
from .common import clean_fields

logger = get_logger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{2,35}$")


def validate_username(username: str) -> str:
    username = (username or "").strip()
    if not USERNAME_PATTERN.match(username):
        raise ValidationFailed(
            "Username must start with a lowercase letter and contain 3-36 "
            "lowercase letters, digits or underscores"
        )
    return username


def _require_superuser(principal: Principal, action: str) -> None:
    if not principal.is_superuser:
        raise PermissionDenied(f"Only global admins may {action}")


@retry_on_transient()
def get_user(principal: Principal, username: str) -> dict:
    """
    Get one user.

    Returns:
        {"username", "email", "fname", "lname", "admin", "created_by", "created_on"}
    """
    with get_db() as cursor:
        user = repository.get_user(cursor, username)
    if user is None:
        raise ResourceNotFound(f"User '{username}' not found")
    return user


@retry_on_transient()
def list_users(principal: Principal) -> dict:
    with get_db() as cursor:
        users = repository.list_users(cursor)
    return {"users": users, "count": len(users)}


def create_user(
    principal: Principal,
    username: str,
    email: Optional[str] = None,
    fname: Optional[str] = None,
    lname: Optional[str] = None,
    admin: bool = False,
) -> dict:
    """
    Create a user. Global admins only.

    Args:
        username: Required. Lowercase login name, 3-36 chars.
        admin: True makes the new user a global admin (superuser).
    """
    _require_superuser(principal, "create users")
    username = validate_username(username)

    with get_db() as cursor:
        if repository.user_exists(cursor, username):
            raise ResourceExists(f"User '{username}' already exists")
        repository.insert_user(
            cursor, username, email=email, fname=fname, lname=lname,
            admin=admin, created_by=principal.username,
        )
        log_audit(cursor, principal, "create", "user", username,
                  "global admin" if admin else None)
        user = repository.get_user(cursor, username)

    logger.info("User created", extra={"username": username, "by": principal.username})
    return user


def update_user(principal: Principal, username: str, **fields) -> dict:
    """
    Change a user's profile. Global admins, or the user themself.

    Args:
        email, fname, lname: Optional. None leaves the field unchanged.
        admin: Optional. Only global admins may change it, and never on
            their own account.
    """
    if not principal.is_superuser and principal.username != username:
        raise PermissionDenied(f"User '{principal.username}' may not update '{username}'")
    fields = clean_fields(fields, {"email", "fname", "lname", "admin"}, "a user")
    if "admin" in fields:
        _require_superuser(principal, "change the global admin flag")
        if principal.username == username:
            raise SelfDemotionForbidden("Global admins cannot change their own admin flag")
    if not fields:
        raise ValidationFailed("No fields to update")

    with get_db() as cursor:
        if not repository.user_exists(cursor, username):
            raise ResourceNotFound(f"User '{username}' not found")
        repository.update_user(cursor, username, fields)
        log_audit(cursor, principal, "update", "user", username, ", ".join(sorted(fields)))
        user = repository.get_user(cursor, username)

    logger.info("User updated", extra={"username": username, "by": principal.username})
    return user


def delete_user(principal: Principal, username: str) -> dict:
    """
    Delete a user and remove them from every membership store. Global admins only.

    Refused with LastAdminProtected when the user is the only admin of any
    resource; nothing is changed in that case.
    """
    _require_superuser(principal, "delete users")
    engine = get_permission_engine()
    delimiter = get_settings().id_delimiter

    with ExitStack() as held:
        # User first, then stores: the same order set_tier uses
        held.enter_context(engine.locks.hold(user_key(username)))
        with get_db() as cursor:
            if not repository.user_exists(cursor, username):
                raise ResourceNotFound(f"User '{username}' not found")
            stores = engine.strip_user(cursor, username, held, delimiter)
            repository.delete_user(cursor, username)
            log_audit(cursor, principal, "delete", "user", username,
                      f"removed from {stores} membership store(s)")

    logger.info("User deleted", extra={"username": username, "stores": stores})
    return {"deleted": True, "username": username, "memberships_removed": stores}
