"""ModelHub - Audit Logging

Writes to the audit_log table inside the caller's transaction.
Called by the permission engine and controllers after successful
mutations (create, update, delete, role changes).
"""

from typing import Any, Optional

from . import repository
from .logging_config import get_logger
from .user_context import Principal

logger = get_logger(__name__)


def log_audit(
    cursor: Any,
    principal: Principal,
    operation: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    detail: Optional[str] = None,
) -> None:
    """Insert a row into audit_log.

    Parameters:
        cursor: Cursor of the transaction that performed the mutation
        principal: The caller performing the operation
        operation: One of 'create', 'update', 'delete', 'set_role'
        entity_type: One of 'user', 'organization', 'project', 'element'
        entity_id: Qualified id of the entity
        detail: Optional free-text context (truncated to 500 chars)
    """
    try:
        repository.insert_audit_row(
            cursor,
            principal.username,
            operation,
            entity_type,
            entity_id,
            detail[:500] if detail else None,
        )
    except Exception as e:
        # Audit failure must never break the main operation
        logger.error("Failed to write audit log: %s", e, exc_info=True)
