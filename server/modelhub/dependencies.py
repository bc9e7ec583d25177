"""ModelHub - FastAPI Dependency Chain

Resolves the caller of a request into an immutable Principal.

Credential checking happens upstream: the authenticating proxy sets the
header named by settings.user_header. This layer only maps that username
to a known user and its global-admin flag.
"""

from fastapi import HTTPException, Request, status

from . import repository
from .config import get_settings
from .database import get_db, retry_on_transient
from .logging_config import get_logger
from .user_context import Principal

logger = get_logger(__name__)


@retry_on_transient()
def _lookup_principal(username: str) -> Principal:
    with get_db() as cursor:
        user = repository.get_user(cursor, username)
    if user is None:
        return None
    return Principal(username=user["username"], is_superuser=bool(user["admin"]))


def authenticate(request: Request) -> Principal:
    """Depends()-compatible: the Principal for this request, or 401."""
    settings = get_settings()
    username = (request.headers.get(settings.user_header) or "").strip()
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    principal = _lookup_principal(username)
    if principal is None:
        logger.warning("Auth failed: unknown user", extra={"user": username[:64]})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )

    request.state.user = principal.username
    return principal
