"""ModelHub - Error Taxonomy

Every failure the permission engine and the controllers can raise.
Each class carries the HTTP status and machine code the REST layer
answers with; nothing below this module knows about HTTP otherwise.
"""


class ModelHubError(Exception):
    """Base class. `status_code` and `code` drive the API error response."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"error": True, "code": self.code, "message": self.message}


class ResourceNotFound(ModelHubError):
    status_code = 404
    code = "NOT_FOUND"


class PermissionDenied(ModelHubError):
    """The actor lacks the tier the operation needs.

    can_read=False means the actor cannot even read the resource; the API
    must then answer exactly like ResourceNotFound so existence is not leaked.
    """

    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "", can_read: bool = True):
        super().__init__(message)
        self.can_read = can_read


class InvalidTier(ModelHubError):
    status_code = 400
    code = "INVALID_TIER"


class SelfDemotionForbidden(ModelHubError):
    status_code = 403
    code = "SELF_DEMOTION_FORBIDDEN"


class LastAdminProtected(ModelHubError):
    status_code = 400
    code = "LAST_ADMIN_PROTECTED"


class ValidationFailed(ModelHubError):
    status_code = 400
    code = "VALIDATION_ERROR"


class ResourceArchived(ModelHubError):
    status_code = 400
    code = "ARCHIVED"


class ResourceExists(ModelHubError):
    status_code = 409
    code = "ALREADY_EXISTS"


class InvariantViolation(ModelHubError):
    status_code = 500
    code = "INVARIANT_VIOLATION"


class PersistenceFailure(ModelHubError):
    """Wraps a storage error. The engine never retries these."""

    status_code = 500
    code = "PERSISTENCE_FAILURE"

    def __init__(self, message: str = "", cause: Exception = None):
        super().__init__(message or "Database operation failed")
        self.cause = cause
