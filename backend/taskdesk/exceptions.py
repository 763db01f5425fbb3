"""Domain exceptions.

Services raise these before touching the store; the API layer maps them to
HTTP responses through a single exception handler.
"""


class TaskDeskError(Exception):
    """Base exception for domain errors."""

    status_code: int = 500

    def __init__(self, message: str, code: str = "TASKDESK_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(TaskDeskError):
    """Malformed input; the operation was not attempted."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message, code="VALIDATION_ERROR")


class NotFoundError(TaskDeskError):
    """A referenced task, user or file does not exist."""

    status_code = 404

    def __init__(self, resource: str):
        self.resource = resource
        super().__init__(f"{resource} not found", code="NOT_FOUND")


class ForbiddenError(TaskDeskError):
    """The principal lacks permission. The message never says why."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN")


class InvariantViolationError(TaskDeskError):
    """The operation would break a user invariant (last admin, self-delete)."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, code="INVARIANT_VIOLATION")


class ConflictError(TaskDeskError):
    """A unique value is already taken."""

    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, code="CONFLICT")


class AuthenticationError(TaskDeskError):
    """Missing or invalid credentials."""

    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message, code="NOT_AUTHENTICATED")


class CascadeError(TaskDeskError):
    """The assignee cleanup for a deleted user failed and was rolled back.

    Wraps the underlying store error so callers can decide whether the user
    deletion should still proceed.
    """

    status_code = 500

    def __init__(self, user_id: int, cause: Exception):
        self.user_id = user_id
        self.cause = cause
        super().__init__(
            f"Could not unassign user {user_id} from tasks: {cause}",
            code="CASCADE_FAILED",
        )


class PayloadTooLargeError(TaskDeskError):
    """An uploaded file exceeds the configured size limit."""

    status_code = 413

    def __init__(self, message: str):
        super().__init__(message, code="PAYLOAD_TOO_LARGE")
