"""Application error taxonomy.

Every error carries a stable ``code`` and an HTTP ``status_code`` so the
error handler can render it without knowing the concrete class.
"""


class AppError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    title: str = "Internal Server Error"
    retryable: bool = False

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    title = "Not Found"

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)


class InvalidInputError(AppError):
    status_code = 400
    code = "INVALID_INPUT"
    title = "Bad Request"

    def __init__(self, message: str = "Invalid input"):
        super().__init__(message)


class InvalidStateError(AppError):
    status_code = 409
    code = "INVALID_STATE"
    title = "Conflict"

    def __init__(self, message: str = "Resource is not in a usable state"):
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"
    title = "Conflict"

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message)


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    title = "Unauthorized"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"
    title = "Forbidden"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class ExternalServiceError(AppError):
    """The third-party API failed, timed out, or returned malformed data."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"
    title = "Bad Gateway"

    def __init__(self, service: str, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.service = service
        # true only when the same call may succeed later
        self.retryable = retryable

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "service": self.service}


class StorageUnavailableError(AppError):
    """Blob store or table store unreachable. Safe for the caller to retry."""

    status_code = 503
    code = "STORAGE_UNAVAILABLE"
    title = "Service Unavailable"
    retryable = True

    def __init__(self, message: str = "Storage unavailable"):
        super().__init__(message)
