from enum import Enum


class ErrorCode(str, Enum):
    THROTTLED = "THROTTLED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_PRIVILEGES = "INSUFFICIENT_PRIVILEGES"
    INSUFFICIENT_ABILITIES = "INSUFFICIENT_ABILITIES"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    INVALID_TOKEN = "INVALID_TOKEN"
    EXPIRED = "EXPIRED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    NOT_YET_NEEDED = "NOT_YET_NEEDED"
    UNSUPPORTED = "UNSUPPORTED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CSRF_FAILED = "CSRF_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


STATUS_BY_CODE = {
    ErrorCode.THROTTLED: 429,
    ErrorCode.ACCOUNT_LOCKED: 423,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INSUFFICIENT_PRIVILEGES: 403,
    ErrorCode.INSUFFICIENT_ABILITIES: 403,
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.INVALID_TOKEN: 401,
    ErrorCode.EXPIRED: 401,
    ErrorCode.SESSION_EXPIRED: 401,
    ErrorCode.NOT_YET_NEEDED: 400,
    ErrorCode.UNSUPPORTED: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.CSRF_FAILED: 403,
    ErrorCode.INTERNAL_ERROR: 500,
}

DEFAULT_MESSAGES = {
    ErrorCode.THROTTLED: "Too many login attempts. Please try again later.",
    ErrorCode.ACCOUNT_LOCKED: "Account is temporarily locked.",
    ErrorCode.INVALID_CREDENTIALS: "The provided credentials are incorrect.",
    ErrorCode.FORBIDDEN: "Access denied. Admin privileges required.",
    ErrorCode.INSUFFICIENT_PRIVILEGES: "Access denied. Admin privileges required.",
    ErrorCode.INSUFFICIENT_ABILITIES: "Token is missing a required ability.",
    ErrorCode.UNAUTHENTICATED: "Unauthorized. Please authenticate first.",
    ErrorCode.INVALID_TOKEN: "Invalid or expired token.",
    ErrorCode.EXPIRED: "Token has expired.",
    ErrorCode.SESSION_EXPIRED: "Session expired due to inactivity.",
    ErrorCode.NOT_YET_NEEDED: "Token does not need refreshing yet.",
    ErrorCode.UNSUPPORTED: "Operation is only available for API tokens.",
    ErrorCode.NOT_FOUND: "Device not found.",
    ErrorCode.VALIDATION_ERROR: "Invalid request.",
    ErrorCode.CSRF_FAILED: "CSRF validation failed.",
    ErrorCode.INTERNAL_ERROR: "Internal server error.",
}


class AuthError(Exception):
    """
    Expected, recoverable authentication failure.

    `details` carries machine-usable fields (retry_after, refresh_available_in, ...)
    that are merged into the JSON error body.
    """

    def __init__(self, code: ErrorCode, message: str | None = None, *, status_code: int | None = None, **details):
        self.code = ErrorCode(code)
        self.message = message or DEFAULT_MESSAGES[self.code]
        self.status_code = status_code or STATUS_BY_CODE[self.code]
        self.details = details
        super().__init__(self.message)

    @property
    def retry_after(self):
        return self.details.get("retry_after")

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message, "error_code": self.code.value}
        body.update(self.details)
        return body
