from typing import Any, List, Optional


class ApiError(Exception):
    """Domain error carrying the HTTP status and response body it maps to."""

    status_code = 500
    error = "Internal Server Error"
    code: Optional[str] = None

    def __init__(self, details: Any = None, *, error: Optional[str] = None,
                 code: Optional[str] = None, **extra):
        super().__init__(error or self.error)
        if error is not None:
            self.error = error
        if code is not None:
            self.code = code
        self.details = details
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        if self.code is not None:
            body["code"] = self.code
        body.update(self.extra)
        return body


class ValidationFailed(ApiError):
    status_code = 400
    error = "Validation failed"

    def __init__(self, details: List[dict]):
        super().__init__(details)


class BadRequest(ApiError):
    status_code = 400
    error = "Invalid request"


class Conflict(ApiError):
    status_code = 400
    error = "Duplicate field value entered"


class InvalidCredentials(ApiError):
    status_code = 400
    error = "Invalid credentials"

    def __init__(self):
        super().__init__("Email or password is incorrect")


class AccountDisabled(ApiError):
    status_code = 400
    error = "Account disabled"

    def __init__(self):
        super().__init__("Your account has been deactivated. Please contact support.")


class Unauthenticated(ApiError):
    status_code = 401
    error = "Authentication required."
    code = "AUTH_REQUIRED"


class Forbidden(ApiError):
    status_code = 403
    error = "Insufficient permissions."
    code = "INSUFFICIENT_PERMISSIONS"


class NotFound(ApiError):
    status_code = 404
    error = "Resource not found"
