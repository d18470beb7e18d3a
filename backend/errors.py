# errors.py — Error taxonomy for the CA Practice Portal
# Every error leaves the API as {"detail": ..., "code": ..., "requestId": ...}.
# The classes are HTTPException subclasses so FastAPI's own handling applies.
from typing import Optional, Dict

from fastapi import HTTPException

# ============================================================
# ERROR CODE CATALOGUE
# ============================================================

ERROR_CATALOGUE = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    429: "TOO_MANY_ATTEMPTS",
    500: "INTERNAL_ERROR",
}


def code_for_status(status_code: int) -> str:
    return ERROR_CATALOGUE.get(status_code, "HTTP_ERROR")


class PortalError(HTTPException):
    """Base class; subclasses pin the HTTP status and the error code"""
    status_code = 500
    code = "INTERNAL_ERROR"
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(
            status_code=type(self).status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class ValidationError(PortalError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_detail = "Invalid request"


class Conflict(PortalError):
    # Uniqueness clashes surface as 400 with a specific message
    status_code = 400
    code = "CONFLICT"
    default_detail = "Resource already exists"


class Unauthorized(PortalError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_detail = "Unauthorized"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(PortalError):
    status_code = 403
    code = "FORBIDDEN"
    default_detail = "Forbidden"


class NotFound(PortalError):
    status_code = 404
    code = "NOT_FOUND"
    default_detail = "Not found"


class PayloadTooLarge(PortalError):
    status_code = 413
    code = "PAYLOAD_TOO_LARGE"
    default_detail = "File too large"


class TooManyAttempts(PortalError):
    status_code = 429
    code = "TOO_MANY_ATTEMPTS"
    default_detail = "Too many attempts"


class InternalError(PortalError):
    pass


def error_body(detail, code: str, request_id: Optional[str]) -> dict:
    return {"detail": detail, "code": code, "requestId": request_id}
