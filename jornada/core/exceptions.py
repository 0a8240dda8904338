"""
Custom exceptions for the Jornada core.
Provides structured error handling with proper HTTP status codes and machine-readable codes.
"""

from typing import Any, Dict, Optional
from fastapi import status
from fastapi.responses import JSONResponse


class BusinessLogicError(Exception):
    """Base exception for business logic errors."""

    code: str = "business_logic_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        self.message = message
        self.details = details or {}
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(BusinessLogicError):
    """Raised when input validation fails (missing field for the inferred event type, etc.)."""
    code = "validation_error"


class AuthenticationError(BusinessLogicError):
    """Raised when a webhook secret or bearer token is missing or wrong."""
    code = "unauthorized"


class ForbiddenError(BusinessLogicError):
    """Raised when the caller is authenticated but not allowed to act on the tenant."""
    code = "forbidden"


class NotFoundError(BusinessLogicError):
    """Raised when a requested resource is not found."""
    code = "not_found"


class ConflictError(BusinessLogicError):
    """Raised when there's a conflict with existing data."""
    code = "conflict"


class ConfigurationError(BusinessLogicError):
    """Raised when tenant/journey configuration cannot satisfy the request. Not retried."""
    code = "configuration_error"


class StoreError(BusinessLogicError):
    """Raised when a store write fails for a reason other than a uniqueness conflict."""
    code = "store_error"


class PresenceRejected(ForbiddenError):
    """Raised when a punch is illegal from the current day state or fails the geofence policy."""
    code = "presence_rejected"


def _status_for(exc: BusinessLogicError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, ForbiddenError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    # Configuration, store and anything else
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(error: str, detail: Any = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"ok": False, "error": error}
    if detail:
        body["detail"] = detail
    return body


def business_exception_to_response(exc: BusinessLogicError) -> JSONResponse:
    """Convert business logic exceptions to structured `{ok: false, error, detail}` responses."""
    detail: Dict[str, Any] = {"message": exc.message, **exc.details}
    return JSONResponse(status_code=_status_for(exc), content=error_body(exc.code, detail))
