"""Common FastAPI dependencies for API endpoints."""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from credit_escrow.api.auth import get_current_user
from credit_escrow.core.exceptions import (
    AuthenticationError,
    ConflictError,
    EscrowError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from credit_escrow.models.user import User

# Most specific first: MissingConnectionError and NoSkillAvailableError are
# InvalidStateErrors, AlreadyRequestedError is a ConflictError.
_STATUS_CODES: list[tuple[type[EscrowError], int, str]] = [
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED, "UNAUTHENTICATED"),
    (ForbiddenError, status.HTTP_403_FORBIDDEN, "FORBIDDEN"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (InsufficientFundsError, status.HTTP_400_BAD_REQUEST, "INSUFFICIENT_CREDITS"),
    (InvalidStateError, status.HTTP_400_BAD_REQUEST, "INVALID_STATE"),
    (ValidationError, status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
    (ConflictError, status.HTTP_409_CONFLICT, "CONFLICT"),
]


def http_error(exc: EscrowError) -> HTTPException:
    """Translate a domain error into the HTTPException returned to the client.

    Usage:
        try:
            return await service.accept_request(user.id, request_id)
        except EscrowError as e:
            raise http_error(e) from e
    """
    status_code, error_code = status.HTTP_400_BAD_REQUEST, "ERROR"
    for exc_type, code, name in _STATUS_CODES:
        if isinstance(exc, exc_type):
            status_code, error_code = code, name
            break

    detail = {
        "success": False,
        "error_code": error_code,
        "error_message": exc.message,
    }
    if exc.details:
        detail["details"] = exc.details
    return HTTPException(status_code=status_code, detail=detail)


# ============ Type Aliases for Common Dependencies ============

# Current user (resolved from the identity header)
CurrentUser = Annotated[User, Depends(get_current_user)]
