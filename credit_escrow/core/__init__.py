"""Core module - configuration and exceptions."""

from credit_escrow.core.config import Settings, get_settings
from credit_escrow.core.exceptions import (
    AlreadyRequestedError,
    AuthenticationError,
    ConflictError,
    EscrowError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateError,
    MissingConnectionError,
    NoSkillAvailableError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "EscrowError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "InvalidStateError",
    "MissingConnectionError",
    "NoSkillAvailableError",
    "InsufficientFundsError",
    "ValidationError",
    "ConflictError",
    "AlreadyRequestedError",
]
