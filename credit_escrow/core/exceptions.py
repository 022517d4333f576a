"""Credit Escrow Service - Custom exceptions."""

from typing import Any


class EscrowError(Exception):
    """Base exception for all escrow ledger errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class AuthenticationError(EscrowError):
    """No caller identity could be resolved."""

    pass


class ForbiddenError(EscrowError):
    """Caller is not a party to the record."""

    pass


class NotFoundError(EscrowError):
    """Record is missing or was already resolved by a concurrent action."""

    pass


class InvalidStateError(EscrowError):
    """Action is not valid for the record's current status."""

    pass


class MissingConnectionError(InvalidStateError):
    """The two users have no ACTIVE connection."""

    def __init__(self, message: str = "Active connection not found") -> None:
        super().__init__(message)


class NoSkillAvailableError(InvalidStateError):
    """No skill exists to anchor the session."""

    def __init__(self, provider_id: int | None = None) -> None:
        details = {"provider_id": provider_id} if provider_id is not None else {}
        super().__init__("No skill found for the session", details)


class InsufficientFundsError(EscrowError):
    """Wallet bucket cannot cover the requested amount."""

    def __init__(
        self,
        required: int | None = None,
        available: int | None = None,
        message: str = "Insufficient credits",
    ) -> None:
        details = {}
        if required is not None:
            details["required"] = required
        if available is not None:
            details["available"] = available
        super().__init__(message, details)


class ValidationError(EscrowError):
    """Input validation failed."""

    pass


class ConflictError(EscrowError):
    """Operation collides with an existing pending record."""

    pass


class AlreadyRequestedError(ConflictError):
    """Caller already registered their consent; nothing was changed."""

    def __init__(self, waiting_for: str) -> None:
        super().__init__(
            "You have already requested this. Waiting for the other party to agree.",
            {"waiting_for": waiting_for},
        )
        self.waiting_for = waiting_for
