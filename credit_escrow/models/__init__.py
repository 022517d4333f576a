"""Models module - SQLModel database entities."""

from credit_escrow.models.ledger import CreditTransaction, TransactionStatus, TransactionType
from credit_escrow.models.session import LearningSession, SessionRole, SessionStatus
from credit_escrow.models.session_request import (
    SessionMode,
    SessionRequest,
    SessionRequestStatus,
)
from credit_escrow.models.user import Connection, ConnectionStatus, Skill, User
from credit_escrow.models.wallet import Wallet

__all__ = [
    # User & collaborators
    "User",
    "Connection",
    "ConnectionStatus",
    "Skill",
    # Wallet
    "Wallet",
    # Ledger
    "CreditTransaction",
    "TransactionType",
    "TransactionStatus",
    # Session request
    "SessionRequest",
    "SessionRequestStatus",
    "SessionMode",
    # Session
    "LearningSession",
    "SessionStatus",
    "SessionRole",
]
