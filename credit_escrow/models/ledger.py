"""Credit Escrow Service - Transaction log model.

Every balance-affecting event writes one row here in the same database
transaction as the wallet update it documents. Rows are append-mostly: the
only in-place change is an escrow leg moving out of PENDING once the escrow
it describes is settled (COMPLETED) or returned (REFUNDED).

Sign convention: ``amount`` is the entry's effect on the wallet's available
balance. For every wallet this gives

    available_balance == sum(amount)
    outgoing_balance  == -sum(amount where status == PENDING)
"""

from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel


class TransactionType(str, Enum):
    """Transaction type."""

    SIGNUP_BONUS = "SIGNUP_BONUS"  # Initial grant when the wallet is opened
    SESSION_REQUEST_SENT = "SESSION_REQUEST_SENT"  # Escrow leg: request fee or session credits
    SESSION_REQUEST_RECEIVED = "SESSION_REQUEST_RECEIVED"  # Receiver collects the request fee
    SESSION_REQUEST_REFUNDED = "SESSION_REQUEST_REFUNDED"  # Fee returned after decline
    SESSION_REQUEST_CANCELLED = "SESSION_REQUEST_CANCELLED"  # Fee returned after sender cancel
    SESSION_CANCELLED = "SESSION_CANCELLED"  # Session credits returned to the learner
    SESSION_COMPLETED = "SESSION_COMPLETED"  # Session credits paid out to the provider


class TransactionStatus(str, Enum):
    """Transaction status."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"


class CreditTransaction(SQLModel, table=True):
    """Credit transaction - one balance-affecting event on one wallet.

    Attributes:
        id: Auto-increment primary key
        wallet_id: Wallet whose balance changed
        amount: Signed change to available balance (positive=credit, negative=debit)
        type: What caused the change
        status: PENDING while the credits sit in escrow, then COMPLETED or REFUNDED
        related_user_id: Counterparty, if any
        session_request_id: Request this fee leg belongs to (cleared when the request resolves)
        session_id: Session this entry belongs to
        note: Human-readable description
    """

    __tablename__ = "transactions"

    id: int | None = Field(default=None, primary_key=True)
    wallet_id: int = Field(foreign_key="wallets.id", index=True)

    amount: int = Field(description="Change amount (positive=credit, negative=debit)")
    type: TransactionType = Field(index=True)
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, index=True)

    related_user_id: int | None = Field(default=None, foreign_key="users.id", index=True)
    session_request_id: int | None = Field(
        default=None, foreign_key="session_requests.id", ondelete="SET NULL", index=True
    )
    session_id: int | None = Field(
        default=None, foreign_key="sessions.id", ondelete="SET NULL", index=True
    )

    note: str | None = Field(default=None, max_length=500)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
