"""Ledger schemas - Request/Response DTOs for wallet balances and transaction records."""

from datetime import datetime

from pydantic import BaseModel, Field

from credit_escrow.models.ledger import TransactionStatus, TransactionType

# =============================================================================
# Wallet
# =============================================================================


class WalletResponse(BaseModel):
    """Wallet balance response."""

    id: int
    user_id: int
    available_balance: int
    outgoing_balance: int
    incoming_balance: int
    updated_at: datetime

    class Config:
        from_attributes = True


class WalletReconciliationResponse(BaseModel):
    """Cached wallet balances next to the balances derived from the log."""

    wallet_id: int
    available_balance: int
    outgoing_balance: int
    ledger_available: int = Field(description="Sum of all entry amounts")
    ledger_outgoing: int = Field(description="Negated sum of PENDING entry amounts")
    total_entries: int
    consistent: bool


# =============================================================================
# Transactions
# =============================================================================


class TransactionResponse(BaseModel):
    """Transaction log entry response."""

    id: int
    wallet_id: int
    amount: int
    is_credit: bool
    type: TransactionType
    status: TransactionStatus
    related_user_id: int | None = None
    session_request_id: int | None = None
    session_id: int | None = None
    note: str | None = None
    created_at: datetime

    # Joined fields
    related_user_name: str | None = None
    session_name: str | None = None

    class Config:
        from_attributes = True


class TransactionListResponse(BaseModel):
    """Paginated transaction list response."""

    items: list[TransactionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class TransactionQueryParams(BaseModel):
    """Query parameters for transaction history."""

    type: TransactionType | None = None
    status: TransactionStatus | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
