"""Schemas module - Pydantic DTOs for request/response."""

from credit_escrow.schemas.ledger import (
    TransactionListResponse,
    TransactionQueryParams,
    TransactionResponse,
    WalletReconciliationResponse,
    WalletResponse,
)
from credit_escrow.schemas.session import (
    CancelSessionRequest,
    CancelSessionResponse,
    CompleteSessionResponse,
    SessionResponse,
)
from credit_escrow.schemas.session_request import (
    AcceptSessionRequestResponse,
    CancelSessionRequestResponse,
    Counterpart,
    CreateSessionRequest,
    CreateSessionRequestResponse,
    DeclineSessionRequestResponse,
    SessionRequestListResponse,
    SessionRequestResponse,
)

__all__: list[str] = [
    # Ledger
    "WalletResponse",
    "WalletReconciliationResponse",
    "TransactionResponse",
    "TransactionListResponse",
    "TransactionQueryParams",
    # Session requests
    "CreateSessionRequest",
    "CreateSessionRequestResponse",
    "AcceptSessionRequestResponse",
    "DeclineSessionRequestResponse",
    "CancelSessionRequestResponse",
    "SessionRequestResponse",
    "SessionRequestListResponse",
    "Counterpart",
    # Sessions
    "CancelSessionRequest",
    "CancelSessionResponse",
    "CompleteSessionResponse",
    "SessionResponse",
]
