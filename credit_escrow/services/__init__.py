"""Credit Escrow Service Layer.

Business logic services for the credit escrow ledger and session negotiation.
Each service encapsulates domain-specific operations and can be reused across API endpoints.
"""

from credit_escrow.services.ledger_service import LedgerService
from credit_escrow.services.session_request_service import SessionRequestService
from credit_escrow.services.session_service import SessionService
from credit_escrow.services.wallet_service import WalletService

__all__ = [
    "LedgerService",
    "SessionRequestService",
    "SessionService",
    "WalletService",
]
