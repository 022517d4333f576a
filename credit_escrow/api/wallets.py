"""Wallet API - balances, transaction history and reconciliation."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status

from credit_escrow.api.deps import CurrentUser, http_error
from credit_escrow.core.exceptions import EscrowError
from credit_escrow.db.engine import get_db
from credit_escrow.models.ledger import TransactionStatus, TransactionType
from credit_escrow.models.wallet import Wallet
from credit_escrow.schemas.ledger import (
    TransactionListResponse,
    TransactionQueryParams,
    WalletReconciliationResponse,
    WalletResponse,
)
from credit_escrow.services.ledger_service import LedgerService
from credit_escrow.services.wallet_service import WalletService

router = APIRouter(prefix="/wallet", tags=["Wallet"])


def get_wallet_service(db=Depends(get_db)) -> WalletService:
    """Get wallet service instance."""
    return WalletService(db)


def get_ledger_service(db=Depends(get_db)) -> LedgerService:
    """Get ledger service instance."""
    return LedgerService(db)


async def get_current_wallet(
    user: CurrentUser,
    wallets: Annotated[WalletService, Depends(get_wallet_service)],
) -> Wallet:
    """Resolve the caller's wallet, 404 when none has been opened."""
    wallet = await wallets.get_wallet(user.id)
    if not wallet:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "success": False,
                "error_code": "NOT_FOUND",
                "error_message": "Wallet not found",
            },
        )
    return wallet


CurrentWallet = Annotated[Wallet, Depends(get_current_wallet)]


@router.post("", response_model=WalletResponse, status_code=status.HTTP_201_CREATED)
async def open_wallet(
    user: CurrentUser,
    wallets: Annotated[WalletService, Depends(get_wallet_service)],
) -> WalletResponse:
    """Open the caller's wallet and grant the sign-up credits."""
    try:
        wallet = await wallets.open_wallet(user.id)
    except EscrowError as e:
        raise http_error(e) from e
    return WalletResponse.model_validate(wallet)


@router.get("", response_model=WalletResponse)
async def get_wallet(wallet: CurrentWallet) -> WalletResponse:
    """Get the caller's wallet balances."""
    return WalletResponse.model_validate(wallet)


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    wallet: CurrentWallet,
    service: Annotated[LedgerService, Depends(get_ledger_service)],
    tx_type: TransactionType | None = Query(None, alias="type", description="Filter by type"),
    tx_status: TransactionStatus | None = Query(
        None, alias="status", description="Filter by status"
    ),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Page size"),
) -> TransactionListResponse:
    """List the caller's credit transactions, newest first."""
    params = TransactionQueryParams(
        type=tx_type,
        status=tx_status,
        page=page,
        page_size=page_size,
    )

    result = await service.list_transactions(wallet, params)

    return TransactionListResponse(
        items=result.items,
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
    )


@router.get("/reconcile", response_model=WalletReconciliationResponse)
async def reconcile_wallet(
    wallet: CurrentWallet,
    service: Annotated[LedgerService, Depends(get_ledger_service)],
) -> WalletReconciliationResponse:
    """Compare the cached balances with the balances implied by the log."""
    return await service.reconcile(wallet)
