"""Ledger Service - Business logic for the credit transaction log."""

from datetime import datetime

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from credit_escrow.core.exceptions import InvalidStateError
from credit_escrow.models.ledger import CreditTransaction, TransactionStatus, TransactionType
from credit_escrow.models.session import LearningSession
from credit_escrow.models.user import User
from credit_escrow.models.wallet import Wallet
from credit_escrow.schemas.ledger import (
    TransactionQueryParams,
    TransactionResponse,
    WalletReconciliationResponse,
)
from credit_escrow.utils.pagination import PaginatedResult, PaginationParams, paginate_rows


class LedgerService:
    """Service for transaction-log business logic."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Writing entries (used inside the callers' unit of work)
    # =========================================================================

    async def record(
        self,
        wallet: Wallet,
        amount: int,
        tx_type: TransactionType,
        status: TransactionStatus,
        related_user_id: int | None = None,
        session_request_id: int | None = None,
        session_id: int | None = None,
        note: str | None = None,
    ) -> CreditTransaction:
        """Append an entry for a balance change on ``wallet``.

        Args:
            wallet: Wallet whose balance changed
            amount: Change to available balance (positive=credit, negative=debit)
            tx_type: What caused the change
            status: PENDING for escrow legs, COMPLETED otherwise
            related_user_id: Counterparty
            session_request_id: Request the entry belongs to
            session_id: Session the entry belongs to
            note: Description

        Returns:
            CreditTransaction: the new entry (flushed, so ``id`` is set)
        """
        entry = CreditTransaction(
            wallet_id=wallet.id,
            amount=amount,
            type=tx_type,
            status=status,
            related_user_id=related_user_id,
            session_request_id=session_request_id,
            session_id=session_id,
            note=note,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def transition(
        self,
        entry: CreditTransaction,
        status: TransactionStatus,
        note: str | None = None,
        unlink_request: bool = False,
    ) -> CreditTransaction:
        """Move an escrow leg out of PENDING in place.

        Args:
            entry: PENDING escrow leg
            status: COMPLETED (escrow paid out) or REFUNDED (escrow returned)
            note: Replacement note
            unlink_request: Clear session_request_id before the request row is deleted

        Raises:
            InvalidStateError: Entry is not PENDING or target status is PENDING
        """
        if entry.status != TransactionStatus.PENDING or status == TransactionStatus.PENDING:
            raise InvalidStateError(
                f"Cannot move transaction {entry.id} from {entry.status.value} to {status.value}"
            )

        entry.status = status
        if note is not None:
            entry.note = note
        if unlink_request:
            entry.session_request_id = None
        entry.updated_at = datetime.utcnow()
        self.db.add(entry)
        return entry

    async def get_request_fee_leg(self, session_request_id: int) -> CreditTransaction | None:
        """Find the PENDING fee leg written when a session request was sent."""
        result = await self.db.execute(
            select(CreditTransaction).where(
                CreditTransaction.session_request_id == session_request_id,
                CreditTransaction.type == TransactionType.SESSION_REQUEST_SENT,
                CreditTransaction.status == TransactionStatus.PENDING,
            )
        )
        return result.scalars().first()

    async def get_session_escrow_leg(
        self, session_id: int, wallet_id: int
    ) -> CreditTransaction | None:
        """Find the PENDING escrow leg holding a session's credits."""
        result = await self.db.execute(
            select(CreditTransaction).where(
                CreditTransaction.session_id == session_id,
                CreditTransaction.wallet_id == wallet_id,
                CreditTransaction.type == TransactionType.SESSION_REQUEST_SENT,
                CreditTransaction.status == TransactionStatus.PENDING,
            )
        )
        return result.scalars().first()

    # =========================================================================
    # Query surface
    # =========================================================================

    async def list_transactions(
        self,
        wallet: Wallet,
        params: TransactionQueryParams,
    ) -> PaginatedResult[TransactionResponse]:
        """List a wallet's transaction history, newest first.

        Args:
            wallet: Caller's wallet (callers only ever see their own entries)
            params: Filters and pagination

        Returns:
            Paginated entries with counterparty and session names joined in
        """
        query = (
            select(
                CreditTransaction,
                User.full_name.label("related_user_name"),
                LearningSession.session_name.label("session_name"),
            )
            .outerjoin(User, CreditTransaction.related_user_id == User.id)
            .outerjoin(LearningSession, CreditTransaction.session_id == LearningSession.id)
            .where(CreditTransaction.wallet_id == wallet.id)
        )

        if params.type:
            query = query.where(CreditTransaction.type == params.type)
        if params.status:
            query = query.where(CreditTransaction.status == params.status)

        query = query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())

        page = PaginationParams(page=params.page, page_size=params.page_size)
        rows, total = await paginate_rows(self.db, query, page)

        items = []
        for row in rows:
            record = row[0]
            items.append(
                TransactionResponse(
                    id=record.id,
                    wallet_id=record.wallet_id,
                    amount=record.amount,
                    is_credit=record.amount > 0,
                    type=record.type,
                    status=record.status,
                    related_user_id=record.related_user_id,
                    session_request_id=record.session_request_id,
                    session_id=record.session_id,
                    note=record.note,
                    created_at=record.created_at,
                    related_user_name=row[1],
                    session_name=row[2],
                )
            )

        return PaginatedResult(items=items, total=total, page=page.page, page_size=page.page_size)

    async def reconcile(self, wallet: Wallet) -> WalletReconciliationResponse:
        """Compare a wallet's cached buckets with the balances its log implies.

        available_balance must equal the sum of every entry, and
        outgoing_balance the negated sum of the entries still PENDING.
        """
        totals = await self.db.execute(
            select(
                func.coalesce(func.sum(CreditTransaction.amount), 0),
                func.count(CreditTransaction.id),
            ).where(CreditTransaction.wallet_id == wallet.id)
        )
        ledger_available, total_entries = totals.one()

        pending = await self.db.execute(
            select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
                CreditTransaction.wallet_id == wallet.id,
                CreditTransaction.status == TransactionStatus.PENDING,
            )
        )
        ledger_outgoing = -int(pending.scalar() or 0)

        return WalletReconciliationResponse(
            wallet_id=wallet.id,
            available_balance=wallet.available_balance,
            outgoing_balance=wallet.outgoing_balance,
            ledger_available=int(ledger_available),
            ledger_outgoing=ledger_outgoing,
            total_entries=int(total_entries),
            consistent=(
                wallet.available_balance == int(ledger_available)
                and wallet.outgoing_balance == ledger_outgoing
            ),
        )
