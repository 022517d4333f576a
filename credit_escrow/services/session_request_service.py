"""Session Request Service - negotiation of fee-bearing session requests.

A request lives only while PENDING:

    send     -> PENDING   (sender's fee moved into escrow)
    accept   -> deleted   (fee paid to receiver, session credits escrowed, session created)
    decline  -> deleted   (fee returned to sender)
    cancel   -> deleted   (fee returned to sender, sender only)

Every transition is one unit of work. The request row is read under a row lock
and removed with a compare-and-delete, so when two callers race on the same
request exactly one succeeds and the other gets NotFoundError.
"""

import logging

from sqlalchemy import delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from credit_escrow.core.config import Settings, get_settings
from credit_escrow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    MissingConnectionError,
    NoSkillAvailableError,
    NotFoundError,
    ValidationError,
)
from credit_escrow.db.engine import transactional
from credit_escrow.models.ledger import TransactionStatus, TransactionType
from credit_escrow.models.session import LearningSession, SessionStatus
from credit_escrow.models.session_request import SessionRequest, SessionRequestStatus
from credit_escrow.models.user import Connection, ConnectionStatus, Skill, User
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
from credit_escrow.services.ledger_service import LedgerService
from credit_escrow.services.wallet_service import WalletService

logger = logging.getLogger(__name__)


class SessionRequestService:
    """Service for session request negotiation."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None):
        self.db = db
        self.settings = settings or get_settings()
        self.wallets = WalletService(db)
        self.ledger = LedgerService(db)

    # ============ Send ============

    async def send_request(
        self, sender_id: int, data: CreateSessionRequest
    ) -> CreateSessionRequestResponse:
        """Send a session request and escrow the request fee.

        Args:
            sender_id: Caller (future learner)
            data: Request details

        Returns:
            request_id and credits_deducted

        Raises:
            ValidationError: Sender and receiver are the same user, or skill_id is not
                one of the receiver's skills
            NotFoundError: Receiver does not exist
            MissingConnectionError: No ACTIVE connection between the users
            ConflictError: A PENDING request already exists between the pair
            InsufficientFundsError: Sender cannot cover the fee
        """
        receiver_id = data.receiver_id
        if sender_id == receiver_id:
            raise ValidationError("Cannot send session request to yourself")

        fee = self.settings.session_request_fee

        async with transactional(self.db):
            if await self.db.get(User, receiver_id) is None:
                raise NotFoundError("Receiver not found", {"receiver_id": receiver_id})

            # Locking the connection row serialises sends in both directions for this pair
            connection = await self._get_active_connection(sender_id, receiver_id, for_update=True)
            if connection is None:
                raise MissingConnectionError(
                    "You must be connected with this user to send a session request"
                )

            if await self._find_pending_between(sender_id, receiver_id) is not None:
                raise ConflictError(
                    "There is already a pending session request between you and this user"
                )

            if data.skill_id is not None:
                await self._check_receiver_skill(data.skill_id, receiver_id)

            sender_wallet = await self.wallets.get_wallet_for_update(sender_id)
            await self.wallets.reserve(
                sender_wallet,
                fee,
                message=f"Insufficient credits. You need {fee} credits to send a session request.",
            )

            request = SessionRequest(
                sender_id=sender_id,
                receiver_id=receiver_id,
                skill_id=data.skill_id,
                session_name=data.session_name,
                description=data.description,
                mode=data.mode,
                start_date=data.start_date,
                end_date=data.end_date,
                credits_held=fee,
            )
            self.db.add(request)
            await self.db.flush()

            await self.ledger.record(
                sender_wallet,
                -fee,
                TransactionType.SESSION_REQUEST_SENT,
                TransactionStatus.PENDING,
                related_user_id=receiver_id,
                session_request_id=request.id,
                note=f"Session request sent: {data.session_name}",
            )

        logger.info(
            "Session request %s sent by user %s to user %s, %s credits escrowed",
            request.id,
            sender_id,
            receiver_id,
            fee,
        )
        return CreateSessionRequestResponse(request_id=request.id, credits_deducted=fee)

    # ============ Accept ============

    async def accept_request(self, receiver_id: int, request_id: int) -> AcceptSessionRequestResponse:
        """Accept a pending request and open the session.

        The request fee moves from the sender's escrow to the receiver's
        available balance, and the session credits move from the sender's
        available balance into escrow.

        Raises:
            NotFoundError: No PENDING request with this ID addressed to the caller
            InsufficientFundsError: Sender cannot cover the session credits
            MissingConnectionError: Connection is no longer ACTIVE
            NoSkillAvailableError: No skill to anchor the session on
        """
        escrow = self.settings.session_escrow_credits

        async with transactional(self.db):
            request = await self._get_pending_request_for_update(request_id)
            if request is None or request.receiver_id != receiver_id:
                raise NotFoundError("No pending session request found", {"request_id": request_id})

            sender_id = request.sender_id
            wallets = await self.wallets.lock_wallets(sender_id, receiver_id)
            sender_wallet, receiver_wallet = wallets[sender_id], wallets[receiver_id]

            # Session credits: sender available -> sender escrow
            await self.wallets.reserve(
                sender_wallet,
                escrow,
                message=(
                    f"Sender does not have enough credits for the session "
                    f"({escrow} credits required)"
                ),
            )

            connection = await self._get_active_connection(sender_id, receiver_id)
            if connection is None:
                raise MissingConnectionError()

            skill_id = await self._resolve_skill(request)
            fee = request.credits_held

            # Fee: sender escrow -> receiver available
            await self.wallets.settle(sender_wallet, fee)
            await self.wallets.credit(receiver_wallet, fee)

            session = LearningSession(
                learner_id=sender_id,
                provider_id=receiver_id,
                skill_id=skill_id,
                connection_id=connection.id,
                session_name=request.session_name,
                description=request.description,
                mode=request.mode,
                start_date=request.start_date,
                end_date=request.end_date,
                request_credits=fee,
                session_credits=escrow,
                status=SessionStatus.ACTIVE,
            )
            self.db.add(session)
            await self.db.flush()

            fee_leg = await self.ledger.get_request_fee_leg(request.id)
            if fee_leg is not None:
                await self.ledger.transition(
                    fee_leg,
                    TransactionStatus.COMPLETED,
                    note=f"Session request accepted - {fee} credits transferred",
                    unlink_request=True,
                )
            await self.ledger.record(
                receiver_wallet,
                fee,
                TransactionType.SESSION_REQUEST_RECEIVED,
                TransactionStatus.COMPLETED,
                related_user_id=sender_id,
                session_id=session.id,
                note=f"Session request accepted - received {fee} credits",
            )
            await self.ledger.record(
                sender_wallet,
                -escrow,
                TransactionType.SESSION_REQUEST_SENT,
                TransactionStatus.PENDING,
                related_user_id=receiver_id,
                session_id=session.id,
                note=f"Session credits reserved: {request.session_name}",
            )

            await self._claim(request)

        logger.info(
            "Session request %s accepted, session %s opened with %s credits escrowed",
            request_id,
            session.id,
            escrow,
        )
        return AcceptSessionRequestResponse(
            session_id=session.id,
            credits_received=fee,
            credits_reserved=escrow,
        )

    # ============ Decline ============

    async def decline_request(
        self, receiver_id: int, request_id: int
    ) -> DeclineSessionRequestResponse:
        """Decline a pending request and refund the fee to the sender.

        Raises:
            NotFoundError: No PENDING request with this ID addressed to the caller
        """
        async with transactional(self.db):
            request = await self._get_pending_request_for_update(request_id)
            if request is None or request.receiver_id != receiver_id:
                raise NotFoundError("No pending session request found", {"request_id": request_id})

            fee = request.credits_held
            sender_wallet = await self.wallets.get_wallet_for_update(request.sender_id)
            await self.wallets.release(sender_wallet, fee)

            await self._refund_fee_leg(
                request, note=f"Session request declined - {fee} credits refunded"
            )
            await self.ledger.record(
                sender_wallet,
                fee,
                TransactionType.SESSION_REQUEST_REFUNDED,
                TransactionStatus.COMPLETED,
                related_user_id=receiver_id,
                note=f"Session request declined - {fee} credits refunded",
            )

            await self._claim(request)

        logger.info("Session request %s declined, %s credits refunded", request_id, fee)
        return DeclineSessionRequestResponse()

    # ============ Cancel ============

    async def cancel_request(self, sender_id: int, request_id: int) -> CancelSessionRequestResponse:
        """Withdraw a pending request (sender only) and refund the fee.

        Raises:
            NotFoundError: Request does not exist (or was already resolved)
            ForbiddenError: Caller is not the sender
            InvalidStateError: Request is not PENDING
        """
        async with transactional(self.db):
            request = await self._get_request_for_update(request_id)
            if request is None:
                raise NotFoundError("Session request not found", {"request_id": request_id})
            if request.sender_id != sender_id:
                raise ForbiddenError("Only the sender can cancel this request")
            if request.status != SessionRequestStatus.PENDING:
                raise InvalidStateError("Only pending requests can be cancelled")

            fee = request.credits_held
            sender_wallet = await self.wallets.get_wallet_for_update(sender_id)
            await self.wallets.release(sender_wallet, fee)

            await self._refund_fee_leg(
                request, note=f"Session request cancelled - {fee} credits refunded"
            )
            await self.ledger.record(
                sender_wallet,
                fee,
                TransactionType.SESSION_REQUEST_CANCELLED,
                TransactionStatus.COMPLETED,
                related_user_id=request.receiver_id,
                note=f"Session request cancelled: {request.session_name}",
            )

            await self._claim(request)

        logger.info("Session request %s cancelled by sender, %s credits refunded", request_id, fee)
        return CancelSessionRequestResponse(
            message=f"Session request cancelled. {fee} credits have been refunded.",
            credits_refunded=fee,
        )

    # ============ Queries ============

    async def list_requests(self, user_id: int) -> SessionRequestListResponse:
        """List the caller's pending requests, sent and received, newest first."""
        sent = await self._list_pending(SessionRequest.sender_id, SessionRequest.receiver_id, user_id)
        received = await self._list_pending(
            SessionRequest.receiver_id, SessionRequest.sender_id, user_id
        )
        return SessionRequestListResponse(
            sent_requests=[self._to_response(r, receiver=u) for r, u in sent],
            received_requests=[self._to_response(r, sender=u) for r, u in received],
        )

    # ============ Helpers ============

    async def _get_active_connection(
        self, a: int, b: int, for_update: bool = False
    ) -> Connection | None:
        user1_id, user2_id = Connection.ordered_pair(a, b)
        query = select(Connection).where(
            Connection.user1_id == user1_id,
            Connection.user2_id == user2_id,
            Connection.status == ConnectionStatus.ACTIVE,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _check_receiver_skill(self, skill_id: int, receiver_id: int) -> None:
        skill = await self.db.get(Skill, skill_id)
        if skill is None or skill.owner_id != receiver_id:
            raise ValidationError(
                "Skill does not belong to the receiver",
                {"skill_id": skill_id, "receiver_id": receiver_id},
            )

    async def _find_pending_between(self, a: int, b: int) -> SessionRequest | None:
        result = await self.db.execute(
            select(SessionRequest).where(
                SessionRequest.status == SessionRequestStatus.PENDING,
                or_(
                    (SessionRequest.sender_id == a) & (SessionRequest.receiver_id == b),
                    (SessionRequest.sender_id == b) & (SessionRequest.receiver_id == a),
                ),
            )
        )
        return result.scalars().first()

    async def _get_request_for_update(self, request_id: int) -> SessionRequest | None:
        result = await self.db.execute(
            select(SessionRequest)
            .where(SessionRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_pending_request_for_update(self, request_id: int) -> SessionRequest | None:
        request = await self._get_request_for_update(request_id)
        if request is None or request.status != SessionRequestStatus.PENDING:
            return None
        return request

    async def _resolve_skill(self, request: SessionRequest) -> int:
        """Pick the skill the new session is anchored on.

        Uses the request's own skill when it named one. Otherwise, when
        ``skill_fallback_enabled`` is set, falls back to the receiver's oldest skill.
        """
        if request.skill_id is not None:
            skill = await self.db.get(Skill, request.skill_id)
            if skill is None or skill.owner_id != request.receiver_id:
                raise NoSkillAvailableError(request.receiver_id)
            return request.skill_id

        if not self.settings.skill_fallback_enabled:
            raise NoSkillAvailableError(request.receiver_id)

        result = await self.db.execute(
            select(Skill.id)
            .where(Skill.owner_id == request.receiver_id)
            .order_by(Skill.created_at, Skill.id)
            .limit(1)
        )
        skill_id = result.scalar_one_or_none()
        if skill_id is None:
            raise NoSkillAvailableError(request.receiver_id)
        return skill_id

    async def _refund_fee_leg(self, request: SessionRequest, note: str) -> None:
        fee_leg = await self.ledger.get_request_fee_leg(request.id)
        if fee_leg is not None:
            await self.ledger.transition(
                fee_leg, TransactionStatus.REFUNDED, note=note, unlink_request=True
            )

    async def _claim(self, request: SessionRequest) -> None:
        """Delete the request only if it is still PENDING.

        Raises:
            NotFoundError: Another caller resolved the request first
        """
        await self.db.flush()
        result = await self.db.execute(
            delete(SessionRequest)
            .where(
                SessionRequest.id == request.id,
                SessionRequest.status == SessionRequestStatus.PENDING,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Session request %s was resolved concurrently", request.id)
            raise NotFoundError("No pending session request found", {"request_id": request.id})
        self.db.expunge(request)

    async def _list_pending(self, own_column, other_column, user_id: int) -> list[tuple]:
        result = await self.db.execute(
            select(SessionRequest, User)
            .join(User, other_column == User.id)
            .where(own_column == user_id, SessionRequest.status == SessionRequestStatus.PENDING)
            .order_by(SessionRequest.created_at.desc(), SessionRequest.id.desc())
        )
        return list(result.all())

    @staticmethod
    def _to_response(
        request: SessionRequest, sender: User | None = None, receiver: User | None = None
    ) -> SessionRequestResponse:
        return SessionRequestResponse(
            id=request.id,
            session_name=request.session_name,
            description=request.description,
            mode=request.mode,
            start_date=request.start_date,
            end_date=request.end_date,
            credits_held=request.credits_held,
            status=request.status,
            created_at=request.created_at,
            sender=Counterpart(id=sender.id, full_name=sender.display_name) if sender else None,
            receiver=Counterpart(id=receiver.id, full_name=receiver.display_name)
            if receiver
            else None,
        )
