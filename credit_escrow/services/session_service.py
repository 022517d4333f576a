"""Session Service - mutual-consent cancellation and completion of active sessions.

Both protocols need explicit agreement from the learner and the provider.
The first party's call only records its flag; the second party's call
finalizes the session and moves the escrowed session credits:

    cancellation -> escrow returned to the learner's available balance
    completion   -> escrow paid to the provider's available balance

There is no deadline: a session with one flag set stays ACTIVE until the
other party responds.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import or_, select

from credit_escrow.core.exceptions import (
    AlreadyRequestedError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from credit_escrow.db.engine import transactional
from credit_escrow.models.ledger import TransactionStatus, TransactionType
from credit_escrow.models.session import LearningSession, SessionRole, SessionStatus
from credit_escrow.models.user import Skill, User
from credit_escrow.schemas.session import (
    CancelSessionResponse,
    CompleteSessionResponse,
    SessionResponse,
)
from credit_escrow.schemas.session_request import Counterpart
from credit_escrow.services.ledger_service import LedgerService
from credit_escrow.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON = "Mutual cancellation agreement"


class SessionService:
    """Service for active-session lifecycle business logic."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wallets = WalletService(db)
        self.ledger = LedgerService(db)

    # ============ Cancellation ============

    async def request_cancellation(
        self, user_id: int, session_id: int, reason: str | None = None
    ) -> CancelSessionResponse:
        """Register the caller's consent to cancel a session.

        Args:
            user_id: Caller (learner or provider)
            session_id: Session to cancel
            reason: Optional reason shown to the other party

        Returns:
            session_cancelled=True with credits_refunded when this call completed
            the agreement, otherwise session_cancelled=False and waiting_for

        Raises:
            NotFoundError: Session does not exist
            InvalidStateError: Session is not ACTIVE
            ForbiddenError: Caller is not part of the session
            AlreadyRequestedError: Caller already asked to cancel; nothing changed
        """
        async with transactional(self.db):
            session, role = await self._load_for_participant(session_id, user_id)
            other = _other_role(role)
            own_flag = f"{role.value}_cancellation_requested"
            other_flag = f"{other.value}_cancellation_requested"

            if getattr(session, own_flag):
                raise AlreadyRequestedError(waiting_for=other.value)

            if not getattr(session, other_flag):
                await self._guarded_update(
                    session, own_flag, {own_flag: True, "cancel_reason": reason}
                )
                other_user = await self.db.get(User, _user_of(session, other))
                name = other_user.display_name if other_user else "the other party"
                logger.info(
                    "Session %s: %s %s requested cancellation", session_id, role.value, user_id
                )
                return CancelSessionResponse(
                    message=f"Cancellation requested. Waiting for {name} to agree.",
                    session_cancelled=False,
                    waiting_for=other,
                )

            now = datetime.utcnow()
            await self._guarded_update(
                session,
                own_flag,
                {
                    "status": SessionStatus.CANCELLED,
                    "learner_cancellation_requested": True,
                    "provider_cancellation_requested": True,
                    "cancelled_by": user_id,
                    "cancel_reason": reason or DEFAULT_CANCEL_REASON,
                    "cancelled_at": now,
                },
            )

            credits = session.session_credits
            learner_wallet = await self.wallets.get_wallet_for_update(session.learner_id)
            await self.wallets.release(learner_wallet, credits)

            escrow_leg = await self.ledger.get_session_escrow_leg(session.id, learner_wallet.id)
            if escrow_leg is not None:
                await self.ledger.transition(
                    escrow_leg,
                    TransactionStatus.REFUNDED,
                    note=f"Session cancelled - {credits} credits released",
                )
            await self.ledger.record(
                learner_wallet,
                credits,
                TransactionType.SESSION_CANCELLED,
                TransactionStatus.COMPLETED,
                related_user_id=session.provider_id,
                session_id=session.id,
                note=(
                    f"Session cancelled by mutual agreement: {session.session_name} - "
                    f"{credits} credits refunded"
                ),
            )

        logger.info(
            "Session %s cancelled by mutual agreement, %s credits refunded to learner %s",
            session_id,
            credits,
            session.learner_id,
        )
        return CancelSessionResponse(
            message=(
                "Session cancelled by mutual agreement. "
                "Credits have been refunded to the learner."
            ),
            session_cancelled=True,
            credits_refunded=credits,
        )

    # ============ Completion ============

    async def confirm_completion(self, user_id: int, session_id: int) -> CompleteSessionResponse:
        """Register the caller's confirmation that a session took place.

        Raises:
            NotFoundError: Session does not exist
            InvalidStateError: Session is not ACTIVE
            ForbiddenError: Caller is not part of the session
            AlreadyRequestedError: Caller already confirmed; nothing changed
        """
        async with transactional(self.db):
            session, role = await self._load_for_participant(session_id, user_id)
            other = _other_role(role)
            own_flag = f"{role.value}_completion_confirmed"
            other_flag = f"{other.value}_completion_confirmed"

            if getattr(session, own_flag):
                raise AlreadyRequestedError(waiting_for=other.value)

            if not getattr(session, other_flag):
                await self._guarded_update(session, own_flag, {own_flag: True})
                logger.info(
                    "Session %s: %s %s confirmed completion", session_id, role.value, user_id
                )
                return CompleteSessionResponse(
                    message="Completion confirmed. Waiting for the other party to confirm.",
                    session_completed=False,
                    waiting_for=other,
                )

            await self._guarded_update(
                session,
                own_flag,
                {
                    "status": SessionStatus.COMPLETED,
                    "learner_completion_confirmed": True,
                    "provider_completion_confirmed": True,
                    "completed_at": datetime.utcnow(),
                },
            )

            credits = session.session_credits
            wallets = await self.wallets.lock_wallets(session.learner_id, session.provider_id)
            learner_wallet = wallets[session.learner_id]
            provider_wallet = wallets[session.provider_id]

            await self.wallets.settle(learner_wallet, credits)
            await self.wallets.credit(provider_wallet, credits)

            escrow_leg = await self.ledger.get_session_escrow_leg(session.id, learner_wallet.id)
            if escrow_leg is not None:
                await self.ledger.transition(
                    escrow_leg,
                    TransactionStatus.COMPLETED,
                    note=f"Session completed: {session.session_name}",
                )
            await self.ledger.record(
                provider_wallet,
                credits,
                TransactionType.SESSION_COMPLETED,
                TransactionStatus.COMPLETED,
                related_user_id=session.learner_id,
                session_id=session.id,
                note=f"Session completed: {session.session_name} - earned {credits} credits",
            )

        logger.info(
            "Session %s completed, %s credits paid to provider %s",
            session_id,
            credits,
            session.provider_id,
        )
        return CompleteSessionResponse(
            message="Session completed! Credits have been transferred.",
            session_completed=True,
            credits_transferred=credits,
        )

    # ============ Queries ============

    async def list_sessions(
        self, user_id: int, status: SessionStatus | None = None
    ) -> list[SessionResponse]:
        """List the caller's sessions (as learner or provider), newest first."""
        query = select(LearningSession, Skill.name).outerjoin(
            Skill, LearningSession.skill_id == Skill.id
        ).where(
            or_(LearningSession.learner_id == user_id, LearningSession.provider_id == user_id)
        )
        if status is not None:
            query = query.where(LearningSession.status == status)
        query = query.order_by(LearningSession.created_at.desc(), LearningSession.id.desc())

        rows = (await self.db.execute(query)).all()

        other_ids = {
            s.provider_id if s.learner_id == user_id else s.learner_id for s, _ in rows
        }
        users: dict[int, User] = {}
        if other_ids:
            result = await self.db.execute(select(User).where(User.id.in_(other_ids)))
            users = {u.id: u for u in result.scalars().all()}

        return [self._to_response(s, user_id, skill_name, users) for s, skill_name in rows]

    async def get_session(self, user_id: int, session_id: int) -> SessionResponse:
        """Get one session as seen by a participant.

        Raises:
            NotFoundError: Session does not exist
            ForbiddenError: Caller is not part of the session
        """
        session = await self.db.get(LearningSession, session_id)
        if session is None:
            raise NotFoundError("Session not found", {"session_id": session_id})
        if session.role_of(user_id) is None:
            raise ForbiddenError("You are not part of this session")

        skill = await self.db.get(Skill, session.skill_id)
        other_id = _user_of(session, _other_role(session.role_of(user_id)))
        other = await self.db.get(User, other_id)
        users = {other.id: other} if other else {}
        return self._to_response(session, user_id, skill.name if skill else None, users)

    # ============ Helpers ============

    async def _load_for_participant(
        self, session_id: int, user_id: int
    ) -> tuple[LearningSession, SessionRole]:
        result = await self.db.execute(
            select(LearningSession)
            .where(LearningSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError("Session not found", {"session_id": session_id})
        if session.status != SessionStatus.ACTIVE:
            raise InvalidStateError("Session is not active", {"status": session.status.value})

        role = session.role_of(user_id)
        if role is None:
            raise ForbiddenError("You are not part of this session")
        return session, role

    async def _guarded_update(
        self, session: LearningSession, own_flag: str, values: dict[str, Any]
    ) -> None:
        """Write ``values`` only if the session is still ACTIVE and the caller's flag unset.

        Raises:
            ConflictError: A concurrent call changed the session first
        """
        values = {**values, "updated_at": datetime.utcnow()}
        result = await self.db.execute(
            update(LearningSession)
            .where(
                LearningSession.id == session.id,
                LearningSession.status == SessionStatus.ACTIVE,
                getattr(LearningSession, own_flag).is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Session %s was modified concurrently", session.id)
            raise ConflictError(
                "Session was modified by another request, refresh and try again",
                {"session_id": session.id},
            )
        await self.db.refresh(session)

    @staticmethod
    def _to_response(
        session: LearningSession,
        user_id: int,
        skill_name: str | None,
        users: dict[int, User],
    ) -> SessionResponse:
        role = session.role_of(user_id)
        other_id = _user_of(session, _other_role(role))
        other = users.get(other_id)
        return SessionResponse(
            id=session.id,
            session_name=session.session_name,
            description=session.description,
            mode=session.mode,
            status=session.status,
            start_date=session.start_date,
            end_date=session.end_date,
            request_credits=session.request_credits,
            session_credits=session.session_credits,
            skill_id=session.skill_id,
            skill_name=skill_name,
            role=role,
            other_user=Counterpart(
                id=other_id, full_name=other.display_name if other else "User"
            ),
            learner_cancellation_requested=session.learner_cancellation_requested,
            provider_cancellation_requested=session.provider_cancellation_requested,
            cancel_reason=session.cancel_reason,
            cancelled_by=session.cancelled_by,
            cancelled_at=session.cancelled_at,
            learner_completion_confirmed=session.learner_completion_confirmed,
            provider_completion_confirmed=session.provider_completion_confirmed,
            completed_at=session.completed_at,
            created_at=session.created_at,
        )


def _other_role(role: SessionRole) -> SessionRole:
    return SessionRole.PROVIDER if role == SessionRole.LEARNER else SessionRole.LEARNER


def _user_of(session: LearningSession, role: SessionRole) -> int:
    return session.learner_id if role == SessionRole.LEARNER else session.provider_id
