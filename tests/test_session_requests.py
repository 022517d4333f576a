"""
Unit Tests for the Session Request Service

Tests cover:
1. Sending requests (fee escrow, preconditions)
2. Accepting requests (fee payout, session escrow, session creation)
3. Declining and cancelling requests (fee refund)
4. Requests resolved twice, and concurrent resolutions that lose the race
5. Skill resolution policy
6. Listing pending requests
"""

from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import select

from credit_escrow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InsufficientFundsError,
    MissingConnectionError,
    NoSkillAvailableError,
    NotFoundError,
    ValidationError,
)
from credit_escrow.models.ledger import CreditTransaction, TransactionStatus, TransactionType
from credit_escrow.models.session import LearningSession, SessionStatus
from credit_escrow.models.session_request import SessionMode, SessionRequest
from credit_escrow.models.user import ConnectionStatus, Skill, User
from credit_escrow.services.session_request_service import SessionRequestService
from tests.conftest import balances, entries, make_request


async def count(db, model) -> int:
    result = await db.execute(select(model).execution_options(populate_existing=True))
    return len(result.scalars().all())


class TestSendRequest:
    """Tests for sending a session request."""

    async def test_send_escrows_fee(self, db, pair, settings):
        """The fee moves into outgoing and a PENDING fee leg is logged."""
        service = SessionRequestService(db, settings)

        response = await service.send_request(pair.learner, make_request(pair.provider))

        assert response.success is True
        assert response.credits_deducted == 5
        assert await balances(db, pair.learner) == (95, 5)
        assert await balances(db, pair.provider) == (0, 0)

        request = await db.get(SessionRequest, response.request_id)
        assert request.sender_id == pair.learner
        assert request.receiver_id == pair.provider
        assert request.credits_held == 5
        assert request.mode == SessionMode.ONLINE

        fee_leg = (await entries(db, pair.learner))[-1]
        assert fee_leg.type == TransactionType.SESSION_REQUEST_SENT
        assert fee_leg.status == TransactionStatus.PENDING
        assert fee_leg.amount == -5
        assert fee_leg.session_request_id == request.id
        assert fee_leg.related_user_id == pair.provider

    async def test_scenario_d_insufficient_credits(self, db, factory, settings):
        """A sender with 3 credits cannot pay a 5 credit fee; nothing is written."""
        sender = await factory.user("Poor", credits=3)
        receiver = await factory.user("Rich", credits=0)
        await factory.connect(sender, receiver)
        sender_id, receiver_id = sender.id, receiver.id

        with pytest.raises(InsufficientFundsError, match="You need 5 credits"):
            await SessionRequestService(db, settings).send_request(
                sender_id, make_request(receiver_id)
            )

        assert await balances(db, sender_id) == (3, 0)
        assert await count(db, SessionRequest) == 0
        assert [e.type for e in await entries(db, sender_id)] == [TransactionType.SIGNUP_BONUS]

    async def test_send_to_self_rejected(self, db, pair, settings):
        with pytest.raises(ValidationError):
            await SessionRequestService(db, settings).send_request(
                pair.learner, make_request(pair.learner)
            )

    async def test_send_to_unknown_user(self, db, pair, settings):
        with pytest.raises(NotFoundError):
            await SessionRequestService(db, settings).send_request(
                pair.learner, make_request(9999)
            )

    async def test_send_requires_active_connection(self, db, factory, settings):
        """Blocked connections do not count."""
        a = await factory.user("Alice", credits=100)
        b = await factory.user("Bob", credits=0)
        await factory.connect(a, b, status=ConnectionStatus.BLOCKED)
        a_id, b_id = a.id, b.id

        with pytest.raises(MissingConnectionError):
            await SessionRequestService(db, settings).send_request(a_id, make_request(b_id))

        assert await balances(db, a_id) == (100, 0)

    async def test_duplicate_pending_request_conflicts(self, db, pair, settings):
        """Only one pending request may exist between a pair, in either direction."""
        service = SessionRequestService(db, settings)
        await service.send_request(pair.learner, make_request(pair.provider))

        with pytest.raises(ConflictError):
            await service.send_request(pair.learner, make_request(pair.provider))
        with pytest.raises(ConflictError):
            await service.send_request(pair.provider, make_request(pair.learner))

        assert await balances(db, pair.learner) == (95, 5)
        assert await count(db, SessionRequest) == 1

    async def test_unknown_skill_rejected(self, db, pair, settings):
        """A skill_id that does not exist is refused before anything is written."""
        with pytest.raises(ValidationError) as exc_info:
            await SessionRequestService(db, settings).send_request(
                pair.learner, make_request(pair.provider, skill_id=9999)
            )

        assert exc_info.value.details == {"skill_id": 9999, "receiver_id": pair.provider}
        assert await balances(db, pair.learner) == (100, 0)
        assert await count(db, SessionRequest) == 0

    @pytest.mark.parametrize("owner", ["sender", "outsider"])
    async def test_skill_of_another_user_rejected(self, db, factory, pair, settings, owner):
        """Only one of the receiver's own skills can anchor the session."""
        if owner == "sender":
            owner_user = await db.get(User, pair.learner)
        else:
            owner_user = await factory.user("Eve", credits=0)
        skill_id = (await factory.skill(owner_user, "Cooking")).id

        with pytest.raises(ValidationError):
            await SessionRequestService(db, settings).send_request(
                pair.learner, make_request(pair.provider, skill_id=skill_id)
            )

        assert await balances(db, pair.learner) == (100, 0)
        assert await count(db, SessionRequest) == 0

    async def test_end_before_start_is_invalid(self, pair):
        from pydantic import ValidationError as PydanticValidationError

        from tests.conftest import END, START

        with pytest.raises(PydanticValidationError):
            make_request(pair.provider, start_date=END, end_date=START)


class TestAcceptRequest:
    """Tests for accepting a session request."""

    async def test_scenario_b_accept(self, db, factory, settings):
        """Sender 50 -> (45, 5) after send -> (5, 40) after accept; receiver gets the fee."""
        sender = await factory.user("Sender", credits=50)
        receiver = await factory.user("Receiver", credits=0)
        await factory.connect(sender, receiver)
        skill = await factory.skill(receiver)
        sender_id, receiver_id, skill_id = sender.id, receiver.id, skill.id
        service = SessionRequestService(db, settings)

        sent = await service.send_request(sender_id, make_request(receiver_id))
        assert await balances(db, sender_id) == (45, 5)

        accepted = await service.accept_request(receiver_id, sent.request_id)

        assert accepted.credits_received == 5
        assert accepted.credits_reserved == 40
        assert await balances(db, sender_id) == (5, 40)
        assert await balances(db, receiver_id) == (5, 0)

        session = await db.get(LearningSession, accepted.session_id)
        assert session.status == SessionStatus.ACTIVE
        assert session.learner_id == sender_id
        assert session.provider_id == receiver_id
        assert session.skill_id == skill_id
        assert session.session_credits == 40
        assert session.request_credits == 5
        assert session.session_name == "Intro to asyncio"

        assert await count(db, SessionRequest) == 0
        assert await count(db, LearningSession) == 1

    async def test_accept_settles_fee_leg_and_logs_escrow(self, db, pair, settings):
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))

        accepted = await service.accept_request(pair.provider, sent.request_id)

        learner_log = await entries(db, pair.learner)
        fee_leg, escrow_leg = learner_log[-2], learner_log[-1]
        assert fee_leg.status == TransactionStatus.COMPLETED
        assert fee_leg.session_request_id is None
        assert escrow_leg.type == TransactionType.SESSION_REQUEST_SENT
        assert escrow_leg.status == TransactionStatus.PENDING
        assert escrow_leg.amount == -40
        assert escrow_leg.session_id == accepted.session_id

        provider_log = await entries(db, pair.provider)
        assert len(provider_log) == 1
        assert provider_log[0].type == TransactionType.SESSION_REQUEST_RECEIVED
        assert provider_log[0].status == TransactionStatus.COMPLETED
        assert provider_log[0].amount == 5

    async def test_only_receiver_can_accept(self, db, pair, settings):
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))

        with pytest.raises(NotFoundError):
            await service.accept_request(pair.learner, sent.request_id)

        assert await balances(db, pair.learner) == (95, 5)

    async def test_accept_without_session_credits_rolls_back(self, db, factory, settings):
        """A sender who cannot cover the session escrow blocks the accept entirely."""
        sender = await factory.user("Sender", credits=20)
        receiver = await factory.user("Receiver", credits=0)
        await factory.connect(sender, receiver)
        await factory.skill(receiver)
        sender_id, receiver_id = sender.id, receiver.id
        service = SessionRequestService(db, settings)
        sent = await service.send_request(sender_id, make_request(receiver_id))

        with pytest.raises(InsufficientFundsError, match="Sender does not have enough credits"):
            await service.accept_request(receiver_id, sent.request_id)

        assert await balances(db, sender_id) == (15, 5)
        assert await balances(db, receiver_id) == (0, 0)
        assert await count(db, SessionRequest) == 1
        assert await count(db, LearningSession) == 0

    async def test_accept_after_connection_removed(self, db, factory, settings):
        sender = await factory.user("Sender", credits=100)
        receiver = await factory.user("Receiver", credits=0)
        connection = await factory.connect(sender, receiver)
        await factory.skill(receiver)
        sender_id, receiver_id = sender.id, receiver.id
        service = SessionRequestService(db, settings)
        sent = await service.send_request(sender_id, make_request(receiver_id))

        connection.status = ConnectionStatus.REMOVED
        db.add(connection)
        await db.commit()

        with pytest.raises(MissingConnectionError):
            await service.accept_request(receiver_id, sent.request_id)

        assert await balances(db, sender_id) == (95, 5)


class TestDeclineAndCancel:
    """Tests for the refund paths."""

    async def test_scenario_a_decline(self, db, factory, settings):
        """Sender 10 -> (5, 5) after send -> (10, 0) after decline."""
        sender = await factory.user("Sender", credits=10)
        receiver = await factory.user("Receiver", credits=0)
        await factory.connect(sender, receiver)
        sender_id, receiver_id = sender.id, receiver.id
        service = SessionRequestService(db, settings)

        sent = await service.send_request(sender_id, make_request(receiver_id))
        assert await balances(db, sender_id) == (5, 5)

        response = await service.decline_request(receiver_id, sent.request_id)

        assert response.success is True
        assert await balances(db, sender_id) == (10, 0)
        assert await balances(db, receiver_id) == (0, 0)
        assert await count(db, SessionRequest) == 0

        log = await entries(db, sender_id)
        assert [(e.type, e.status, e.amount) for e in log[1:]] == [
            (TransactionType.SESSION_REQUEST_SENT, TransactionStatus.REFUNDED, -5),
            (TransactionType.SESSION_REQUEST_REFUNDED, TransactionStatus.COMPLETED, 5),
        ]

    async def test_cancel_by_sender_refunds(self, db, pair, settings):
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))

        response = await service.cancel_request(pair.learner, sent.request_id)

        assert response.credits_refunded == 5
        assert "5 credits have been refunded" in response.message
        assert await balances(db, pair.learner) == (100, 0)
        assert await count(db, SessionRequest) == 0

        log = await entries(db, pair.learner)
        assert [(e.type, e.status) for e in log[1:]] == [
            (TransactionType.SESSION_REQUEST_SENT, TransactionStatus.REFUNDED),
            (TransactionType.SESSION_REQUEST_CANCELLED, TransactionStatus.COMPLETED),
        ]

    async def test_cancel_by_receiver_forbidden(self, db, pair, settings):
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))

        with pytest.raises(ForbiddenError):
            await service.cancel_request(pair.provider, sent.request_id)

        assert await balances(db, pair.learner) == (95, 5)

    async def test_cancel_unknown_request(self, db, pair, settings):
        with pytest.raises(NotFoundError):
            await SessionRequestService(db, settings).cancel_request(pair.learner, 9999)

    async def test_decline_by_sender_not_found(self, db, pair, settings):
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))

        with pytest.raises(NotFoundError):
            await service.decline_request(pair.learner, sent.request_id)


class TestResolvedTwice:
    """A request is resolved exactly once; later attempts change nothing."""

    @pytest.mark.parametrize(
        "first,second",
        [
            ("accept", "decline"),
            ("decline", "accept"),
            ("cancel", "accept"),
            ("accept", "cancel"),
            ("decline", "decline"),
        ],
    )
    async def test_second_resolution_not_found(
        self, session_factory, pair, settings, first, second
    ):
        """Each action runs on its own database session, as concurrent callers would."""

        async def run(action: str, request_id: int) -> None:
            async with session_factory() as db:
                service = SessionRequestService(db, settings)
                if action == "accept":
                    await service.accept_request(pair.provider, request_id)
                elif action == "decline":
                    await service.decline_request(pair.provider, request_id)
                else:
                    await service.cancel_request(pair.learner, request_id)

        async with session_factory() as db:
            sent = await SessionRequestService(db, settings).send_request(
                pair.learner, make_request(pair.provider)
            )

        await run(first, sent.request_id)

        async with session_factory() as db:
            learner_before = await balances(db, pair.learner)
            provider_before = await balances(db, pair.provider)
            log_size = await count(db, CreditTransaction)

        with pytest.raises(NotFoundError):
            await run(second, sent.request_id)

        async with session_factory() as db:
            assert await balances(db, pair.learner) == learner_before
            assert await balances(db, pair.provider) == provider_before
            assert await count(db, CreditTransaction) == log_size


async def resolve(service: SessionRequestService, action: str, pair, request_id: int) -> None:
    if action == "accept":
        await service.accept_request(pair.provider, request_id)
    elif action == "decline":
        await service.decline_request(pair.provider, request_id)
    else:
        await service.cancel_request(pair.learner, request_id)


class TestConcurrentResolution:
    """The caller that read the request before the winner committed is rolled back."""

    @pytest.mark.parametrize(
        "winner,loser",
        [
            ("decline", "accept"),
            ("cancel", "accept"),
            ("accept", "decline"),
            ("accept", "cancel"),
        ],
    )
    async def test_stale_read_loses_at_delete(
        self, session_factory, pair, settings, winner, loser
    ):
        """The loser passes every check on its stale copy, then the conditional delete misses."""
        async with session_factory() as db:
            sent = await SessionRequestService(db, settings).send_request(
                pair.learner, make_request(pair.provider)
            )

        async with session_factory() as loser_db:
            stale = await loser_db.get(SessionRequest, sent.request_id)
            await loser_db.commit()

            async with session_factory() as winner_db:
                winner_service = SessionRequestService(winner_db, settings)
                await resolve(winner_service, winner, pair, sent.request_id)

            async with session_factory() as db:
                learner_before = await balances(db, pair.learner)
                provider_before = await balances(db, pair.provider)
                log_size = await count(db, CreditTransaction)
                sessions_before = await count(db, LearningSession)

            service = SessionRequestService(loser_db, settings)
            stale_read = AsyncMock(return_value=stale)
            with (
                patch.object(service, "_get_request_for_update", stale_read),
                patch.object(service, "_get_pending_request_for_update", stale_read),
            ):
                with pytest.raises(NotFoundError):
                    await resolve(service, loser, pair, sent.request_id)

        async with session_factory() as db:
            assert await balances(db, pair.learner) == learner_before
            assert await balances(db, pair.provider) == provider_before
            assert await count(db, CreditTransaction) == log_size
            assert await count(db, LearningSession) == sessions_before
            assert await count(db, SessionRequest) == 0


class TestSkillResolution:
    """Tests for choosing the skill a session is anchored on."""

    async def test_explicit_skill_is_used(self, db, factory, settings):
        """A named skill wins over the receiver's oldest one."""
        sender = await factory.user("Sender", credits=100)
        receiver = await factory.user("Receiver", credits=0)
        await factory.connect(sender, receiver)
        await factory.skill(receiver, "Rust")
        named = await factory.skill(receiver, "Go")
        sender_id, receiver_id, named_id = sender.id, receiver.id, named.id
        service = SessionRequestService(db, settings)
        sent = await service.send_request(
            sender_id, make_request(receiver_id, skill_id=named_id)
        )

        accepted = await service.accept_request(receiver_id, sent.request_id)

        session = await db.get(LearningSession, accepted.session_id)
        assert session.skill_id == named_id

    async def test_named_skill_no_longer_owned_by_receiver(self, db, factory, pair, settings):
        """A skill handed to someone else after the send cannot anchor the session."""
        service = SessionRequestService(db, settings)
        sent = await service.send_request(
            pair.learner, make_request(pair.provider, skill_id=pair.skill)
        )
        outsider_id = (await factory.user("Eve", credits=0)).id
        skill = await db.get(Skill, pair.skill)
        skill.owner_id = outsider_id
        db.add(skill)
        await db.commit()

        with pytest.raises(NoSkillAvailableError):
            await service.accept_request(pair.provider, sent.request_id)

        assert await balances(db, pair.learner) == (95, 5)
        assert await balances(db, pair.provider) == (0, 0)
        assert await count(db, LearningSession) == 0

    async def test_fallback_picks_receivers_oldest_skill(self, db, factory, settings):
        sender = await factory.user("Sender", credits=100)
        receiver = await factory.user("Receiver", credits=0)
        await factory.connect(sender, receiver)
        first = await factory.skill(receiver, "Rust")
        await factory.skill(receiver, "Go")
        sender_id, receiver_id, first_id = sender.id, receiver.id, first.id
        service = SessionRequestService(db, settings)
        sent = await service.send_request(sender_id, make_request(receiver_id))

        accepted = await service.accept_request(receiver_id, sent.request_id)

        session = await db.get(LearningSession, accepted.session_id)
        assert session.skill_id == first_id

    async def test_no_skill_rejects_accept(self, db, factory, settings):
        sender = await factory.user("Sender", credits=100)
        receiver = await factory.user("Receiver", credits=0)
        await factory.connect(sender, receiver)
        sender_id, receiver_id = sender.id, receiver.id
        service = SessionRequestService(db, settings)
        sent = await service.send_request(sender_id, make_request(receiver_id))

        with pytest.raises(NoSkillAvailableError):
            await service.accept_request(receiver_id, sent.request_id)

        assert await balances(db, sender_id) == (95, 5)
        assert await count(db, SessionRequest) == 1

    async def test_fallback_disabled_requires_explicit_skill(self, db, pair, settings):
        settings.skill_fallback_enabled = False
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))

        with pytest.raises(NoSkillAvailableError):
            await service.accept_request(pair.provider, sent.request_id)

        assert await balances(db, pair.learner) == (95, 5)


class TestListRequests:
    """Tests for listing pending requests."""

    async def test_list_splits_sent_and_received(self, db, pair, settings):
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))

        learner_view = await service.list_requests(pair.learner)
        provider_view = await service.list_requests(pair.provider)

        assert [r.id for r in learner_view.sent_requests] == [sent.request_id]
        assert learner_view.received_requests == []
        assert learner_view.sent_requests[0].receiver.full_name == "Bob"

        assert provider_view.sent_requests == []
        assert [r.id for r in provider_view.received_requests] == [sent.request_id]
        assert provider_view.received_requests[0].sender.full_name == "Alice"

    async def test_resolved_requests_disappear(self, db, pair, settings):
        service = SessionRequestService(db, settings)
        sent = await service.send_request(pair.learner, make_request(pair.provider))
        await service.decline_request(pair.provider, sent.request_id)

        view = await service.list_requests(pair.learner)

        assert view.sent_requests == []
        assert view.received_requests == []
