"""Shared fixtures: per-test in-memory database, seeded users and an API client."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"

from dataclasses import dataclass  # noqa: E402
from datetime import datetime  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel, select  # noqa: E402

import credit_escrow.models  # noqa: F401, E402
from credit_escrow.core.config import Settings  # noqa: E402
from credit_escrow.db.engine import get_db  # noqa: E402
from credit_escrow.models.ledger import CreditTransaction  # noqa: E402
from credit_escrow.models.user import Connection, ConnectionStatus, Skill, User  # noqa: E402
from credit_escrow.models.wallet import Wallet  # noqa: E402
from credit_escrow.schemas.session_request import CreateSessionRequest  # noqa: E402
from credit_escrow.services.wallet_service import WalletService  # noqa: E402

START = datetime(2026, 11, 2, 10, 0)
END = datetime(2026, 11, 2, 11, 0)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        session_request_fee=5,
        session_escrow_credits=40,
        signup_bonus_credits=100,
        skill_fallback_enabled=True,
    )


class Factory:
    """Seeds the records owned by other parts of the platform."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def user(self, name: str, credits: int | None = 100) -> User:
        """Create a user and, unless credits is None, open a wallet holding ``credits``."""
        user = User(email=f"{name.lower()}@example.com", full_name=name)
        self.db.add(user)
        await self.db.commit()
        if credits is not None:
            await WalletService(self.db).open_wallet(user.id, credits)
        return user

    async def connect(
        self, a: User, b: User, status: ConnectionStatus = ConnectionStatus.ACTIVE
    ) -> Connection:
        user1_id, user2_id = Connection.ordered_pair(a.id, b.id)
        connection = Connection(user1_id=user1_id, user2_id=user2_id, status=status)
        self.db.add(connection)
        await self.db.commit()
        return connection

    async def skill(self, owner: User, name: str = "Python") -> Skill:
        skill = Skill(owner_id=owner.id, name=name)
        self.db.add(skill)
        await self.db.commit()
        return skill


@pytest.fixture
def factory(db) -> Factory:
    return Factory(db)


@dataclass
class Pair:
    """IDs of a connected learner/provider pair; the provider owns one skill.

    Plain IDs stay readable after a failed operation rolls the session back
    and expires every loaded instance.
    """

    learner: int
    provider: int
    skill: int


@pytest.fixture
async def pair(factory) -> Pair:
    learner = await factory.user("Alice", credits=100)
    provider = await factory.user("Bob", credits=0)
    await factory.connect(learner, provider)
    skill = await factory.skill(provider)
    return Pair(learner=learner.id, provider=provider.id, skill=skill.id)


def make_request(receiver_id: int, **overrides) -> CreateSessionRequest:
    data = {
        "receiver_id": receiver_id,
        "session_name": "Intro to asyncio",
        "description": "One hour pairing session",
        "start_date": START,
        "end_date": END,
    }
    data.update(overrides)
    return CreateSessionRequest(**data)


async def balances(db: AsyncSession, user_id: int) -> tuple[int, int]:
    """(available, outgoing) as currently stored."""
    result = await db.execute(
        select(Wallet)
        .where(Wallet.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    wallet = result.scalar_one()
    return wallet.available_balance, wallet.outgoing_balance


async def entries(db: AsyncSession, user_id: int) -> list[CreditTransaction]:
    """All log entries of a user's wallet, oldest first."""
    result = await db.execute(
        select(CreditTransaction)
        .join(Wallet, CreditTransaction.wallet_id == Wallet.id)
        .where(Wallet.user_id == user_id)
        .order_by(CreditTransaction.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.fixture
async def client(session_factory):
    from credit_escrow.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}
