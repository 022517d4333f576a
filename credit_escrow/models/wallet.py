"""Credit Escrow Service - Wallet model."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class Wallet(SQLModel, table=True):
    """Credit wallet - one per user.

    Balances are integer credits kept in three buckets:

        available_balance: spendable now
        outgoing_balance:  credits this user has escrowed against a pending
                           request or an active session
        incoming_balance:  informational only, never gates a spend

    The CHECK constraints back up the service-level guard: neither spendable
    bucket may ever go negative.
    """

    __tablename__ = "wallets"
    __table_args__ = (
        sa.CheckConstraint("available_balance >= 0", name="ck_wallet_available_non_negative"),
        sa.CheckConstraint("outgoing_balance >= 0", name="ck_wallet_outgoing_non_negative"),
        sa.CheckConstraint("incoming_balance >= 0", name="ck_wallet_incoming_non_negative"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", unique=True, index=True)

    available_balance: int = Field(default=0)
    outgoing_balance: int = Field(default=0)
    incoming_balance: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
