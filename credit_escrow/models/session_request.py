"""Credit Escrow Service - Session request model."""

from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel


class SessionMode(str, Enum):
    """How the session is held."""

    ONLINE = "ONLINE"
    IN_PERSON = "IN_PERSON"


class SessionRequestStatus(str, Enum):
    """Session request status.

    Only PENDING rows are ever stored: accepted, declined and cancelled
    requests are deleted and their outcome lives in the transaction log.
    """

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"


class SessionRequest(SQLModel, table=True):
    """Unconfirmed, fee-bearing request for a paid session.

    The sender becomes the learner and the receiver the provider once the
    request is accepted.
    """

    __tablename__ = "session_requests"

    id: int | None = Field(default=None, primary_key=True)
    sender_id: int = Field(foreign_key="users.id", index=True)
    receiver_id: int = Field(foreign_key="users.id", index=True)
    skill_id: int | None = Field(default=None, foreign_key="skills.id")

    session_name: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    mode: SessionMode = Field(default=SessionMode.ONLINE)
    start_date: datetime
    end_date: datetime

    credits_held: int = Field(default=5)
    status: SessionRequestStatus = Field(default=SessionRequestStatus.PENDING, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
