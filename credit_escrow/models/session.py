"""Credit Escrow Service - Learning session model."""

from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel

from credit_escrow.models.session_request import SessionMode


class SessionStatus(str, Enum):
    """Learning session status."""

    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class SessionRole(str, Enum):
    """Which side of a session a user is on."""

    LEARNER = "learner"
    PROVIDER = "provider"


class LearningSession(SQLModel, table=True):
    """Active (or finished) paid session between a learner and a provider.

    Created when a session request is accepted. ``session_credits`` sit in the
    learner's outgoing balance until both parties agree to cancel (refund to
    the learner) or both confirm completion (payout to the provider).

    Attributes:
        learner_id: Original request sender, who funds the escrow
        provider_id: Original request receiver, who teaches the skill
        request_credits: Request fee already paid to the provider (informational)
        session_credits: Credits held in escrow for this session
        *_cancellation_requested: Each party's cancellation consent
        *_completion_confirmed: Each party's completion confirmation
    """

    __tablename__ = "sessions"

    id: int | None = Field(default=None, primary_key=True)
    learner_id: int = Field(foreign_key="users.id", index=True)
    provider_id: int = Field(foreign_key="users.id", index=True)
    skill_id: int = Field(foreign_key="skills.id")
    connection_id: int = Field(foreign_key="connections.id")

    session_name: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    mode: SessionMode = Field(default=SessionMode.ONLINE)
    start_date: datetime
    end_date: datetime

    request_credits: int = Field(default=5)
    session_credits: int = Field(default=40)
    status: SessionStatus = Field(default=SessionStatus.ACTIVE, index=True)

    # Mutual-consent cancellation
    learner_cancellation_requested: bool = Field(default=False)
    provider_cancellation_requested: bool = Field(default=False)
    cancelled_by: int | None = Field(default=None, foreign_key="users.id")
    cancel_reason: str | None = Field(default=None, max_length=500)
    cancelled_at: datetime | None = None

    # Mutual-consent completion
    learner_completion_confirmed: bool = Field(default=False)
    provider_completion_confirmed: bool = Field(default=False)
    completed_at: datetime | None = None

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def role_of(self, user_id: int) -> SessionRole | None:
        """Return the caller's role in this session, or None for outsiders."""
        if user_id == self.learner_id:
            return SessionRole.LEARNER
        if user_id == self.provider_id:
            return SessionRole.PROVIDER
        return None
