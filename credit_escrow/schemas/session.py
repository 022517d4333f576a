"""Session schemas - Request/Response DTOs for active sessions."""

from datetime import datetime

from pydantic import BaseModel, Field

from credit_escrow.models.session import SessionRole, SessionStatus
from credit_escrow.models.session_request import SessionMode
from credit_escrow.schemas.session_request import Counterpart


class CancelSessionRequest(BaseModel):
    """Cancellation consent from one party."""

    reason: str | None = Field(default=None, max_length=500)


class CancelSessionResponse(BaseModel):
    """Result of a cancellation request.

    session_cancelled is true only when this call completed the mutual
    agreement; otherwise waiting_for names the party still to agree.
    """

    success: bool = True
    message: str
    session_cancelled: bool
    credits_refunded: int | None = None
    waiting_for: SessionRole | None = None


class CompleteSessionResponse(BaseModel):
    """Result of a completion confirmation."""

    success: bool = True
    message: str
    session_completed: bool
    credits_transferred: int | None = None
    waiting_for: SessionRole | None = None


class SessionResponse(BaseModel):
    """Session as seen by one of its participants."""

    id: int
    session_name: str
    description: str | None = None
    mode: SessionMode
    status: SessionStatus
    start_date: datetime
    end_date: datetime
    request_credits: int
    session_credits: int
    skill_id: int
    skill_name: str | None = None

    role: SessionRole
    other_user: Counterpart

    learner_cancellation_requested: bool
    provider_cancellation_requested: bool
    cancel_reason: str | None = None
    cancelled_by: int | None = None
    cancelled_at: datetime | None = None

    learner_completion_confirmed: bool
    provider_completion_confirmed: bool
    completed_at: datetime | None = None

    created_at: datetime
