"""Session request schemas - Request/Response DTOs for the request negotiation flow."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from credit_escrow.models.session_request import SessionMode, SessionRequestStatus


class CreateSessionRequest(BaseModel):
    """Request to open a paid session with a connected user."""

    receiver_id: int = Field(gt=0)
    session_name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    mode: SessionMode = SessionMode.ONLINE
    start_date: datetime
    end_date: datetime
    skill_id: int | None = Field(default=None, description="Skill to anchor the session on")

    @model_validator(mode="after")
    def check_dates(self) -> "CreateSessionRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class CreateSessionRequestResponse(BaseModel):
    """Result of sending a session request."""

    success: bool = True
    message: str = "Session request sent successfully"
    request_id: int
    credits_deducted: int


class AcceptSessionRequestResponse(BaseModel):
    """Result of accepting a session request."""

    success: bool = True
    message: str = "Session request accepted successfully"
    session_id: int
    credits_received: int
    credits_reserved: int


class DeclineSessionRequestResponse(BaseModel):
    """Result of declining a session request."""

    success: bool = True
    message: str = "Session request declined"


class CancelSessionRequestResponse(BaseModel):
    """Result of the sender withdrawing a session request."""

    success: bool = True
    message: str
    credits_refunded: int


class Counterpart(BaseModel):
    """The other user on a request or session."""

    id: int
    full_name: str


class SessionRequestResponse(BaseModel):
    """Pending session request as seen by one of its parties."""

    id: int
    session_name: str
    description: str | None = None
    mode: SessionMode
    start_date: datetime
    end_date: datetime
    credits_held: int
    status: SessionRequestStatus
    created_at: datetime

    sender: Counterpart | None = None
    receiver: Counterpart | None = None


class SessionRequestListResponse(BaseModel):
    """Caller's pending requests, split by direction."""

    sent_requests: list[SessionRequestResponse]
    received_requests: list[SessionRequestResponse]
