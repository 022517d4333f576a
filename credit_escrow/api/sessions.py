"""Sessions API - list sessions, mutual cancellation and completion."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query

from credit_escrow.api.deps import CurrentUser, http_error
from credit_escrow.core.exceptions import EscrowError
from credit_escrow.db.engine import get_db
from credit_escrow.models.session import SessionStatus
from credit_escrow.schemas.session import (
    CancelSessionRequest,
    CancelSessionResponse,
    CompleteSessionResponse,
    SessionResponse,
)
from credit_escrow.services.session_service import SessionService

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def get_session_service(db=Depends(get_db)) -> SessionService:
    """Get session service instance."""
    return SessionService(db)


Service = Annotated[SessionService, Depends(get_session_service)]


@router.get("", response_model=list[SessionResponse])
async def list_sessions(
    user: CurrentUser,
    service: Service,
    session_status: SessionStatus | None = Query(
        None, alias="status", description="Filter by session status"
    ),
) -> list[SessionResponse]:
    """List sessions where the caller is the learner or the provider."""
    return await service.list_sessions(user.id, session_status)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    user: CurrentUser,
    service: Service,
) -> SessionResponse:
    """Get one session the caller takes part in."""
    try:
        return await service.get_session(user.id, session_id)
    except EscrowError as e:
        raise http_error(e) from e


@router.post("/{session_id}/cancel", response_model=CancelSessionResponse)
async def cancel_session(
    session_id: int,
    user: CurrentUser,
    service: Service,
    data: Annotated[CancelSessionRequest | None, Body()] = None,
) -> CancelSessionResponse:
    """Request cancellation of an active session.

    The session is cancelled (and the learner refunded) only once both
    parties have asked; until then the response names who we are waiting for.
    """
    try:
        return await service.request_cancellation(
            user.id, session_id, reason=data.reason if data else None
        )
    except EscrowError as e:
        raise http_error(e) from e


@router.post("/{session_id}/complete", response_model=CompleteSessionResponse)
async def complete_session(
    session_id: int,
    user: CurrentUser,
    service: Service,
) -> CompleteSessionResponse:
    """Confirm an active session took place.

    Once both parties confirm, the escrowed credits are paid to the provider.
    """
    try:
        return await service.confirm_completion(user.id, session_id)
    except EscrowError as e:
        raise http_error(e) from e
