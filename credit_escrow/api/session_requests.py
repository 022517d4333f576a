"""Session Requests API - send, accept, decline and cancel session requests."""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from credit_escrow.api.deps import CurrentUser, http_error
from credit_escrow.core.exceptions import EscrowError
from credit_escrow.db.engine import get_db
from credit_escrow.schemas.session_request import (
    AcceptSessionRequestResponse,
    CancelSessionRequestResponse,
    CreateSessionRequest,
    CreateSessionRequestResponse,
    DeclineSessionRequestResponse,
    SessionRequestListResponse,
)
from credit_escrow.services.session_request_service import SessionRequestService

router = APIRouter(prefix="/sessions/requests", tags=["Session Requests"])


def get_session_request_service(db=Depends(get_db)) -> SessionRequestService:
    """Get session request service instance."""
    return SessionRequestService(db)


Service = Annotated[SessionRequestService, Depends(get_session_request_service)]


@router.post(
    "",
    response_model=CreateSessionRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_session_request(
    user: CurrentUser,
    data: CreateSessionRequest,
    service: Service,
) -> CreateSessionRequestResponse:
    """Send a session request to a connected user.

    The request fee is moved from available to outgoing credits until the
    receiver accepts or declines, or the sender cancels.
    """
    try:
        return await service.send_request(user.id, data)
    except EscrowError as e:
        raise http_error(e) from e


@router.get("", response_model=SessionRequestListResponse)
async def list_session_requests(
    user: CurrentUser,
    service: Service,
) -> SessionRequestListResponse:
    """List pending requests the caller sent and received."""
    return await service.list_requests(user.id)


@router.post("/{request_id}/accept", response_model=AcceptSessionRequestResponse)
async def accept_session_request(
    request_id: int,
    user: CurrentUser,
    service: Service,
) -> AcceptSessionRequestResponse:
    """Accept a received request: fee paid to the receiver, session credits escrowed."""
    try:
        return await service.accept_request(user.id, request_id)
    except EscrowError as e:
        raise http_error(e) from e


@router.post("/{request_id}/decline", response_model=DeclineSessionRequestResponse)
async def decline_session_request(
    request_id: int,
    user: CurrentUser,
    service: Service,
) -> DeclineSessionRequestResponse:
    """Decline a received request and refund the sender's fee."""
    try:
        return await service.decline_request(user.id, request_id)
    except EscrowError as e:
        raise http_error(e) from e


@router.post("/{request_id}/cancel", response_model=CancelSessionRequestResponse)
async def cancel_session_request(
    request_id: int,
    user: CurrentUser,
    service: Service,
) -> CancelSessionRequestResponse:
    """Withdraw a sent request (sender only) and refund the fee."""
    try:
        return await service.cancel_request(user.id, request_id)
    except EscrowError as e:
        raise http_error(e) from e
