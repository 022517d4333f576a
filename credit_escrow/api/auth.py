"""Credit Escrow Service - Caller identity resolution.

Authentication happens upstream (API gateway / identity provider). The gateway
forwards the authenticated user's ID in a trusted header, configured by
``USER_ID_HEADER``; this module turns that header into a local ``User``.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from credit_escrow.core.config import get_settings
from credit_escrow.core.exceptions import AuthenticationError
from credit_escrow.db import get_db
from credit_escrow.models.user import User

logger = logging.getLogger(__name__)


def read_user_id(request: Request) -> int:
    """Extract the caller's user ID from the identity header.

    Raises:
        AuthenticationError: Header missing or not a positive integer
    """
    header = get_settings().user_id_header
    raw = request.headers.get(header)
    if not raw:
        raise AuthenticationError(f"Missing {header} header")
    try:
        user_id = int(raw)
    except ValueError as e:
        raise AuthenticationError(f"Invalid {header} header") from e
    if user_id <= 0:
        raise AuthenticationError(f"Invalid {header} header")
    return user_id


async def get_current_user(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """FastAPI dependency to get the current authenticated user.

    Usage:
        @router.get("/wallet")
        async def get_wallet(user: User = Depends(get_current_user)):
            return user
    """
    try:
        user_id = read_user_id(request)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "success": False,
                "error_code": "UNAUTHENTICATED",
                "error_message": e.message,
            },
        ) from e

    user = await db.get(User, user_id)
    if not user:
        logger.warning("Request with unknown user id %s", user_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "success": False,
                "error_code": "UNAUTHENTICATED",
                "error_message": "User not found",
            },
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "success": False,
                "error_code": "FORBIDDEN",
                "error_message": "User account is disabled",
            },
        )

    return user
