"""API module - route handlers and common dependencies."""

from fastapi import FastAPI

from credit_escrow.api.deps import CurrentUser, http_error

__all__ = [
    "CurrentUser",
    "http_error",
    "register_routers",
]


def register_routers(app: FastAPI) -> None:
    """Register all API routers to the application.

    Args:
        app: FastAPI application instance
    """
    # Session requests before sessions: /sessions/requests must win over /sessions/{id}
    from credit_escrow.api.session_requests import router as session_requests_router
    from credit_escrow.api.sessions import router as sessions_router

    app.include_router(session_requests_router, prefix="/api")
    app.include_router(sessions_router, prefix="/api")

    # Wallet & Ledger
    from credit_escrow.api.wallets import router as wallets_router

    app.include_router(wallets_router, prefix="/api")
