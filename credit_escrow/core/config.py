"""Credit Escrow Service - Core Configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "Credit Escrow Service"
    debug: bool = False
    log_level: str = Field(default="INFO", description="Root logging level")
    allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Database
    database_url: str = Field(
        default="mysql+aiomysql://root@localhost:3306/credit_escrow",
        description="Async SQLAlchemy connection string",
    )

    # Caller identity (resolved upstream by the auth gateway)
    user_id_header: str = Field(
        default="X-User-Id", description="Header carrying the authenticated user ID"
    )

    # Credit economics
    session_request_fee: int = Field(
        default=5, ge=0, description="Credits escrowed when a session request is sent"
    )
    session_escrow_credits: int = Field(
        default=40, ge=0, description="Credits reserved from the learner when a session starts"
    )
    signup_bonus_credits: int = Field(
        default=100, ge=0, description="Credits granted when a wallet is opened"
    )

    # When a request names no skill, anchor the session on any skill owned by the receiver
    skill_fallback_enabled: bool = Field(
        default=True, description="Fall back to the receiver's oldest skill on accept"
    )

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
