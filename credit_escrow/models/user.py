"""Credit Escrow Service - User, connection and skill models.

These records are owned by other parts of the platform (sign-up, the
connection workflow, the skill catalogue). The escrow core only reads them:
a session request needs an ACTIVE connection between the two users, and an
accepted request needs a skill to anchor the session on.
"""

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class User(SQLModel, table=True):
    """Platform user.

    Attributes:
        id: Auto-increment primary key
        email: User email address (indexed)
        full_name: Display name shown to the other party
        is_active: Account status
    """

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    full_name: str | None = Field(default=None, max_length=255)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email


class ConnectionStatus(str, Enum):
    """Connection status between two users."""

    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    REMOVED = "REMOVED"


class Connection(SQLModel, table=True):
    """Connection between two users.

    The pair is stored ordered (user1_id < user2_id) so each pair has one row.
    """

    __tablename__ = "connections"
    __table_args__ = (sa.UniqueConstraint("user1_id", "user2_id", name="uq_connection_pair"),)

    id: int | None = Field(default=None, primary_key=True)
    user1_id: int = Field(foreign_key="users.id", index=True)
    user2_id: int = Field(foreign_key="users.id", index=True)
    status: ConnectionStatus = Field(default=ConnectionStatus.ACTIVE, index=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @staticmethod
    def ordered_pair(a: int, b: int) -> tuple[int, int]:
        """Return the (user1_id, user2_id) storage order for two user IDs."""
        return (a, b) if a < b else (b, a)


class Skill(SQLModel, table=True):
    """Skill offered by a user."""

    __tablename__ = "skills"

    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(foreign_key="users.id", index=True)
    name: str = Field(max_length=255)
    description: str | None = Field(default=None, max_length=2000)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
