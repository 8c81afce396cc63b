"""Login session model."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class AuthSession(SQLModel, table=True):
    __tablename__ = "auth_session"

    token: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime
