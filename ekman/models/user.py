"""User model for authentication."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    hashed_password: str
    totp_secret: str  # base32, set once at registration
    totp_last_counter: int = Field(default=-1)  # last accepted TOTP step, never decreases
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
