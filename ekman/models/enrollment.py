"""Record of TOTP secrets handed out for enrollment."""

from datetime import datetime, timezone
from sqlmodel import SQLModel, Field


class IssuedSecret(SQLModel, table=True):
    __tablename__ = "issued_secret"

    secret_hash: str = Field(primary_key=True)  # sha256 hex, the secret itself is never stored
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = Field(index=True)
