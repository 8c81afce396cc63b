"""Opaque session tokens bound to a user."""

import logging
import re
import secrets
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete
from sqlmodel import Session

from ekman.config import Settings
from ekman.errors import RandomSourceUnavailable, SessionExpired, SessionInvalid
from ekman.models.session import AuthSession

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
_TOKEN_RE = re.compile(r"^[0-9a-f]{%d}$" % (TOKEN_BYTES * 2))


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands datetimes back naive; they were written as UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class SessionManager:
    def __init__(
        self,
        session: Session,
        ttl: timedelta,
        sliding: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.ttl = ttl
        self.sliding = sliding
        self.clock = clock

    @classmethod
    def from_settings(
        cls, session: Session, settings: Settings, clock: Callable[[], float] = time.time
    ) -> "SessionManager":
        return cls(
            session,
            ttl=timedelta(minutes=settings.session_ttl_minutes),
            sliding=settings.session_sliding,
            clock=clock,
        )

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), timezone.utc)

    def create(self, user_id: int) -> AuthSession:
        """Mint and store a new token for ``user_id``."""
        try:
            token = secrets.token_hex(TOKEN_BYTES)
        except (OSError, NotImplementedError) as e:
            raise RandomSourceUnavailable(f"secure random source unavailable: {e}") from e

        now = self._now()
        auth_session = AuthSession(
            token=token,
            user_id=user_id,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self.session.add(auth_session)
        self.session.commit()
        self.session.refresh(auth_session)
        return auth_session

    def validate(self, token: str | None) -> int:
        """Return the owning user id, or raise SessionInvalid / SessionExpired."""
        if not token or not _TOKEN_RE.match(token):
            raise SessionInvalid()
        auth_session = self.session.get(AuthSession, token)
        if auth_session is None:
            raise SessionInvalid()

        now = self._now()
        if now > _as_utc(auth_session.expires_at):
            raise SessionExpired()

        user_id = auth_session.user_id
        if self.sliding:
            auth_session.expires_at = now + self.ttl
            self.session.add(auth_session)
            self.session.commit()
        return user_id

    def revoke(self, token: str | None) -> None:
        """Delete ``token`` if it exists. Unknown or malformed tokens are ignored."""
        if not token or not _TOKEN_RE.match(token):
            return
        self.session.exec(delete(AuthSession).where(AuthSession.token == token))
        self.session.commit()

    def purge_expired(self) -> int:
        """Delete every expired session. Returns the number removed."""
        result = self.session.exec(
            delete(AuthSession)
            .where(AuthSession.expires_at < self._now())
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount
