"""Password hashing and persistent user records."""

import hashlib
import logging
from datetime import datetime

import bcrypt
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ekman.errors import UsernameTaken
from ekman.models.enrollment import IssuedSecret
from ekman.models.user import User

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    pw = password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    pw = plain.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw, hashed.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash
        return False


class CredentialStore:
    """User rows in the database, plus the password hashing they depend on."""

    def __init__(self, session: Session):
        self.session = session

    def hash(self, password: str) -> str:
        return hash_password(password)

    def verify_password(self, password: str, hashed: str) -> bool:
        return verify_password(password, hashed)

    def find_user(self, username: str) -> User | None:
        return self.session.exec(select(User).where(User.username == username)).first()

    def get_user(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def create_user(
        self, username: str, hashed_password: str, secret: str, last_counter: int = -1
    ) -> User:
        """Insert a fully formed user. The unique index decides username races."""
        user = User(
            username=username,
            hashed_password=hashed_password,
            totp_secret=secret,
            totp_last_counter=last_counter,
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise UsernameTaken(f"username {username!r} already exists") from e
        self.session.refresh(user)
        return user

    def update_last_counter(self, user_id: int, previous: int, new: int) -> bool:
        """Compare-and-set the user's last accepted TOTP counter.

        Only succeeds if the stored value still equals ``previous``; returns
        False when another request advanced it first.
        """
        if new <= previous:
            return False
        result = self.session.exec(
            update(User)
            .where(User.id == user_id, User.totp_last_counter == previous)
            .values(totp_last_counter=new)
        )
        self.session.commit()
        if result.rowcount != 1:
            logger.info("TOTP counter for user %s moved concurrently, rejecting", user_id)
            return False
        return True

    def record_issued_secret(self, secret: str, expires_at: datetime) -> None:
        """Remember that ``secret`` was handed out, by hash only."""
        self.session.add(IssuedSecret(secret_hash=_secret_digest(secret), expires_at=expires_at))
        self.session.commit()

    def consume_issued_secret(self, secret: str, now: datetime) -> bool:
        """Delete the record of ``secret``; True only if it was issued and still live.

        A secret can be consumed once, so a failed enrollment attempt burns it.
        """
        result = self.session.exec(
            delete(IssuedSecret)
            .where(IssuedSecret.secret_hash == _secret_digest(secret), IssuedSecret.expires_at > now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount == 1

    def purge_issued_secrets(self, now: datetime) -> int:
        result = self.session.exec(
            delete(IssuedSecret)
            .where(IssuedSecret.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        self.session.commit()
        return result.rowcount


def _secret_digest(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()
