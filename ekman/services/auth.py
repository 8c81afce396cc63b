"""Registration, login, logout and identity lookup.

A user row is written only after the first TOTP code has been accepted, so a
failed enrollment leaves nothing behind. Logins need both the password and a
fresh TOTP code; either failing produces the same InvalidCredentials.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from ekman.errors import InvalidCredentials, MalformedCode, Unauthenticated, UsernameTaken
from ekman.models.session import AuthSession
from ekman.models.user import User
from ekman.services.credentials import CredentialStore, hash_password
from ekman.services.otp import OTPVerifier, is_valid_secret, new_secret
from ekman.services.sessions import SessionManager

logger = logging.getLogger(__name__)

# Counter given to the first code of an enrollment; every real step is > -1.
NO_COUNTER = -1

# Label used in the otpauth URI when no username is known yet
DEFAULT_ACCOUNT_LABEL = "account"


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password("ekman-dummy-password")


class AuthService:
    def __init__(
        self,
        credentials: CredentialStore,
        sessions: SessionManager,
        verifier: OTPVerifier,
        issuer: str = "ekman",
        enrollment_ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], float] = time.time,
    ):
        self.credentials = credentials
        self.sessions = sessions
        self.verifier = verifier
        self.issuer = issuer
        self.enrollment_ttl = enrollment_ttl
        self.clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), timezone.utc)

    def totp_setup(self, username: str = "") -> tuple[str, str]:
        """Issue a fresh secret and its otpauth:// URI.

        Only a hash of the secret is kept, so registration can tell a secret this
        server issued from one the client made up.
        """
        secret = new_secret()
        self.credentials.record_issued_secret(secret, self._now() + self.enrollment_ttl)
        label = username or DEFAULT_ACCOUNT_LABEL
        return secret, self.verifier.provisioning_uri(secret, label, self.issuer)

    def register(
        self, username: str, password: str, secret: str, code: str
    ) -> tuple[User, AuthSession]:
        if not self.verifier.is_well_formed(code):
            raise MalformedCode()
        if not is_valid_secret(secret):
            raise InvalidCredentials("TOTP secret is malformed")
        if self.credentials.find_user(username) is not None:
            raise UsernameTaken(f"username {username!r} already exists")
        # One attempt per issued secret, whatever the outcome
        if not self.credentials.consume_issued_secret(secret, self._now()):
            logger.info("Registration for %r rejected: secret not issued, expired or already used", username)
            raise InvalidCredentials("TOTP secret was not issued by this server or was already used")

        counter = self.verifier.verify(secret, code, self.clock(), NO_COUNTER)
        if counter is None:
            logger.info("Registration for %r abandoned: first TOTP code rejected", username)
            raise InvalidCredentials("first TOTP code rejected")

        user = self.credentials.create_user(
            username, self.credentials.hash(password), secret, last_counter=counter
        )
        auth_session = self.sessions.create(user.id)
        logger.info("Registered user %r (id=%s)", user.username, user.id)
        return user, auth_session

    def login(self, username: str, password: str, code: str) -> tuple[User, AuthSession]:
        if not self.verifier.is_well_formed(code):
            raise MalformedCode()

        user = self.credentials.find_user(username)
        if user is None:
            # Burn the same bcrypt time as a real check.
            self.credentials.verify_password(password, _dummy_hash())
            logger.info("Login rejected for %r", username)
            raise InvalidCredentials("unknown user")

        if not self.credentials.verify_password(password, user.hashed_password):
            logger.info("Login rejected for %r", username)
            raise InvalidCredentials("password mismatch")

        previous = user.totp_last_counter
        counter = self.verifier.verify(user.totp_secret, code, self.clock(), previous)
        if counter is None:
            logger.info("Login rejected for %r", username)
            raise InvalidCredentials("TOTP mismatch or replay")

        if not self.credentials.update_last_counter(user.id, previous, counter):
            logger.warning("Login for %r lost TOTP counter race, treating as replay", username)
            raise InvalidCredentials("TOTP counter already advanced")

        auth_session = self.sessions.create(user.id)
        logger.info("User %r logged in", username)
        return user, auth_session

    def logout(self, token: str | None) -> None:
        self.sessions.revoke(token)

    def me(self, token: str | None) -> User:
        user_id = self.sessions.validate(token)
        user = self.credentials.get_user(user_id)
        if user is None:
            raise Unauthenticated("session owner no longer exists")
        return user
