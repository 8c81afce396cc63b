"""Shared API dependencies."""

import time
from collections.abc import Callable
from datetime import timedelta

from fastapi import Depends, Request
from sqlmodel import Session

from ekman.config import settings
from ekman.database import get_session
from ekman.models.user import User
from ekman.services.auth import AuthService
from ekman.services.credentials import CredentialStore
from ekman.services.otp import OTPVerifier
from ekman.services.sessions import SessionManager


def get_clock() -> Callable[[], float]:
    """Time source for TOTP steps and session expiry. Overridden in tests."""
    return time.time


def get_auth_service(
    session: Session = Depends(get_session),
    clock: Callable[[], float] = Depends(get_clock),
) -> AuthService:
    return AuthService(
        credentials=CredentialStore(session),
        sessions=SessionManager.from_settings(session, settings, clock=clock),
        verifier=OTPVerifier.from_settings(settings),
        issuer=settings.totp_issuer,
        enrollment_ttl=timedelta(minutes=settings.totp_enrollment_ttl_minutes),
        clock=clock,
    )


def get_session_token(request: Request) -> str | None:
    return request.cookies.get(settings.session_cookie_name)


def get_current_user(
    token: str | None = Depends(get_session_token),
    auth: AuthService = Depends(get_auth_service),
) -> User:
    """Resolve the session cookie to its user, or raise Unauthenticated."""
    return auth.me(token)
