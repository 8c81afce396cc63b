"""Authentication API — TOTP enrollment, register, login, logout, me."""

from fastapi import APIRouter, Depends, Response, status

from ekman.api.deps import get_auth_service, get_current_user, get_session_token
from ekman.config import settings
from ekman.models.session import AuthSession
from ekman.models.user import User
from ekman.schemas.auth import LoginRequest, RegisterRequest, TotpSetupResponse, UserResponse
from ekman.services.auth import AuthService

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookie(response: Response, auth_session: AuthSession) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=auth_session.token,
        max_age=settings.session_ttl_minutes * 60,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="strict",
    )


@router.get("/totp/setup", response_model=TotpSetupResponse)
def totp_setup(username: str = "", auth: AuthService = Depends(get_auth_service)):
    """Fresh secret for enrollment. Not stored until registration succeeds."""
    secret, uri = auth.totp_setup(username.strip())
    return TotpSetupResponse(secret=secret, provisioning_uri=uri)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, response: Response, auth: AuthService = Depends(get_auth_service)):
    user, auth_session = auth.register(body.username, body.password, body.totp_secret, body.totp_code)
    _set_session_cookie(response, auth_session)
    return UserResponse(username=user.username)


@router.post("/login", response_model=UserResponse)
def login(body: LoginRequest, response: Response, auth: AuthService = Depends(get_auth_service)):
    user, auth_session = auth.login(body.username, body.password, body.totp)
    _set_session_cookie(response, auth_session)
    return UserResponse(username=user.username)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    token: str | None = Depends(get_session_token),
    auth: AuthService = Depends(get_auth_service),
):
    auth.logout(token)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="strict",
    )
    return response


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return UserResponse(username=user.username)
