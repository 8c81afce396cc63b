"""Database models."""

from ekman.models.user import User
from ekman.models.session import AuthSession
from ekman.models.enrollment import IssuedSecret

__all__ = [
    "User",
    "AuthSession",
    "IssuedSecret",
]
