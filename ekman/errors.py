"""Authentication error taxonomy.

Every failure the auth core surfaces is one of these. ``detail`` is the only
text that reaches the client, so it stays generic: a rejected login never says
which factor failed and an expired session looks like an unknown one.
"""


class AuthError(Exception):
    status_code: int = 400
    detail: str = "Bad request"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.detail)


class InvalidCredentials(AuthError):
    status_code = 401
    detail = "Invalid credentials"


class MalformedCode(InvalidCredentials):
    """Submitted code has the wrong length or non-digit characters."""


class UsernameTaken(AuthError):
    status_code = 409
    detail = "Username taken"


class Unauthenticated(AuthError):
    status_code = 401
    detail = "Not authenticated"


class SessionInvalid(Unauthenticated):
    """Token is missing, malformed, revoked or was never issued."""


class SessionExpired(Unauthenticated):
    """Token is known but past its expiry."""


class RandomSourceUnavailable(AuthError):
    status_code = 500
    detail = "Internal server error"
