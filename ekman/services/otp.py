"""TOTP secrets, code generation and replay-safe verification (RFC 4226 / RFC 6238)."""

import base64
import binascii
import hmac
import secrets
from urllib.parse import quote, urlencode

import pyotp

from ekman.config import Settings
from ekman.errors import MalformedCode, RandomSourceUnavailable

SECRET_BYTES = 20


def new_secret() -> str:
    """Return 20 fresh random bytes as unpadded base32."""
    try:
        raw = secrets.token_bytes(SECRET_BYTES)
    except (OSError, NotImplementedError) as e:
        raise RandomSourceUnavailable(f"secure random source unavailable: {e}") from e
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def is_valid_secret(secret: str) -> bool:
    """True if ``secret`` is base32 text decoding to exactly SECRET_BYTES bytes."""
    if not secret or secret != secret.upper():
        return False
    padded = secret + "=" * (-len(secret) % 8)
    try:
        return len(base64.b32decode(padded)) == SECRET_BYTES
    except (binascii.Error, ValueError):
        return False


def provisioning_uri(
    secret: str,
    username: str,
    issuer: str,
    period: int = 30,
    digits: int = 6,
) -> str:
    label = f"{quote(issuer, safe='')}:{quote(username, safe='')}"
    params = urlencode(
        {
            "secret": secret,
            "issuer": issuer,
            "algorithm": "SHA1",
            "digits": digits,
            "period": period,
        },
        quote_via=quote,
        safe="",
    )
    return f"otpauth://totp/{label}?{params}"


def time_step(unix_time: float, period: int = 30) -> int:
    return int(unix_time // period)


def hotp(secret: str, counter: int, digits: int = 6) -> str:
    return pyotp.HOTP(secret, digits=digits).at(counter)


def generate_code(secret: str, unix_time: float, period: int = 30, digits: int = 6) -> str:
    """Code for the step containing ``unix_time``, left-zero-padded to ``digits``."""
    return hotp(secret, time_step(unix_time, period), digits)


def is_well_formed(code: str, digits: int = 6) -> bool:
    return len(code) == digits and code.isascii() and code.isdigit()


def _window_offsets(window_steps: int):
    yield 0
    for d in range(1, window_steps + 1):
        yield -d
        yield d


def verify_code(
    secret: str,
    code: str,
    unix_time: float,
    last_accepted_counter: int,
    window_steps: int = 1,
    period: int = 30,
    digits: int = 6,
) -> int | None:
    """Check ``code`` against the steps around ``unix_time``.

    Returns the matched step counter, which the caller must persist as the new
    last accepted counter, or None when nothing in the window matches. Steps at
    or before ``last_accepted_counter`` are never considered, so an accepted
    code cannot be replayed and steps cannot be accepted out of order.

    Raises MalformedCode before any HMAC is computed if ``code`` is not exactly
    ``digits`` ASCII digits.
    """
    if not is_well_formed(code, digits):
        raise MalformedCode()

    current = time_step(unix_time, period)
    for d in _window_offsets(window_steps):
        candidate = current + d
        if candidate <= last_accepted_counter or candidate < 0:
            continue
        if hmac.compare_digest(hotp(secret, candidate, digits), code):
            return candidate
    return None


class OTPVerifier:
    """TOTP parameters bound once, applied to any secret."""

    def __init__(self, period: int = 30, digits: int = 6, window_steps: int = 1):
        if period <= 0:
            raise ValueError("period must be positive")
        if not 1 <= digits <= 10:
            raise ValueError("digits must be between 1 and 10")
        if window_steps < 0:
            raise ValueError("window_steps must not be negative")
        self.period = period
        self.digits = digits
        self.window_steps = window_steps

    @classmethod
    def from_settings(cls, settings: Settings) -> "OTPVerifier":
        return cls(
            period=settings.totp_period,
            digits=settings.totp_digits,
            window_steps=settings.totp_window_steps,
        )

    def generate(self, secret: str, unix_time: float) -> str:
        return generate_code(secret, unix_time, self.period, self.digits)

    def is_well_formed(self, code: str) -> bool:
        return is_well_formed(code, self.digits)

    def verify(
        self, secret: str, code: str, unix_time: float, last_accepted_counter: int
    ) -> int | None:
        return verify_code(
            secret,
            code,
            unix_time,
            last_accepted_counter,
            window_steps=self.window_steps,
            period=self.period,
            digits=self.digits,
        )

    def provisioning_uri(self, secret: str, username: str, issuer: str) -> str:
        return provisioning_uri(secret, username, issuer, self.period, self.digits)
