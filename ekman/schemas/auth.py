"""Pydantic schemas for the auth API."""

from pydantic import BaseModel, Field, field_validator


class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)
    totp_secret: str = Field(min_length=1)
    totp_code: str = Field(min_length=1)

    @field_validator("username")
    @classmethod
    def _trim_username(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must not be empty")
        return text

    @field_validator("totp_secret", "totp_code")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class LoginRequest(BaseModel):
    username: str
    password: str
    totp: str

    @field_validator("username")
    @classmethod
    def _trim_username(cls, value: str) -> str:
        return value.strip()

    @field_validator("totp")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        return value.strip()


class TotpSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str


class UserResponse(BaseModel):
    username: str
