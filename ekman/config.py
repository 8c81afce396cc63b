"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///ekman.db"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]  # Vite dev server

    # TOTP
    totp_issuer: str = "ekman"
    totp_period: int = 30
    totp_digits: int = 6
    totp_window_steps: int = 1  # adjacent steps accepted on each side
    totp_enrollment_ttl_minutes: int = 10  # how long an issued secret can be enrolled

    # Sessions
    session_ttl_minutes: int = 1440  # 24 hours
    session_sliding: bool = False
    session_cookie_name: str = "ekman_session"
    session_cookie_secure: bool = True  # disable only for plain-http local dev

    model_config = {"env_prefix": "EKMAN_", "env_file": ".env"}


settings = Settings()
