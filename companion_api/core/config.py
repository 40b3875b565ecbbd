from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_BACKEND_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _BACKEND_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = True  # asyncpg only

    # JWT (tokens are issued by the auth service; we only verify them)
    secret_key: str
    access_token_expire_minutes: int = 15
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Booking business rules
    min_booking_hours: float = 1
    max_booking_hours: float = 12
    default_hourly_rate: float = 35.0
    booking_request_expiry_hours: int = Field(default=48, ge=24, le=48)
    max_calendar_range_days: int = 93
    auto_complete_bookings: bool = True
    # Request expiry / booking completion / rate-limit purge
    sweep_interval_seconds: int = 60 * 60

    # Rate limiting for companion (provider) endpoints
    companion_rate_limit_max_requests: int = 10
    companion_rate_limit_window_seconds: int = 60

    # Env
    env: str = "development"

    # Email (SMTP). Leave smtp_host empty to disable sending.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str = "Companion Booking"
    site_name: str = "Companion Booking"
    frontend_url: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.from_email)


settings = Settings()
