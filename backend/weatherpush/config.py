from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./local.db"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Web Push (VAPID). Generate keys with: python -m weatherpush.scripts.generate_vapid_keys
    # Leave empty to disable outbound delivery (subscribe/unsubscribe still work).
    VAPID_PRIVATE_KEY: str = ""
    VAPID_PUBLIC_KEY: str = ""
    VAPID_SUBJECT: str = "mailto:admin@localhost"
    VAPID_TOKEN_LIFETIME: int = 43_200  # seconds; push services reject anything over 24h

    # Delivery
    PUSH_TTL: int = 43_200  # seconds the push service keeps an undelivered message
    PUSH_URGENCY: Literal["very-low", "low", "normal", "high"] = "high"
    PUSH_TIMEOUT: float = 10.0  # per request
    PUSH_MAX_CONCURRENCY: int = 10
    PUSH_BROADCAST_DEADLINE: float = 60.0  # whole broadcast
    PUSH_FAILURE_CEILING: int = 5  # consecutive transient failures before a subscription is dropped
    PUSH_PAYLOAD_FORMAT: Literal["text", "json"] = "text"
    PUSH_SEND_WELCOME: bool = True

    # Daily summary trigger
    SUMMARY_ENABLED: bool = False
    SUMMARY_HOUR: int = 7
    SUMMARY_TIMEZONE: str = "Europe/Helsinki"

    model_config = {"env_file": ".env"}

    @field_validator("VAPID_TOKEN_LIFETIME")
    @classmethod
    def _lifetime_within_a_day(cls, v: int) -> int:
        if not 0 < v <= 86_400:
            raise ValueError("VAPID_TOKEN_LIFETIME must be between 1 and 86400 seconds")
        return v

    @field_validator("SUMMARY_HOUR")
    @classmethod
    def _valid_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("SUMMARY_HOUR must be a number 0-23")
        return v

    @field_validator("PUSH_MAX_CONCURRENCY", "PUSH_FAILURE_CEILING")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def push_enabled(self) -> bool:
        return bool(self.VAPID_PRIVATE_KEY)


settings = Settings()
