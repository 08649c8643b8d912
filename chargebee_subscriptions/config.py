from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedirectConfig(BaseModel):
    success: str
    cancelled: str


class SubscriberConfig(BaseModel):
    """Per-subscriber configuration: where the hosted checkout sends the customer back to."""

    redirect: RedirectConfig

    @classmethod
    def coerce(cls, value: "SubscriberConfig | Mapping[str, Any] | None") -> "SubscriberConfig | None":
        if value is None or isinstance(value, cls):
            return value
        return cls.model_validate(value)


class Settings(BaseSettings):
    """Application settings loaded from environment variables with validation."""

    model_config = SettingsConfigDict(
        env_file=(str(Path(__file__).resolve().parents[1] / ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    app_env: str = Field(
        default="production",
        alias="APP_ENV",
    )

    chargebee_site: str = Field(default="", alias="CHARGEBEE_SITE")
    chargebee_key: SecretStr = Field(default=SecretStr(""), alias="CHARGEBEE_KEY")
    chargebee_gateway: str | None = Field(default=None, alias="CHARGEBEE_GATEWAY")
    chargebee_timeout: float = Field(default=30.0, gt=0, le=300, alias="CHARGEBEE_TIMEOUT")

    redirect_success: str | None = Field(default=None, alias="CHARGEBEE_REDIRECT_SUCCESS")
    redirect_cancelled: str | None = Field(default=None, alias="CHARGEBEE_REDIRECT_CANCELLED")

    database_url: str = Field(default="sqlite:///./subscriptions.db", alias="DATABASE_URL")

    @field_validator("chargebee_site")
    @classmethod
    def normalize_site(cls, value: str) -> str:
        """Accept either the bare site name or its full hostname."""
        normalized = value.strip()
        if normalized.endswith(".chargebee.com"):
            normalized = normalized[: -len(".chargebee.com")]
        if "/" in normalized:
            raise ValueError("CHARGEBEE_SITE must be a site name, not a URL.")
        return normalized

    @property
    def is_testing(self) -> bool:
        return self.app_env in ("testing", "test")

    def subscriber_config(self) -> SubscriberConfig | None:
        """Default redirect configuration, or None when running tests or nothing is set."""
        if self.is_testing:
            return None
        if not self.redirect_success or not self.redirect_cancelled:
            return None
        return SubscriberConfig(
            redirect=RedirectConfig(success=self.redirect_success, cancelled=self.redirect_cancelled)
        )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()


settings: Settings = get_settings()
