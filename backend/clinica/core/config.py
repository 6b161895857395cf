"""Application settings read from the environment (and an optional ``.env``)."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Settings that must be non-empty before the API may serve requests.
REQUIRED_SECRETS = ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY")


class Settings(BaseSettings):
    """Store credentials, resilience knobs and onboarding limits."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Store
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")
    SUPABASE_SERVICE_ROLE_KEY: SecretStr = SecretStr("")
    SUPABASE_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # Store circuit breaker
    SUPABASE_FAILURE_THRESHOLD: int = Field(default=5, ge=1)
    SUPABASE_RECOVERY_TIMEOUT: float = Field(default=30.0, gt=0)

    APP_ENV: Literal["development", "staging", "production"] = "development"
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Wizard snapshots older than this are discarded on restore
    ONBOARDING_SNAPSHOT_MAX_AGE_HOURS: int = Field(default=24, ge=1)
    INTEGRITY_BATCH_MAX_USERS: int = Field(default=100, ge=1)

    @field_validator("SUPABASE_URL")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Require an http(s) URL and drop any trailing slash."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("SUPABASE_URL must start with http:// or https://")
        return v.rstrip("/")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def missing_secrets(self) -> list[str]:
        """Names of required settings that are empty."""
        values = {
            "SUPABASE_URL": self.SUPABASE_URL,
            "SUPABASE_SERVICE_ROLE_KEY": self.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
        }
        return [name for name in REQUIRED_SECRETS if not values[name]]

    @property
    def is_configured(self) -> bool:
        return not self.missing_secrets

    def validate_startup(self) -> None:
        """Raise ValueError naming every required setting that is empty."""
        missing = self.missing_secrets
        if missing:
            raise ValueError(f"Required secrets are missing or empty: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    """Validated settings, built once per process.

    Raises:
        ValueError: If a required secret is missing.
    """
    settings = Settings()
    settings.validate_startup()
    return settings


# Not validated at import; the application lifespan calls get_settings().
settings = Settings()
