"""Configuration settings for brand-visibility batch runs."""

from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_RATE_LIMITS: dict[str, dict[str, int]] = {
    "openai": {"inter_call_delay_ms": 1000, "max_retries": 3},
    "perplexity": {"inter_call_delay_ms": 1000, "max_retries": 3},
    "google": {"inter_call_delay_ms": 2500, "max_retries": 5},
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "brandprobe"
    db_user: str = "brandprobe"
    db_password: str = "brandprobe"
    database_url_override: str | None = None

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_progress_enabled: bool = False

    # Credentials
    encryption_secret: str = "change-me"

    # Rate limiting / retries (milliseconds)
    rate_limits: dict[str, dict[str, int]] = DEFAULT_RATE_LIMITS
    default_inter_call_delay_ms: int = 1000
    default_max_retries: int = 3
    retry_base_delay_ms: int = 5000
    retry_max_delay_ms: int = 120_000
    retry_jitter_ratio: float = 0.2
    failure_recovery_delay_ms: int = 500

    # ETA
    assumed_call_latency_ms: int = 3000
    eta_min_samples: int = 5

    # Timeouts (seconds)
    session_timeout_seconds: float = 1800  # 30 minutes
    engine_timeout_seconds: float = 120
    progress_retention_seconds: float = 60

    # Provider endpoints
    openai_api_url: str = "https://api.openai.com/v1/chat/completions"
    openai_model: str = "gpt-4o"
    perplexity_api_url: str = "https://api.perplexity.ai/chat/completions"
    perplexity_model: str = "sonar-pro"
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    gemini_model: str = "gemini-2.5-flash"

    # Post-response analysis
    analysis_enabled: bool = True
    analysis_api_url: str = "https://api.openai.com/v1/chat/completions"
    analysis_api_key: str | None = None
    analysis_model: str = "gpt-4o-mini"
    analysis_timeout_seconds: float = 60

    # Notifications
    notification_url: str | None = None
    notification_token: str | None = None

    @field_validator("rate_limits")
    @classmethod
    def _merge_rate_limits(cls, value: dict[str, dict[str, int]]) -> dict[str, dict[str, int]]:
        """Overrides are layered over the defaults, per provider and per key."""
        merged = {provider: dict(limits) for provider, limits in DEFAULT_RATE_LIMITS.items()}
        for provider, limits in value.items():
            merged.setdefault(provider, {}).update(limits)
        return merged

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    def rate_limit_for(self, provider: str) -> dict[str, Any]:
        limits = self.rate_limits.get(provider, {})
        return {
            "inter_call_delay_ms": int(
                limits.get("inter_call_delay_ms", self.default_inter_call_delay_ms)
            ),
            "max_retries": int(limits.get("max_retries", self.default_max_retries)),
        }

    class Config:
        env_prefix = "BRANDPROBE_"
        env_file = ".env"


# Global settings instance
settings = Settings()
