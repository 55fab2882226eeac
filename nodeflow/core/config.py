"""Engine configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimitSettings(BaseModel):
    """Call budget for one node type: at most `max_calls` per `period` seconds."""

    max_calls: int
    period: float = 1.0


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="NODEFLOW_",
    )

    log_level: Literal["debug", "info", "warning", "error"] = "info"

    app_name: str = "nodeflow"
    app_version: str = "0.1.0"

    # Execution settings
    max_concurrency: int = 10
    default_node_timeout: float | None = None
    default_retry_delay: int = 1000
    max_execution_records: int = 100

    # Node settings
    http_timeout: float = 30.0
    wait_max_seconds: float = 300.0
    allow_env_access: bool = True

    # OpenAI chat node, used when a node sets no apiKey / baseUrl of its own
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_timeout: float = 120.0

    # Per node-type overrides, e.g. NODEFLOW_RATE_LIMITS='{"HttpRequest": {"max_calls": 5}}'
    rate_limits: dict[str, RateLimitSettings] = {}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
