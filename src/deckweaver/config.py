"""Application configuration.

Configuration is loaded from environment variables. For local development, you can provide a
`.env` file and set `DECKWEAVER_ENV_FILE` to point to it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CostRate(BaseModel):
    """USD per 1M tokens for one model."""

    input: float
    output: float
    cache_read: float | None = None
    cache_write: float | None = None


def _default_cost_rates() -> dict[str, CostRate]:
    return {
        "gpt-4o": CostRate(input=2.5, output=10.0, cache_read=1.25),
        "gpt-4o-mini": CostRate(input=0.15, output=0.6, cache_read=0.075),
        "claude-sonnet-4-6": CostRate(input=3.0, output=15.0, cache_read=0.3, cache_write=3.75),
    }


class Settings(BaseSettings):
    """DeckWeaver settings.

    All fields are environment-configurable. Prefix is `DECKWEAVER_`.
    """

    model_config = SettingsConfigDict(
        env_prefix="DECKWEAVER_",
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    app_env: Literal["dev", "prod"] = Field(default="dev")
    log_level: str = Field(default="INFO")

    # LLM
    openai_api_key: str | None = Field(default=None)
    # Secondary credential, used only after the primary has exhausted its retries
    openai_api_key_fallback: str | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    openai_model: str = Field(default="gpt-4o")
    openai_timeout_s: float = Field(default=300.0, ge=1.0, le=3600.0)

    # Retry policy: delay = min(2^attempt * base + uniform(0, jitter), cap)
    llm_max_retries: int = Field(default=5, ge=1, le=20)
    llm_retry_base_s: float = Field(default=1.0, ge=0.0, le=60.0)
    llm_retry_jitter_s: float = Field(default=1.0, ge=0.0, le=60.0)
    llm_retry_cap_s: float = Field(default=32.0, ge=0.0, le=600.0)

    # Planner
    planner_max_tokens: int = Field(default=16384, ge=256, le=128000)
    planner_temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_revisions: int = Field(default=5, ge=0, le=50)
    max_input_tokens: int = Field(default=180000, ge=1000)

    # Producer
    producer_batch_size: int = Field(default=12, ge=1, le=40)
    # 1 means strictly sequential batch issuance
    producer_max_concurrency: int = Field(default=3, ge=1, le=12)
    producer_max_tokens_cap: int = Field(default=64000, ge=1000, le=128000)

    # Usage accounting
    cost_rates: dict[str, CostRate] = Field(default_factory=_default_cost_rates)

    # Artifacts
    artifacts_dir: Path = Field(default=Path("artifacts"))

    def credentials(self) -> list[str]:
        """Configured API keys, primary first."""

        return [k for k in (self.openai_api_key, self.openai_api_key_fallback) if k]


def load_settings() -> Settings:
    """Load settings from env.

    Returns:
        Settings: Parsed settings.
    """

    env_file_override = os.getenv("DECKWEAVER_ENV_FILE")
    if env_file_override:
        env_path = Path(env_file_override)
        return Settings(_env_file=env_path)

    default_env = Path.cwd() / ".env"
    if default_env.exists():
        return Settings(_env_file=default_env)

    return Settings()
