"""Application settings loaded from environment variables."""

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Zaya configuration. All values come from environment variables."""

    # Completion service
    completion_provider: Literal["openai", "mistral", "anthropic"] = Field(default="openai")
    completion_base_url: str = Field(default="")
    completion_api_key: str = Field(default="")
    completion_model: str = Field(default="gpt-4o-mini")
    completion_alt_model: str = Field(default="")
    request_timeout_seconds: float = Field(default=120.0)

    # Generation
    context_size: int = Field(default=8192)
    max_reply_tokens: int = Field(default=512)
    temperature: float = Field(default=0.8)
    top_k: int = Field(default=40)
    repetition_penalty: float = Field(default=1.1)
    stop_sequences: str = Field(default="")

    # Sessions
    memory_duration_seconds: int = Field(default=60 * 60)
    session_ttl_seconds: int = Field(default=7 * 24 * 60 * 60)
    default_prompt: str = Field(default="You are Zaya, a friendly and witty chat companion.")
    default_max_history: int = Field(default=20)
    welcome_message: str = Field(default="Introduce yourself.")

    # Database
    database_path: Path = Field(default=Path("data/zaya.db"))

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_stop_sequences(self) -> list[str]:
        """Parse STOP_SEQUENCES into a list of stop strings."""
        if not self.stop_sequences.strip():
            return []
        return [s.strip() for s in self.stop_sequences.split(",") if s.strip()]

    @property
    def max_context_cost(self) -> int:
        """Context budget left for history once a full reply is reserved."""
        return max(self.context_size - self.max_reply_tokens, 0)


settings = Settings()
