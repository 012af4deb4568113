"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "task-orchestrator"
    app_env: str = "dev"
    log_level: str = "INFO"
    storage_backend: str = "postgres"
    database_url: str = ""
    planner_mode: str = "llm"
    max_concurrent_tasks: int = Field(default=4, ge=1)
    sandbox_root: str = str(PROJECT_ROOT / "workspace")
    shell_timeout_s: float = Field(default=30.0, ge=0.1)
    code_timeout_s: float = Field(default=30.0, ge=0.1)
    browser_timeout_s: float = Field(default=15.0, ge=0.1)
    browser_headless: bool = True
    search_url_template: str = "https://html.duckduckgo.com/html/?q={query}"
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=30.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.2, ge=0.0)
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    llm_max_tokens: int = Field(default=2000, ge=1)
    openai_api_key: str = ""

    model_config = SettingsConfigDict(
        env_prefix="TASK_ORCHESTRATOR_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("ORCHESTRATOR_DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
