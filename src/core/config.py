"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Warehouse ────────────────────────────────────────
    postgres_user: str = "analyst"
    postgres_password: str = "analyst_pw"
    postgres_db: str = "warehouse"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    warehouse_url: str = ""  # any SQLAlchemy URL; overrides the Postgres fields

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-haiku-20240307"
    llm_max_tokens: int = 1024

    # ── Pipeline ─────────────────────────────────────────
    sql_max_attempts: int = 3
    sql_row_limit: int = 200
    query_timeout_ms: int = 10_000
    narrative_sample_rows: int = 10

    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.warehouse_url:
            return self.warehouse_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
