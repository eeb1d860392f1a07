"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(_PROJECT_ROOT / ".env")


class Settings(BaseSettings):
    # ── Data store ───────────────────────────────────────
    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'kpi_chatbot.db'}"
    catalog_path: str = str(_PROJECT_ROOT / "semantic_layer" / "metric_catalog.yml")

    # ── Intent classifier (LLM) ──────────────────────────
    llm_provider: str = "mock"  # mock | ollama | openai | anthropic | none
    llm_api_url: str = "http://localhost:11434/api/chat"
    llm_model: str = "deepseek-r1:32b"
    llm_timeout_seconds: float = 3.0
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # ── Conversations ────────────────────────────────────
    session_ttl_seconds: float = 3600
    max_sessions: int = 1000

    # ── App ──────────────────────────────────────────────
    api_port: int = 3000
    streamlit_port: int = 8501
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
