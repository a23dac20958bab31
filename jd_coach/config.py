"""
Copilot configuration (pydantic-settings), read from the environment or .env.

Only the service factory and the API read these; components take their
numbers as constructor arguments.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "JD Fit Copilot"
    debug: bool = False

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "anthropic"  # "anthropic" | "groq"
    anthropic_api_key: str = ""
    groq_api_key: str = ""
    llm_model: str = "claude-3-opus-20240229"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 800
    reasoning_timeout_seconds: float = 15.0
    plan_timeout_seconds: float = 45.0

    # ── Evidence / reasoning ─────────────────────────────
    match_top_n: int = 5
    evidence_buffer_size: int = 6
    guidance_cooldown_seconds: float = 180.0
    batch_window_seconds: float = 5.0
    context_window: int = 20
    max_jd_chars: int = 50_000

    # ── Persistence ──────────────────────────────────────
    persistence_backend: str = "file"  # "file" | "mongo"
    data_root: str = "./JobData"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "jd_coach"
    persist_debounce_seconds: float = 1.0

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @property
    def llm_api_key(self) -> str:
        """API key for the configured provider (empty when unset)."""
        if self.llm_provider == "groq":
            return self.groq_api_key
        return self.anthropic_api_key


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
