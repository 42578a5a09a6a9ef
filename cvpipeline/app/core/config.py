"""
Application configuration settings.
Loads from .env file first (overrides shell env for local dev), then pydantic reads from environment.
Production: set env vars in the platform (Docker, K8s, etc.); .env is optional.

All pipeline, queue and provider configs are centralized here.
"""
from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env path: cvpipeline/.env (absolute path, works regardless of cwd)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = (_BASE_DIR / ".env").resolve()

# Load .env into environment BEFORE pydantic reads. override=True ensures .env
# values override any shell env. When .env doesn't exist (prod), this is a no-op.
if _ENV_FILE.exists():
    load_dotenv(_ENV_FILE, override=True)


class Settings(BaseSettings):
    """Application settings. Source: env vars (after dotenv load)."""

    # App
    app_name: str = "CV Pipeline"
    app_version: str = "1.0.0"
    port: int = 8001

    # Database
    database_url: str = "sqlite:///./cvpipeline.db"

    # LLM provider
    openai_api_key: str = ""
    openai_base_url: str = ""
    llm_model_chain: str = "gpt-4o-mini,gpt-4o"
    llm_temperature: float = 0.1
    llm_timeout_seconds: int = 60
    llm_max_retries: int = 3
    llm_retry_base_delay: float = 1.0

    # Extraction
    max_input_chars: int = 25_000
    basic_info_prompt_chars: int = 3_000
    session_preview_chars: int = 500
    session_ttl_minutes: int = 120
    session_cleanup_delay_seconds: float = 5.0

    # Queue
    queue_worker_enabled: bool = True
    queue_poll_interval_seconds: float = 2.0
    queue_minutes_per_job: int = 2
    queue_cleanup_interval_seconds: float = 60.0
    job_retention_hours: int = 24
    queue_stats_window_hours: int = 24
    user_jobs_limit: int = 10

    # Uploads
    upload_max_bytes: int = 10 * 1024 * 1024

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE) if _ENV_FILE.exists() else ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_model_chain(self) -> list[str]:
        """Parse the model fallback chain from comma-separated string"""
        return [m.strip() for m in self.llm_model_chain.split(",") if m.strip()]


settings = Settings()


# --- Constants (non-env, business config) ---

PROCESSOR_VERSION: str = "3-phase-session-memory"

# Upload types the text source accepts
SUPPORTED_UPLOAD_TYPES: dict[str, str] = {
    "application/pdf": "pdf",
    "text/plain": "txt",
}

# Worker error mapping: user-facing messages for infrastructure failures
MSG_PROVIDER_UNAVAILABLE: str = "The AI service is temporarily unavailable. Please try again later."
MSG_TIMEOUT: str = "Processing timed out. The document may be too complex or the service is busy."
MSG_QUOTA: str = "Service usage limit reached. Please try again tomorrow."
MSG_INTERRUPTED: str = "Processing was interrupted by a service restart."
