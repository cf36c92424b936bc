"""Settings (pydantic-settings, loaded from env vars)."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # --- Primary (OpenRouter) ---
    OPENROUTER_API_KEY: str = ""
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    PRIMARY_MODEL: str = "openai/gpt-4o-2024-08-06"
    PRIMARY_TIMEOUT_SECONDS: float = 5.0
    PRIMARY_REQUEST_TIMEOUT_SECONDS: float = 30.0

    # --- Secondary (Anthropic) ---
    ANTHROPIC_API_KEY: str = ""
    SECONDARY_MODEL: str = "claude-haiku-4-5-20251001"
    SECONDARY_TIMEOUT_SECONDS: float = 30.0

    # --- Completion defaults ---
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 4096
    MAX_REPAIR_ATTEMPTS: int = 2

    # --- Rate Limiter ---
    RATE_LIMIT_CONCURRENCY: int = 5
    RATE_LIMIT_MAX_RETRIES: int = 3
    RATE_LIMIT_INITIAL_BACKOFF_SECONDS: float = 1.0

    # --- Map-Reduce ---
    MAX_SUMMARY_WORDS: int = 200
    AGGREGATION_CHUNK_SIZE: int = 5

    model_config = {"env_prefix": "", "case_sensitive": True}
