"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./tipgen.db"

    # ═══════════════════════════════════════════════════════════════
    # Ollama LLM backend
    # ═══════════════════════════════════════════════════════════════
    OLLAMA_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.1:8b-instruct-q5_0"
    OLLAMA_TIMEOUT_SECONDS: float = 120.0  # Single request incl. generation
    OLLAMA_HEALTH_TIMEOUT_SECONDS: float = 5.0
    OLLAMA_MAX_RETRIES: int = 3  # Total attempts, not extra attempts
    OLLAMA_RETRY_BASE_DELAY_SECONDS: float = 1.0  # base * 2^(attempt-1)

    # Sampling options sent as Ollama "options"
    OLLAMA_TEMPERATURE: float = 0.3  # Low for more deterministic JSON
    OLLAMA_TOP_P: float = 0.9
    OLLAMA_TOP_K: int = 40
    OLLAMA_MAX_OUTPUT_TOKENS: int = 2000  # num_predict
    OLLAMA_REPEAT_PENALTY: float = 1.1

    # ═══════════════════════════════════════════════════════════════
    # AI tip generation
    # ═══════════════════════════════════════════════════════════════
    AI_PROMPT_VERSION: str = "v1.0"
    AI_TIP_GENERATION_CRON_ENABLED: bool = False
    AI_TIP_VERIFY_MODEL_ON_START: bool = True

    # Context token budget (approximation: 1 token ~ 4 chars)
    CONTEXT_MAX_TOKENS: int = 2000
    CONTEXT_SYSTEM_TOKEN_BUDGET: int = 300
    CONTEXT_HISTORICAL_TOKEN_BUDGET: int = 1200
    CONTEXT_INSTRUCTIONS_TOKEN_BUDGET: int = 200

    TIP_MAX_SELECTIONS: int = 50

    # Observability
    SENTRY_DSN: str = ""
    SENTRY_ENV: str = "production"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def context_available_tokens(self) -> int:
        """Tokens left for match context after system prompt and instructions."""
        return (
            self.CONTEXT_MAX_TOKENS
            - self.CONTEXT_SYSTEM_TOKEN_BUDGET
            - self.CONTEXT_INSTRUCTIONS_TOKEN_BUDGET
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
