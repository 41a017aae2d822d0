"""
Application Configuration

Centralized settings management using Pydantic BaseSettings.
All values are loaded from environment variables or .env file.
"""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    Required env vars (no defaults):
        POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_HOST, POSTGRES_DB

    Optional env vars:
        POSTGRES_PORT (5432), AI_PROVIDER (ollama), OLLAMA_BASE_URL,
        OPENAI_API_KEY, EMBEDDING_DIMENSION (768), LOG_LEVEL (INFO)
    """

    PROJECT_NAME: str = "Cortex"

    # Database
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str
    CREATE_TABLES: bool = True

    # AI backend
    AI_PROVIDER: Literal["ollama", "openai"] = "ollama"
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_CHAT_MODEL: str = "qwen3:8b"
    OLLAMA_EMBED_MODEL: str = "nomic-embed-text"
    OPENAI_API_KEY: str = ""
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBED_MODEL: str = "text-embedding-3-small"
    AI_HEALTH_TIMEOUT: float = 3.0
    AI_TIMEOUT: float = 120.0  # Upper bound for any generation call

    # Vector index
    EMBEDDING_DIMENSION: int = 768  # nomic-embed-text output size

    # Retrieval
    CHAT_TOP_K: int = 5
    SEARCH_TOP_K: int = 10
    CONTEXT_CHAR_LIMIT: int = 1000

    # Enrichment
    RESUME_PENDING_ON_STARTUP: bool = True
    EMBED_CHAR_LIMIT: int = 2000

    # Logging
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",  # Silently ignore unknown env vars
    )

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL connection string using asyncpg driver."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()  # type: ignore[call-arg]
