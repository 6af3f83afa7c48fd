"""
Configuration settings for the application.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # FastAPI settings
    API_PREFIX: str = "/api"
    DEBUG: bool = False
    APP_ENV: str = "development"

    # CORS settings
    CORS_ORIGINS: List[str] = ["*"]

    # Frontend URL for redirects
    FRONTEND_URL: str = "http://localhost:3000"

    # LLM settings
    GOOGLE_API_KEY: Optional[str] = None
    LLM_MODEL: str = "gemini-1.5-flash"
    LLM_TEMPERATURE: float = 0.2

    # Supabase settings
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None
    SUPABASE_JWT_SECRET: Optional[str] = None

    # "memory" keeps everything in process, "supabase" persists to Postgres
    STORAGE_BACKEND: str = "memory"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "logs/copilot.log"

    # Orchestrator turn policy
    MAX_TOOL_STEPS: int = 8
    MAX_REPAIR_ATTEMPTS: int = 2
    CONTEXT_WINDOW_MESSAGES: int = 20
    RAG_ENABLED: bool = True
    RAG_MAX_RESULTS: int = 5

    # Task step retry settings
    TASK_RETRY_ATTEMPTS: int = 3
    TASK_RETRY_MULTIPLIER: float = 1
    TASK_RETRY_MIN_WAIT: float = 1  # seconds
    TASK_RETRY_MAX_WAIT: float = 10  # seconds

    # Conversation listing
    CONVERSATION_PAGE_SIZE: int = 30

    @field_validator("DEBUG", "RAG_ENABLED", mode="before")
    def parse_boolean(cls, v: Any) -> bool:
        """Parse boolean values, handling comments in env file."""
        if isinstance(v, str):
            # Remove comments and whitespace
            clean_value = v.split('#')[0].strip().lower()
            if clean_value in ('true', '1', 'yes', 'y'):
                return True
            elif clean_value in ('false', '0', 'no', 'n', ''):
                return False
        return bool(v)

    @field_validator("CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: str | List[str]) -> List[str]:
        """Parse CORS origins from string or list."""
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, list):
            return v
        raise ValueError(v)

    @field_validator("STORAGE_BACKEND")
    def check_storage_backend(cls, v: str) -> str:
        if v not in ("memory", "supabase"):
            raise ValueError(f"Unsupported storage backend: {v}")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


class RetryPolicy(BaseModel):
    """Bounded exponential backoff for transient capability failures."""
    attempts: int = 3
    multiplier: float = 1
    min_wait: float = 1
    max_wait: float = 10

    @classmethod
    def from_settings(cls, s: Settings) -> "RetryPolicy":
        return cls(
            attempts=s.TASK_RETRY_ATTEMPTS,
            multiplier=s.TASK_RETRY_MULTIPLIER,
            min_wait=s.TASK_RETRY_MIN_WAIT,
            max_wait=s.TASK_RETRY_MAX_WAIT,
        )


class TurnPolicy(BaseModel):
    """Limits applied to a single conversational turn."""
    max_tool_steps: int = 8
    max_repair_attempts: int = 2
    context_window: int = 20
    rag_enabled: bool = True
    rag_max_results: int = 5

    @classmethod
    def from_settings(cls, s: Settings) -> "TurnPolicy":
        return cls(
            max_tool_steps=s.MAX_TOOL_STEPS,
            max_repair_attempts=s.MAX_REPAIR_ATTEMPTS,
            context_window=s.CONTEXT_WINDOW_MESSAGES,
            rag_enabled=s.RAG_ENABLED,
            rag_max_results=s.RAG_MAX_RESULTS,
        )


# Create settings instance
settings = Settings()
