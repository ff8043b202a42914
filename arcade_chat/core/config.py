"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

import uuid
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Arcade Chat Moderation API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./arcade_chat.db"
    DATABASE_ECHO: bool = False

    # Redis / realtime fan-out
    REDIS_URL: str = "redis://localhost:6379/0"
    # REALTIME_BACKEND: redis (multi-worker) or local (single process)
    REALTIME_BACKEND: str = "redis"
    REALTIME_RECONNECT_INITIAL_DELAY: float = 1.0
    REALTIME_RECONNECT_MAX_DELAY: float = 30.0
    REALTIME_RECONNECT_BACKOFF: float = 2.0

    # CORS
    CORS_ORIGINS: list[str] = []

    # OpenAI-compatible moderation oracle
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_MAX_TOKENS: int = 300
    OPENAI_TEMPERATURE: float = 0.0

    # Automod gate
    AUTOMOD_ENABLED: bool = True
    AUTOMOD_TIMEOUT_SECONDS: float = 5.0
    AUTOMOD_HOLD_GLOBAL_MESSAGES: bool = False
    AUTOMOD_SCRUB_CONTENT: bool = True
    AUTOMOD_REDACTED_CONTENT: str = "[removed by automod]"

    # Repeat offender escalation
    AUTOMOD_ESCALATION_ENABLED: bool = True
    AUTOMOD_ESCALATION_THRESHOLD: int = 3
    AUTOMOD_ESCALATION_WINDOW_MINUTES: int = 60 * 24
    AUTOMOD_ESCALATION_BASE_MINUTES: int = 5
    AUTOMOD_ESCALATION_MAX_MINUTES: int = 60 * 24 * 7

    # Moderator identity used for automated log entries
    SYSTEM_MODERATOR_ID: uuid.UUID = uuid.UUID(int=0)

    # Chat
    MESSAGE_MAX_LENGTH: int = 500
    CHAT_PAGE_SIZE: int = 100

    # Tracing
    OTLP_ENDPOINT: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
