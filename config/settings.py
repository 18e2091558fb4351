"""
Application settings and configuration.
"""
# ================================================
# Application Settings
# ================================================
from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Literal, Optional


# ================================================
# Settings Class
# ================================================
class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"  # Ignore extra fields not defined in the model
    )

    # Persistence
    PERSISTENCE_BACKEND: Literal["memory", "mongo"] = "memory"
    DB_CONNECTION_STRING: str = "mongodb://localhost:27017"
    DB_NAME: str = "chat-store-dev"
    STORE_KEY: str = "chat-store"

    # Groq
    GROQ_API_KEY: Optional[str] = None

    # Logfire
    LOGFIRE_AUTH_TOKEN: Optional[str] = None

    # Model defaults applied to fresh masks
    DEFAULT_MODEL: str = "openai/gpt-oss-120b"
    DEFAULT_TEMPERATURE: float = 0.5
    DEFAULT_MAX_TOKENS: int = 4000
    DEFAULT_HISTORY_MESSAGE_COUNT: int = 4
    DEFAULT_COMPRESS_MESSAGE_LENGTH_THRESHOLD: int = 1000
    DEFAULT_SEND_MEMORY: bool = True

    # Session behaviour
    SUMMARIZE_MIN_LENGTH: int = 50
    UNDO_DELETE_SECONDS: float = 5.0

    # Retrieval
    RETRIEVAL_TOP_K: int = 5

    # CORS
    ALLOWED_ORIGINS: list[str] = ["*"]

# ================================================
# Settings Instance
# ================================================
settings = Settings()
