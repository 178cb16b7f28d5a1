"""
Configuration and settings for the academic chat backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DM_PREVIEW_MAX_LENGTH = 200
INSTITUTION_NAME_MAX_LENGTH = 30
USERNAME_MIN_LENGTH = 3
PASSWORD_MIN_LENGTH = 8


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Realtime fan-out (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None)
    redis_channel_prefix: str = Field(default="academic_chat:realtime:")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias="ACADEMIC_CHAT_USE_IN_MEMORY_BACKENDS",
    )

    # Database and collection identifiers
    database_id: str = Field(default="academic_chat_db")
    users_collection_id: str = Field(default="users")
    institutions_collection_id: str = Field(default="institutions")
    messages_collection_id: str = Field(default="messages")
    groups_collection_id: str = Field(default="groups")
    group_members_collection_id: str = Field(default="group_members")
    dm_threads_collection_id: str = Field(default="dm_threads")
    user_status_collection_id: str = Field(default="user_status")
    accounts_collection_id: str = Field(default="accounts")
    sessions_collection_id: str = Field(default="sessions")

    # Sessions
    session_cookie_name: str = Field(default="academic_chat_session")
    session_ttl_seconds: int = Field(default=7 * 24 * 3600)
    session_cookie_secure: bool = Field(default=False)

    # Query limits
    message_page_limit: int = Field(default=50)
    user_search_limit: int = Field(default=20)
    institution_users_limit: int = Field(default=100)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
