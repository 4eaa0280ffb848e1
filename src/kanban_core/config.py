"""Application settings loaded from the environment."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration. Every field can be overridden with a KANBAN_* variable."""

    model_config = SettingsConfigDict(env_prefix="KANBAN_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./kanban.db"
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    # API keys
    api_key_prefix: str = "sk_"
    api_key_length: int = 32

    # Human sessions are established upstream; the proxy forwards the identity in headers
    session_header_enabled: bool = True
    session_user_header: str = "X-Authenticated-User"
    session_email_header: str = "X-Authenticated-Email"
    session_name_header: str = "X-Authenticated-Name"
    session_image_header: str = "X-Authenticated-Image"

    # Listing
    default_list_limit: int = 50
    max_list_limit: int = 200

    # Hierarchy
    order_increment: float = 1024.0
    max_tree_depth: int = 1000
    log_cascaded_deletes: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()
