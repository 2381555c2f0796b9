"""
Pydantic Settings configuration for Content Relay.

Loads configuration from environment variables. Socket specs follow the
forms accepted by the analysis engine (``unix:/path`` or ``inet:host:port``)
and by libmilter for the MTA-facing socket.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Analysis engine endpoint: "/path", "unix:/path" or "inet:host:port"
    engine_socket: str = Field(
        "/var/lib/amavis/amavisd.sock",
        pattern=r"^((unix:|local:)?/\S+|inet:[a-zA-Z0-9.-]+:[0-9]{1,5})$",
    )
    # Socket timeout applied to every engine connect/read/write
    engine_timeout: int = Field(600, ge=1, le=3600)

    # Spool settings
    work_dir: str = Field("/var/lib/amavis/tmp")
    # Only [a-zA-Z0-9_-] so the directory name stays a single path component
    work_dir_prefix: str = Field("af", pattern=r"^[a-zA-Z0-9_-]+$")

    # MTA-facing milter socket, libmilter syntax (unix:/path, inet:port@host)
    milter_socket: str = Field("unix:/var/run/amavis/content-relay.sock")
    milter_name: str = Field("content-relay", pattern=r"^[a-zA-Z0-9_.-]+$")
    milter_timeout: int = Field(600, ge=1, le=3600)

    # Logging settings
    log_format: str = Field("console", pattern=r"^(console|json)$")
    debug: bool = Field(False)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure only one Settings instance is created,
    avoiding repeated environment variable parsing.
    """
    return Settings()
