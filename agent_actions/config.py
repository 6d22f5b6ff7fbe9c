"""Settings for the action synchronizer.

Values come from environment variables (or a local ``.env`` file) matched
case-insensitively against the field names, e.g. ``ALLOWED_DOMAINS`` or
``CASCADE_MAX_WORKERS``. The encryption key and database credentials are
masked whenever settings are logged.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

MASK = "***MASKED***"


class Settings(BaseSettings):
    """Runtime configuration.

    ``allowed_domains`` is read as a JSON list from the environment; leave it
    empty to allow actions on any domain.
    """

    # HTTP
    server_host: str = Field(default="0.0.0.0", description="Interface the HTTP server binds")
    server_port: int = Field(default=8080, description="Port the HTTP server listens on")
    log_level: str = Field(default="INFO", description="Root logging level")

    # Persistence
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy URL for the action and agent tables (defaults to ./agent_actions.db)"
    )

    # Metadata secrets
    secret_encryption_key: Optional[str] = Field(
        default=None,
        description="Fernet key for apiKey/oauth secret fields; mandatory when environment=production"
    )
    environment: str = Field(default="development", description="development, test or production")

    # Policy
    allowed_domains: List[str] = Field(
        default_factory=list,
        description="Domains actions may target; entries may be '*.example.com' wildcards"
    )
    cascade_max_workers: int = Field(
        default=4,
        ge=1,
        description="Concurrent agent writes per update/delete cascade; 1 runs them in order"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }

    def get_safe_dict(self) -> dict:
        """Settings as a dict that is safe to log."""
        data = self.model_dump()
        if data["secret_encryption_key"]:
            data["secret_encryption_key"] = MASK

        url = data["database_url"]
        if url and "@" in url:
            scheme = url.split("://", 1)[0]
            host = url.rpartition("@")[2]
            data["database_url"] = f"{scheme}://{MASK}@{host}"
        return data


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Drop the cached settings and read the environment again."""
    global _settings
    _settings = None
    return get_settings()
