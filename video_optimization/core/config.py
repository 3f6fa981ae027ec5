"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

import tempfile
from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, missing: list[str], message: Optional[str] = None):
        self.missing = missing
        super().__init__(message or f"Missing required settings: {', '.join(missing)}")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Video Optimization Service"
    VERSION: str = "0.1.0"
    APP_ENV: str = "development"
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    # Public URL of the frontend, used as the single allowed CORS origin - REQUIRED
    SERVER_URL: str

    # Object storage (S3-compatible, e.g. Cloudflare R2) - REQUIRED
    R2_ENDPOINT: str
    R2_BUCKET: str
    R2_ACCESS_KEY_ID: str
    R2_SECRET_ACCESS_KEY: str
    R2_REGION: str = "auto"

    # Security - REQUIRED (no defaults for sensitive values)
    VIDEO_OPTIMIZATION_API_KEY: str

    # External tools
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"
    TOOL_TIMEOUT_SECONDS: float = 30 * 60

    # Local scratch space for pipeline runs
    TEMP_DIR: str = tempfile.gettempdir()

    # Per-client rate limiting
    RATE_LIMIT_PER_SECOND: float = 1.0
    RATE_LIMIT_BURST: int = 5

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"


def load_settings(**overrides) -> Settings:
    """Build settings from the environment.

    Raises:
        ConfigurationError: if any required variable is absent or empty
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as e:
        missing = [
            ".".join(str(part) for part in error["loc"])
            for error in e.errors()
        ]
        raise ConfigurationError(missing) from e

    # An empty string is as good as unset for the required values
    empty = [
        name
        for name in (
            "SERVER_URL",
            "R2_ENDPOINT",
            "R2_BUCKET",
            "R2_ACCESS_KEY_ID",
            "R2_SECRET_ACCESS_KEY",
            "VIDEO_OPTIMIZATION_API_KEY",
        )
        if not getattr(settings, name)
    ]
    if empty:
        raise ConfigurationError(empty)

    return settings
