"""Application configuration using pydantic-settings."""
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library and service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    ENV: Literal["development", "production", "test"] = "development"
    DEBUG: bool = False
    PORT: int = Field(default=8000, ge=1, le=65535)

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"

    # CORS Configuration
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @field_validator("CORS_ORIGINS")
    @classmethod
    def parse_cors_origins(cls, v: str) -> str:
        """Ensure CORS_ORIGINS is properly formatted."""
        return v.strip()

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "production"

    # Metadata retrieval
    DEFAULT_LANG: str = Field(
        default="en",
        description="Display language sent to the platform when none is requested",
    )
    INFO_CACHE_TTL_SECONDS: int = Field(
        default=600,
        ge=0,
        le=86400,
        description="TTL for cached basic/full info records (0 disables)",
    )
    INFO_CACHE_MAXSIZE: int = Field(
        default=10,
        ge=0,
        le=4096,
        description="Max number of cached info records per operation (0 disables)",
    )

    # HTTP transport
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, le=600)
    HTTP_MAX_REDIRECTS: int = Field(default=5, ge=0, le=20)
    HTTP_PROXY: str | None = Field(
        default=None,
        description="HTTP/HTTPS/SOCKS proxy URL (e.g., http://proxy:8080)",
    )
    STREAM_USER_AGENT: str = Field(
        default=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_3) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/80.0.3987.106 Safari/537.36"
        ),
        description="User agent sent with media (not metadata) requests",
    )

    # Segmented (HLS / DASH) transport
    LIVE_CHUNK_READAHEAD: int = Field(
        default=3,
        ge=1,
        le=32,
        description="Segments fetched ahead of the one being written",
    )
    LIVE_BUFFER_MS: int = Field(
        default=20000,
        ge=0,
        description="How far behind the live edge a live download starts",
    )
    SEGMENT_MAX_RETRIES: int = Field(default=5, ge=0, le=50)
    SEGMENT_RETRY_BACKOFF_SECONDS: float = Field(default=1.0, ge=0, le=60)
    PLAYLIST_MAX_RECONNECTS: int = Field(default=10, ge=0, le=100)

    # Output stream
    STREAM_CHUNK_SIZE: int = Field(
        default=65536,
        ge=1024,
        le=16777216,
        description="Read size used when pulling bytes off a ranged response",
    )

    @property
    def info_cache_enabled(self) -> bool:
        """Return True when info caching is configured on."""
        return self.INFO_CACHE_TTL_SECONDS > 0 and self.INFO_CACHE_MAXSIZE > 0


# Global settings instance
settings = Settings()
