"""Application configuration using pydantic-settings."""
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

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

    # Security
    BLOCK_PRIVATE_NETWORKS: bool = Field(
        default=True,
        description="Block URLs pointing to private networks (SSRF protection)",
    )
    ALLOWED_URL_SCHEMES: str = Field(
        default="http,https",
        description="Comma-separated list of allowed URL schemes",
    )

    @field_validator("CORS_ORIGINS", "PYTUBE_CLIENTS")
    @classmethod
    def strip_list_value(cls, v: str) -> str:
        """Ensure comma-separated values are properly formatted."""
        return v.strip()

    @property
    def cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def allowed_schemes_list(self) -> list[str]:
        """Get allowed URL schemes as a list."""
        return [scheme.strip().lower() for scheme in self.ALLOWED_URL_SCHEMES.split(",") if scheme.strip()]

    @property
    def pytube_clients_list(self) -> list[str]:
        """Get the pytubefix client identity pool as a list."""
        return [client.strip().upper() for client in self.PYTUBE_CLIENTS.split(",") if client.strip()]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENV == "production"

    @property
    def max_filesize_bytes(self) -> int:
        """Maximum size of a delivered artifact in bytes."""
        return int(self.MAX_FILESIZE_MB * 1024 * 1024)

    # Request constraints
    MAX_DURATION_SECONDS: int = Field(
        default=1800,
        ge=1,
        description="Reject sources longer than this before downloading anything",
    )
    MAX_FILESIZE_MB: float = Field(
        default=50,
        gt=0,
        description="Maximum size of the finalized output file in megabytes",
    )
    TEMP_DIR: str | None = Field(
        default=None,
        description="Directory for ephemeral artifacts (defaults to the system temp dir)",
    )

    # Retry bounds per stage
    RETRY_EXPONENTIAL_BACKOFF: bool = Field(
        default=False,
        description="Grow the delay exponentially between attempts instead of keeping it fixed",
    )
    RETRY_MAX_DELAY_SECONDS: float = Field(default=30.0, gt=0)
    PRIMARY_METADATA_ATTEMPTS: int = Field(default=2, ge=1, le=10)
    PRIMARY_METADATA_DELAY_SECONDS: float = Field(default=1.5, gt=0)
    PRIMARY_DOWNLOAD_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    PRIMARY_DOWNLOAD_DELAY_SECONDS: float = Field(default=2.0, gt=0)
    SECONDARY_METADATA_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    SECONDARY_METADATA_DELAY_SECONDS: float = Field(default=2.0, gt=0)
    SECONDARY_STREAM_ATTEMPTS: int = Field(default=3, ge=1, le=10)
    SECONDARY_STREAM_DELAY_SECONDS: float = Field(default=3.0, gt=0)

    # yt-dlp (primary strategy)
    YTDLP_BINARY: str = Field(
        default="yt-dlp",
        description="yt-dlp executable used for downloads",
    )
    YTDLP_AUDIO_FORMAT: str = "bestaudio[ext=m4a]/bestaudio"
    YTDLP_VIDEO_FORMAT: str = "bestvideo[ext=mp4]/bestvideo"
    YTDLP_CONCURRENT_FRAGMENTS: int = Field(
        default=8,
        ge=1,
        le=32,
        description="Number of fragments to download in parallel (DASH/HLS)"
    )
    YTDLP_SOCKET_TIMEOUT: int = Field(
        default=30,
        ge=1,
        le=300,
        description="yt-dlp --socket-timeout value in seconds"
    )
    YTDLP_RETRIES: int = Field(default=10, ge=0, le=50)
    YTDLP_FRAGMENT_RETRIES: int = Field(default=10, ge=0, le=50)
    YTDLP_EXTRACTOR_RETRIES: int = Field(default=3, ge=0, le=50)
    YTDLP_DOWNLOAD_TIMEOUT_SECONDS: int = Field(
        default=900,
        ge=10,
        description="Wall-clock limit for a single yt-dlp download"
    )
    YTDLP_COOKIES_FROM_BROWSER: str | None = Field(
        default=None,
        description="Browser to extract cookies from (chrome, firefox, edge, etc.)"
    )
    YTDLP_USER_AGENT: str | None = Field(
        default=None,
        description="Custom user agent string to avoid detection"
    )
    YTDLP_PROXY: str | None = Field(
        default=None,
        description="HTTP/HTTPS/SOCKS proxy URL (e.g., http://proxy:8080)"
    )

    # pytubefix (secondary strategy)
    PYTUBE_CLIENTS: str = Field(
        default="WEB,MWEB,ANDROID",
        description="Comma-separated pytubefix clients rotated between attempts"
    )
    PYTUBE_PROXY: str | None = Field(
        default=None,
        description="Proxy URL applied to every pytubefix identity"
    )
    PYTUBE_CHUNK_SIZE: int = Field(
        default=32 * 1024,
        ge=4096,
        le=16 * 1024 * 1024,
        description="Read size for elementary stream chunks"
    )
    PYTUBE_SOCKET_TIMEOUT: int = Field(default=30, ge=1, le=300)

    # ffmpeg
    FFMPEG_BINARY: str = "ffmpeg"
    FFPROBE_BINARY: str = "ffprobe"
    MERGE_TIMEOUT_SECONDS: float = Field(
        default=600,
        gt=0,
        description="Wall-clock limit for the piped merge before ffmpeg is killed"
    )
    FILE_MERGE_TIMEOUT_SECONDS: float = Field(default=600, gt=0)
    VALIDATE_WITH_FFPROBE: bool = Field(
        default=True,
        description="Probe finalized artifacts with ffprobe in addition to the signature check"
    )

    # Progress rendering
    PROGRESS_RENDER_ENABLED: bool = True
    PROGRESS_RENDER_INTERVAL_SECONDS: float = Field(default=1.0, gt=0)

    # Cache metadata lookups so retried requests skip a round trip
    METADATA_CACHE_TTL_SECONDS: int = Field(
        default=600,
        ge=0,
        le=3600,
        description="TTL for in-memory metadata cache (0 disables)"
    )
    METADATA_CACHE_MAXSIZE: int = Field(
        default=128,
        ge=0,
        le=2048,
        description="Max number of cached references (0 disables)"
    )


# Global settings instance
settings = Settings()
