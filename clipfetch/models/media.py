"""Pydantic models for acquisition requests and API contracts."""
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clipfetch.core.config import settings


class Strategy(str, Enum):
    """Acquisition strategy that produced a result."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class AcquisitionRequest(BaseModel):
    """One user request, immutable for the life of its pipeline."""

    model_config = ConfigDict(frozen=True)

    reference: str = Field(
        ...,
        description="Direct video URL or free-text search query",
        max_length=2048,
    )
    kind: Literal["reference", "search"] = Field(
        default="reference",
        description="Whether ``reference`` is a URL or search text",
    )
    max_duration_seconds: int = Field(
        default_factory=lambda: settings.MAX_DURATION_SECONDS,
        description="Longest source video accepted",
        gt=0,
    )
    max_filesize_bytes: int = Field(
        default_factory=lambda: settings.max_filesize_bytes,
        description="Largest output file accepted",
        gt=0,
    )


class VideoMetadata(BaseModel):
    """Title and duration of the resolved video."""

    title: str = Field(
        ...,
        description="Video title",
        min_length=1,
    )
    duration_seconds: int = Field(
        ...,
        description="Video duration in seconds",
        ge=0,
    )
    strategy: Strategy = Field(
        ...,
        description="Strategy the metadata was obtained with",
    )


class FetchRequest(BaseModel):
    """Request model for fetching a video by URL."""

    reference: str = Field(
        ...,
        description="URL of the video to fetch",
        min_length=10,
        max_length=2048,
        examples=["https://www.youtube.com/watch?v=dQw4w9WgXcQ"],
    )

    @field_validator("reference")
    @classmethod
    def validate_reference(cls, v: str) -> str:
        """Basic URL validation."""
        v = v.strip()
        if not v:
            raise ValueError("URL cannot be empty")
        return v


class SearchRequest(BaseModel):
    """Request model for fetching the best match of a search query."""

    query: str = Field(
        ...,
        description="Free-text search query",
        min_length=1,
        max_length=500,
        examples=["never gonna give you up"],
    )

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Query cannot be empty")
        return v


class ErrorResponse(BaseModel):
    """Standard error response model."""

    code: Literal[
        "INVALID_REFERENCE",
        "NO_MATCH",
        "PROVIDER_UNAVAILABLE",
        "BOT_DETECTION",
        "FORMAT_DRIFT",
        "NOT_FOUND",
        "AGE_RESTRICTED",
        "CONSTRAINT_VIOLATION",
        "TRANSCODE_FAILED",
        "MERGE_TIMEOUT",
        "NETWORK_ERROR",
        "UNKNOWN",
        "INTERNAL_ERROR",
    ] = Field(
        ...,
        description="Stable error code for programmatic handling",
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        min_length=1,
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "CONSTRAINT_VIOLATION",
                "message": "Download failed. The video is longer than 30 minutes.",
            }
        }
    )


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(
        default="healthy",
        description="Health status of the service",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    primary_available: bool = Field(
        default=True,
        description="Whether the yt-dlp executable was found",
    )
