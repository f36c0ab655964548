"""Outbound collaborators and the user-facing failure messages."""
import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from clipfetch.core.logging import get_logger
from clipfetch.services.errors import (
    ClipfetchError,
    ConstraintViolationError,
    ErrorCategory,
    MergeTimeoutError,
)

logger = get_logger(__name__)

FAILURE_PREFIX = "Download failed. "

_CATEGORY_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.USER_INPUT: "Please send a valid video link or search text.",
    ErrorCategory.PROVIDER_UNAVAILABLE: "Download system error. Please try again or contact support.",
    ErrorCategory.BOT_DETECTION: "The provider is blocking requests. Please try again in a few minutes.",
    ErrorCategory.FORMAT_DRIFT: "The provider changed its format. Please try again later or contact support.",
    ErrorCategory.UNAVAILABLE: "Video is unavailable or private.",
    ErrorCategory.AGE_RESTRICTED: "Age-restricted content is not supported.",
    ErrorCategory.NETWORK_ERROR: "Network error, please try again.",
    ErrorCategory.CONSTRAINT_VIOLATION: "The video exceeds the allowed limits.",
    ErrorCategory.TRANSCODE_FAILURE: "Video processing failed. Please try again.",
    ErrorCategory.UNKNOWN: "Please try with a different video.",
}


def user_message(error: ClipfetchError) -> str:
    """Return the single message shown to the user for a failed request."""
    if error.code == "NO_MATCH":
        return error.message
    if isinstance(error, MergeTimeoutError):
        return f"{FAILURE_PREFIX}Download timed out. The video might be too large or the network is slow."
    if isinstance(error, ConstraintViolationError):
        return f"{FAILURE_PREFIX}{error.message}"
    return FAILURE_PREFIX + _CATEGORY_MESSAGES.get(
        error.category, _CATEGORY_MESSAGES[ErrorCategory.UNKNOWN]
    )


def build_caption(title: str, size_bytes: int) -> str:
    return f"{title}\nSize: {size_bytes / 1024 / 1024:.2f}MB"


class DeliveryCollaborator(Protocol):
    """Where a request's single terminal outcome is sent."""

    async def send_video(self, path: Path, caption: str) -> None:
        ...

    async def send_text(self, message: str) -> None:
        ...


class SearchCollaborator(Protocol):
    """Turns free text into the URL of the best match, or None."""

    def search(self, query: str) -> str | None:
        ...


@dataclass
class DeliveredVideo:
    content: bytes
    caption: str
    filename: str


class BufferedDelivery:
    """Keep the outcome in memory for the HTTP layer to return.

    The artifact is read while it still exists; cleanup may delete it as
    soon as ``send_video`` returns.
    """

    def __init__(self) -> None:
        self.video: DeliveredVideo | None = None
        self.text: str | None = None

    @property
    def delivered(self) -> bool:
        return self.video is not None or self.text is not None

    def _ensure_first(self) -> None:
        if self.delivered:
            raise RuntimeError("An outcome was already delivered for this request")

    async def send_video(self, path: Path, caption: str) -> None:
        self._ensure_first()
        content = await asyncio.to_thread(path.read_bytes)
        self.video = DeliveredVideo(content=content, caption=caption, filename=path.name)
        logger.info(f"Buffered {len(content):,} bytes for delivery")

    async def send_text(self, message: str) -> None:
        self._ensure_first()
        self.text = message
