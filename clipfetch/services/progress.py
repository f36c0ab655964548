"""Download/merge progress accounting and periodic rendering.

Stream callbacks and the ffmpeg side-channel push values into a single
``ProgressSnapshot`` owned by one pipeline. A renderer task polls that
snapshot on its own fixed interval and logs a human-readable summary.
"""
import asyncio
import math
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger

logger = get_logger(__name__)

STREAM_KINDS = ("audio", "video")


def _coerce(value: str) -> Any:
    """Turn numeric progress values into numbers, leave the rest as text."""
    try:
        return int(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        return value
    return number if math.isfinite(number) else value


def parse_progress(text: str) -> dict[str, Any]:
    """Parse ffmpeg ``-progress`` output into a mapping.

    Each line is split on its first ``=`` with both sides trimmed. Blank
    lines and lines without ``=`` (or with an empty key) are skipped.
    """
    parsed: dict[str, Any] = {}
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        parsed[key] = _coerce(value.strip())
    return parsed


@dataclass
class StreamProgress:
    downloaded: int = 0
    # Unknown until the provider reports a content length.
    total: float = math.inf

    @property
    def percent(self) -> float:
        if not self.total or math.isinf(self.total):
            return 0.0
        return min(100.0, self.downloaded / self.total * 100)


def _default_merge() -> dict[str, Any]:
    return {"frame": 0, "fps": 0, "speed": "0x"}


@dataclass
class ProgressSnapshot:
    """Latest known progress of one pipeline instance."""

    audio: StreamProgress = field(default_factory=StreamProgress)
    video: StreamProgress = field(default_factory=StreamProgress)
    merge: dict[str, Any] = field(default_factory=_default_merge)
    started_at: float = field(default_factory=time.monotonic)

    @property
    def bytes_transferred(self) -> int:
        return self.audio.downloaded + self.video.downloaded

    def render(self) -> str:
        """Format the snapshot as a short multi-part status line."""
        def _mb(value: float) -> str:
            return "?" if math.isinf(value) else f"{value / 1024 / 1024:.2f}"

        elapsed_min = (time.monotonic() - self.started_at) / 60
        return (
            f"Audio {self.audio.percent:.2f}% ({_mb(self.audio.downloaded)}MB of {_mb(self.audio.total)}MB) | "
            f"Video {self.video.percent:.2f}% ({_mb(self.video.downloaded)}MB of {_mb(self.video.total)}MB) | "
            f"Merged frame {self.merge.get('frame', 0)} "
            f"(at {self.merge.get('fps', 0)} fps => {self.merge.get('speed', '0x')}) | "
            f"running for {elapsed_min:.2f} min"
        )


class ProgressTracker:
    """Owns a ``ProgressSnapshot`` and renders it while acquisition runs."""

    def __init__(
        self,
        interval: float | None = None,
        enabled: bool | None = None,
        label: str = "",
    ) -> None:
        self.snapshot = ProgressSnapshot()
        self.interval = interval or settings.PROGRESS_RENDER_INTERVAL_SECONDS
        self.enabled = settings.PROGRESS_RENDER_ENABLED if enabled is None else enabled
        self.label = label
        self._render_task: asyncio.Task | None = None

    def update_stream(self, kind: str, downloaded: int, total: float | None) -> None:
        """Overwrite the counters for the ``audio`` or ``video`` stream."""
        if kind not in STREAM_KINDS:
            raise ValueError(f"Unknown stream kind: {kind}")
        setattr(
            self.snapshot,
            kind,
            StreamProgress(downloaded=downloaded, total=total if total else math.inf),
        )

    def update_merge(self, text: str) -> dict[str, Any]:
        """Replace the merge counters with a parsed side-channel block.

        Input that contains no parseable line leaves the previous values in
        place.
        """
        parsed = parse_progress(text)
        if parsed:
            self.snapshot.merge = parsed
        return parsed

    @property
    def is_rendering(self) -> bool:
        return self._render_task is not None and not self._render_task.done()

    async def _render_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            logger.info(f"{self.label}{self.snapshot.render()}")

    @asynccontextmanager
    async def rendering(self) -> AsyncIterator["ProgressTracker"]:
        """Render periodically for the duration of the ``async with`` block."""
        if self.enabled and not self.is_rendering:
            self._render_task = asyncio.create_task(self._render_loop())
        try:
            yield self
        finally:
            await self.stop_rendering()

    async def stop_rendering(self) -> None:
        """Cancel the renderer; a no-op when it is not running."""
        task, self._render_task = self._render_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
