"""Fetching the audio and video inputs for one request."""
import asyncio
from dataclasses import dataclass
from functools import partial
from pathlib import Path

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger
from clipfetch.services.identity import IdentityRotator, identity_rotator
from clipfetch.services.janitor import ResourceJanitor
from clipfetch.services.progress import ProgressTracker
from clipfetch.services.pytube_service import ElementaryStream, PytubeService
from clipfetch.services.retry import RetryExecutor, is_retryable, is_retryable_primary
from clipfetch.services.yt_dlp_service import YtDlpService

logger = get_logger(__name__)


@dataclass
class DownloadedInputs:
    """Audio-only and video-only files written by the primary strategy."""

    audio_path: Path
    video_path: Path


class StreamAcquirer:
    """Acquire elementary inputs with either strategy.

    Every temp file is reserved through the janitor, so the caller's
    cleanup removes it no matter how acquisition ends.
    """

    def __init__(
        self,
        janitor: ResourceJanitor,
        tracker: ProgressTracker,
        executor: RetryExecutor | None = None,
        rotator: IdentityRotator | None = None,
        primary: type[YtDlpService] = YtDlpService,
        secondary: type[PytubeService] = PytubeService,
    ) -> None:
        self.janitor = janitor
        self.tracker = tracker
        self.executor = executor or RetryExecutor()
        self.rotator = rotator or identity_rotator
        self.primary = primary
        self.secondary = secondary
        self._downloaded = 0
        self._streams: list[ElementaryStream] = []

    @property
    def bytes_transferred(self) -> int:
        """Bytes fetched so far by either strategy."""
        return self._downloaded + sum(stream.downloaded for stream in self._streams)

    async def _download(self, reference: str, kind: str, format_selector: str, path: Path) -> int:
        async def _attempt() -> int:
            return await self.primary.download_to_file(reference, format_selector, path)

        size = await self.executor.execute(
            _attempt,
            max_attempts=settings.PRIMARY_DOWNLOAD_ATTEMPTS,
            base_delay=settings.PRIMARY_DOWNLOAD_DELAY_SECONDS,
            retry_if=is_retryable_primary,
            label=f"primary {kind} download",
        )
        self._downloaded += size
        self.tracker.update_stream(kind, size, size)
        return size

    async def acquire_primary(self, reference: str) -> DownloadedInputs:
        """Download audio-only and video-only files with yt-dlp.

        Raises:
            ClipfetchError: The classified failure of whichever download
                exhausted its attempts first
        """
        audio_path = self.janitor.new_artifact("_audio.m4a")
        video_path = self.janitor.new_artifact("_video.mp4")

        await self._download(
            reference, "audio", settings.YTDLP_AUDIO_FORMAT, audio_path
        )
        await self._download(
            reference, "video", settings.YTDLP_VIDEO_FORMAT, video_path
        )
        return DownloadedInputs(
            audio_path=audio_path,
            video_path=video_path,
        )

    async def acquire_secondary(
        self, reference: str, output_path: Path
    ) -> tuple[ElementaryStream, ElementaryStream]:
        """Open live audio and video streams with a freshly rotated identity.

        A stream error deletes *output_path*, which must not survive a
        partially fed merge.
        """
        async def _attempt() -> tuple[ElementaryStream, ElementaryStream]:
            identity = self.rotator.next()
            return await asyncio.to_thread(self.secondary.open_streams, reference, identity)

        audio, video = await self.executor.execute(
            _attempt,
            max_attempts=settings.SECONDARY_STREAM_ATTEMPTS,
            base_delay=settings.SECONDARY_STREAM_DELAY_SECONDS,
            retry_if=is_retryable,
            label="secondary streams",
        )

        def _on_error(exc: BaseException) -> None:
            self.janitor.discard(output_path)

        logger.info(
            f"Secondary streams ready: audio {audio.total_bytes or '?'} bytes, "
            f"video {video.total_bytes or '?'} bytes"
        )
        self._streams.extend((audio, video))
        for stream in (audio, video):
            stream.on_progress = partial(self.tracker.update_stream, stream.kind)
            stream.on_error = _on_error
            self.tracker.update_stream(stream.kind, 0, stream.total_bytes)
        return audio, video
