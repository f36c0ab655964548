"""pytubefix integration for the secondary acquisition strategy.

Unlike yt-dlp this path never touches the disk: it resolves the audio-only
and video-only stream URLs and exposes each as a live chunk iterator that
the merger pipes straight into ffmpeg.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Iterator

from pytubefix import YouTube
from pytubefix import request as pytube_request

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger, redact_reference
from clipfetch.services.classifier import FailureOrigin, to_pipeline_error
from clipfetch.services.errors import ClipfetchError, FormatDriftError, VideoUnavailableError
from clipfetch.services.identity import ClientIdentity

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int | None], None]
ErrorCallback = Callable[[BaseException], None]


@dataclass
class ElementaryStream:
    """An audio-only or video-only byte stream that is read exactly once.

    ``on_progress`` receives ``(downloaded, total)`` after every chunk;
    ``on_error`` fires once if the underlying transfer fails, before the
    error propagates to the reader.
    """

    kind: str
    total_bytes: int | None
    open_chunks: Callable[[], Iterable[bytes]]
    chunk_size: int = field(default_factory=lambda: settings.PYTUBE_CHUNK_SIZE)
    on_progress: ProgressCallback | None = None
    on_error: ErrorCallback | None = None
    downloaded: int = 0

    def iter_chunks(self) -> Iterator[bytes]:
        try:
            for block in self.open_chunks():
                for start in range(0, len(block), self.chunk_size):
                    chunk = block[start:start + self.chunk_size]
                    self.downloaded += len(chunk)
                    if self.on_progress is not None:
                        self.on_progress(self.downloaded, self.total_bytes)
                    yield chunk
        except Exception as e:
            logger.warning(f"{self.kind.capitalize()} stream error: {e!r}")
            if self.on_error is not None:
                self.on_error(e)
            raise


class PytubeService:
    """Service for interacting with pytubefix."""

    @staticmethod
    def _build_client(url: str, identity: ClientIdentity) -> YouTube:
        return YouTube(url, client=identity.client, proxies=identity.proxies)

    @classmethod
    def _handle_error(cls, error: Exception, safe_url: str, action: str) -> ClipfetchError:
        domain_error = to_pipeline_error(error, FailureOrigin.SECONDARY)
        logger.warning(
            f"pytubefix {action} failed for {safe_url}: "
            f"{domain_error.code} ({error!r})"
        )
        return domain_error

    @classmethod
    def fetch_metadata(cls, url: str, identity: ClientIdentity) -> dict[str, Any]:
        """Fetch title and duration.

        Returns:
            ``{"title": str, "duration_seconds": int}``

        Raises:
            ClipfetchError: Classified pytubefix failure
        """
        safe_url = redact_reference(url)
        logger.info(f"Fetching metadata via pytubefix ({identity}) for: {safe_url}")
        try:
            yt = cls._build_client(url, identity)
            title = yt.title or "Unknown Video"
            duration = int(yt.length or 0)
        except ClipfetchError:
            raise
        except Exception as e:
            raise cls._handle_error(e, safe_url, "metadata") from e
        return {"title": title, "duration_seconds": duration}

    @staticmethod
    def _select_streams(yt: YouTube) -> tuple[Any, Any]:
        audio = yt.streams.get_audio_only()
        video = (
            yt.streams.filter(only_video=True, file_extension="mp4")
            .order_by("resolution")
            .desc()
            .first()
        ) or yt.streams.filter(only_video=True).order_by("resolution").desc().first()
        if audio is None or video is None:
            raise FormatDriftError("No separate audio and video streams were offered")
        return audio, video

    @classmethod
    def open_streams(
        cls, url: str, identity: ClientIdentity
    ) -> tuple[ElementaryStream, ElementaryStream]:
        """Resolve the best audio-only and video-only streams.

        No media bytes are transferred until a stream is iterated.

        Returns:
            ``(audio, video)`` elementary streams

        Raises:
            ClipfetchError: Classified pytubefix failure
        """
        safe_url = redact_reference(url)
        logger.info(f"Opening elementary streams via pytubefix ({identity}) for: {safe_url}")
        try:
            yt = cls._build_client(url, identity)
            audio, video = cls._select_streams(yt)
        except ClipfetchError:
            raise
        except Exception as e:
            raise cls._handle_error(e, safe_url, "stream lookup") from e

        if not audio.url or not video.url:
            raise VideoUnavailableError("Stream URLs are missing")

        timeout = settings.PYTUBE_SOCKET_TIMEOUT

        def _opener(stream_url: str) -> Callable[[], Iterable[bytes]]:
            return lambda: pytube_request.stream(stream_url, timeout=timeout)

        return (
            ElementaryStream(
                kind="audio",
                total_bytes=getattr(audio, "filesize", None),
                open_chunks=_opener(audio.url),
            ),
            ElementaryStream(
                kind="video",
                total_bytes=getattr(video, "filesize", None),
                open_chunks=_opener(video.url),
            ),
        )
