"""Per-request orchestration of metadata, acquisition, merge and delivery.

One ``MediaPipeline`` handles exactly one ``AcquisitionRequest`` and ends in
exactly one delivered outcome: the finished video, or a single failure
message. Temp files and ffmpeg processes it creates never outlive ``run()``.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger, redact_reference
from clipfetch.models.media import AcquisitionRequest, VideoMetadata
from clipfetch.services.acquirer import StreamAcquirer
from clipfetch.services.classifier import to_pipeline_error
from clipfetch.services.delivery import (
    DeliveryCollaborator,
    SearchCollaborator,
    build_caption,
    user_message,
)
from clipfetch.services.errors import (
    FALLBACK_CATEGORIES,
    ClipfetchError,
    ConstraintViolationError,
    InvalidReferenceError,
    NoSearchMatchError,
    TranscodeFailureError,
)
from clipfetch.services.identity import IdentityRotator
from clipfetch.services.janitor import ResourceJanitor
from clipfetch.services.media_probe import is_decodable
from clipfetch.services.merger import TranscodeMerger
from clipfetch.services.metadata import MetadataResolver, StrategyState
from clipfetch.services.progress import ProgressTracker
from clipfetch.services.retry import RetryExecutor
from clipfetch.services.yt_dlp_service import YtDlpService

logger = get_logger(__name__)


class PipelineState(str, Enum):
    RESOLVING_METADATA = "resolving_metadata"
    VALIDATING_CONSTRAINTS = "validating_constraints"
    ACQUIRING_PRIMARY = "acquiring_primary"
    ACQUIRING_FALLBACK = "acquiring_fallback"
    MERGING = "merging"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PipelineResult:
    state: PipelineState
    metadata: VideoMetadata | None = None
    error: ClipfetchError | None = None
    history: list[PipelineState] = field(default_factory=list)
    bytes_transferred: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.COMPLETED


class MediaPipeline:
    """Drive one request from reference to delivered video."""

    def __init__(
        self,
        request: AcquisitionRequest,
        delivery: DeliveryCollaborator,
        search: SearchCollaborator | None = None,
        executor: RetryExecutor | None = None,
        rotator: IdentityRotator | None = None,
        janitor: ResourceJanitor | None = None,
        tracker: ProgressTracker | None = None,
        resolver: MetadataResolver | None = None,
        acquirer: StreamAcquirer | None = None,
        merger: TranscodeMerger | None = None,
        probe: Callable[[Path], bool] = is_decodable,
    ) -> None:
        self.request = request
        self.delivery = delivery
        self.search = search or YtDlpService
        self.janitor = janitor or ResourceJanitor()
        self.tracker = tracker or ProgressTracker(label=f"[{redact_reference(request.reference)}] ")
        executor = executor or RetryExecutor()
        self.resolver = resolver or MetadataResolver(executor=executor, rotator=rotator)
        self.acquirer = acquirer or StreamAcquirer(
            self.janitor, self.tracker, executor=executor, rotator=rotator
        )
        self.merger = merger or TranscodeMerger(self.janitor)
        self.probe = probe

        self.strategy = StrategyState()
        self.state: PipelineState | None = None
        self.history: list[PipelineState] = []
        self.metadata: VideoMetadata | None = None

    def _transition(self, state: PipelineState) -> None:
        self.state = state
        self.history.append(state)
        logger.info(f"Pipeline -> {state.value}")

    def _result(self, error: ClipfetchError | None = None) -> PipelineResult:
        return PipelineResult(
            state=self.state,
            metadata=self.metadata,
            error=error,
            history=list(self.history),
            bytes_transferred=self.acquirer.bytes_transferred,
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> PipelineResult:
        """Run the request to a terminal state and deliver its outcome.

        Domain failures never escape: they end in ``FAILED`` with one
        message sent through the delivery collaborator after cleanup.
        """
        error: ClipfetchError | None = None
        try:
            await self._execute()
        except ClipfetchError as e:
            error = e
        except Exception as e:
            logger.error(f"Unexpected pipeline failure: {e}", exc_info=True)
            error = to_pipeline_error(e)
        finally:
            await self.tracker.stop_rendering()
            self.janitor.cleanup()

        if error is None:
            self._transition(PipelineState.COMPLETED)
            return self._result()

        self._transition(PipelineState.FAILED)
        logger.warning(f"Request failed: {error.code} - {error.message}")
        await self.delivery.send_text(user_message(error))
        return self._result(error)

    async def _execute(self) -> None:
        reference = await self._validate_request()

        self._transition(PipelineState.RESOLVING_METADATA)
        self.metadata = await self.resolver.resolve(reference, self.strategy)
        logger.info(
            f"Resolved '{self.metadata.title}' ({self.metadata.duration_seconds}s) "
            f"via {self.metadata.strategy.value}"
        )

        self._transition(PipelineState.VALIDATING_CONSTRAINTS)
        self._check_duration(self.metadata)

        output = self.janitor.new_artifact(".mp4")
        acquired = False
        if self.strategy.primary_enabled:
            self._transition(PipelineState.ACQUIRING_PRIMARY)
            acquired = await self._run_primary(reference, output)

        if not acquired:
            self._transition(PipelineState.ACQUIRING_FALLBACK)
            audio, video = await self.acquirer.acquire_secondary(reference, output)

            self._transition(PipelineState.MERGING)
            async with self.tracker.rendering():
                await self.merger.merge_piped(
                    audio, video, output, self.tracker, timeout=settings.MERGE_TIMEOUT_SECONDS
                )

        self._transition(PipelineState.FINALIZING)
        await self._finalize(output, self.metadata)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _validate_request(self) -> str:
        """Turn the request into a safe URL before anything is allocated."""
        text = self.request.reference.strip()
        if not text:
            raise InvalidReferenceError("A video link or search text is required")

        if self.request.kind == "search":
            url = await asyncio.to_thread(self.search.search, text)
            if not url:
                raise NoSearchMatchError(text)
            logger.info(f"Search matched {redact_reference(url)}")
            return YtDlpService.normalize_url(url)

        return YtDlpService.normalize_url(text)

    def _check_duration(self, metadata: VideoMetadata) -> None:
        limit = self.request.max_duration_seconds
        if metadata.duration_seconds > limit:
            raise ConstraintViolationError(
                f"Video is too long ({round(metadata.duration_seconds / 60)} minutes). "
                f"Maximum {limit // 60} minutes allowed.",
                limit="duration",
            )

    async def _run_primary(self, reference: str, output: Path) -> bool:
        """Download and merge with yt-dlp.

        Returns False when the failure moves the request to the secondary
        strategy; any other failure propagates.
        """
        try:
            inputs = await self.acquirer.acquire_primary(reference)
            await self.merger.merge_files(inputs.audio_path, inputs.video_path, output)
        except ClipfetchError as e:
            if e.category not in FALLBACK_CATEGORIES:
                raise
            logger.warning(f"Primary strategy failed ({e.code}); falling back")
            self.strategy.disable_primary(f"{e.code}: {e.message}")
            self.janitor.discard(output)
            return False

        # Inputs are no longer needed once merged.
        self.janitor.discard(inputs.audio_path)
        self.janitor.discard(inputs.video_path)
        return True

    async def _finalize(self, output: Path, metadata: VideoMetadata) -> None:
        if not output.exists() or output.stat().st_size == 0:
            raise TranscodeFailureError("Output file was not created")

        if not await asyncio.to_thread(self.probe, output):
            raise TranscodeFailureError("Invalid video file generated")

        size = output.stat().st_size
        limit = self.request.max_filesize_bytes
        if size > limit:
            self.janitor.discard(output)
            raise ConstraintViolationError(
                f"File too large: {size / 1024 / 1024:.2f}MB "
                f"(max {limit / 1024 / 1024:.0f}MB). Try a shorter video.",
                limit="filesize",
            )

        logger.info(f"File ready: {size / 1024 / 1024:.2f}MB")
        await self.delivery.send_video(output, build_caption(metadata.title, size))
