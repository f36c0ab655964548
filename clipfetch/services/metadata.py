"""Title/duration resolution with primary-to-secondary fallback."""
import asyncio
import threading
from dataclasses import dataclass, field

from cachetools import TTLCache

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger, redact_reference
from clipfetch.models.media import Strategy, VideoMetadata
from clipfetch.services.errors import ClipfetchError, ErrorCategory
from clipfetch.services.identity import IdentityRotator, identity_rotator
from clipfetch.services.pytube_service import PytubeService
from clipfetch.services.retry import RetryExecutor, is_retryable, is_retryable_primary
from clipfetch.services.yt_dlp_service import YtDlpService

logger = get_logger(__name__)

# A primary failure in one of these ends the request instead of falling back.
TERMINAL_PRIMARY_CATEGORIES = frozenset({
    ErrorCategory.BOT_DETECTION,
    ErrorCategory.USER_INPUT,
})


@dataclass
class StrategyState:
    """Which strategy a single request is currently using.

    Exactly one strategy is active at a time. Once the primary is disabled
    it stays disabled for the rest of the request.
    """

    active: Strategy = Strategy.PRIMARY
    primary_enabled: bool = True
    attempts: dict[Strategy, int] = field(
        default_factory=lambda: {strategy: 0 for strategy in Strategy}
    )

    def disable_primary(self, reason: str = "") -> None:
        if self.primary_enabled:
            logger.info(f"Primary strategy disabled for this request: {reason or 'unspecified'}")
        self.primary_enabled = False
        self.active = Strategy.SECONDARY

    def record_attempt(self, strategy: Strategy) -> int:
        self.attempts[strategy] += 1
        return self.attempts[strategy]


class MetadataResolver:
    """Resolve a reference to ``VideoMetadata``.

    Results are cached process-wide per reference in a TTL cache; a TTL or
    size of zero turns the cache off.
    """

    _cache: TTLCache | None = None
    _cache_lock = threading.Lock()

    def __init__(
        self,
        executor: RetryExecutor | None = None,
        rotator: IdentityRotator | None = None,
        primary: type[YtDlpService] = YtDlpService,
        secondary: type[PytubeService] = PytubeService,
    ) -> None:
        self.executor = executor or RetryExecutor()
        self.rotator = rotator or identity_rotator
        self.primary = primary
        self.secondary = secondary

    # ------------------------------------------------------------------
    # Cache helpers (backed by cachetools.TTLCache)
    # ------------------------------------------------------------------

    @classmethod
    def _cache_enabled(cls) -> bool:
        return settings.METADATA_CACHE_TTL_SECONDS > 0 and settings.METADATA_CACHE_MAXSIZE > 0

    @classmethod
    def _get_cache(cls) -> TTLCache:
        """Lazy-initialise and return the TTL cache."""
        if cls._cache is None:
            cls._cache = TTLCache(
                maxsize=settings.METADATA_CACHE_MAXSIZE,
                ttl=settings.METADATA_CACHE_TTL_SECONDS,
            )
        return cls._cache

    @classmethod
    def get_cached(cls, reference: str) -> VideoMetadata | None:
        if not cls._cache_enabled():
            return None
        with cls._cache_lock:
            return cls._get_cache().get(reference)

    @classmethod
    def _cache_set(cls, reference: str, metadata: VideoMetadata) -> None:
        if not cls._cache_enabled():
            return
        with cls._cache_lock:
            cls._get_cache()[reference] = metadata

    @classmethod
    def clear_cache(cls) -> None:
        with cls._cache_lock:
            if cls._cache is not None:
                cls._cache.clear()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, reference: str, state: StrategyState) -> VideoMetadata:
        """Resolve *reference*, disabling the primary on any non-terminal failure.

        Raises:
            ClipfetchError: Terminal primary failure, or the secondary's
                classified failure once its attempts are exhausted
        """
        cached = self.get_cached(reference)
        if cached is not None:
            logger.info(f"Metadata cache hit for {redact_reference(reference)}")
            return cached

        if state.primary_enabled and not self.primary.is_available():
            state.disable_primary(f"{settings.YTDLP_BINARY} executable not found")

        if state.primary_enabled:
            try:
                metadata = await self._resolve_primary(reference, state)
            except ClipfetchError as e:
                if e.category in TERMINAL_PRIMARY_CATEGORIES:
                    raise
                state.disable_primary(f"{e.code}: {e.message}")
            else:
                self._cache_set(reference, metadata)
                return metadata

        metadata = await self._resolve_secondary(reference, state)
        self._cache_set(reference, metadata)
        return metadata

    async def _resolve_primary(self, reference: str, state: StrategyState) -> VideoMetadata:
        async def _attempt() -> VideoMetadata:
            state.record_attempt(Strategy.PRIMARY)
            info = await asyncio.to_thread(self.primary.fetch_metadata, reference)
            return VideoMetadata(
                title=info["title"],
                duration_seconds=info["duration_seconds"],
                strategy=Strategy.PRIMARY,
            )

        return await self.executor.execute(
            _attempt,
            max_attempts=settings.PRIMARY_METADATA_ATTEMPTS,
            base_delay=settings.PRIMARY_METADATA_DELAY_SECONDS,
            retry_if=is_retryable_primary,
            label="primary metadata",
        )

    async def _resolve_secondary(self, reference: str, state: StrategyState) -> VideoMetadata:
        async def _attempt() -> VideoMetadata:
            state.record_attempt(Strategy.SECONDARY)
            identity = self.rotator.next()
            info = await asyncio.to_thread(self.secondary.fetch_metadata, reference, identity)
            return VideoMetadata(
                title=info["title"],
                duration_seconds=info["duration_seconds"],
                strategy=Strategy.SECONDARY,
            )

        return await self.executor.execute(
            _attempt,
            max_attempts=settings.SECONDARY_METADATA_ATTEMPTS,
            base_delay=settings.SECONDARY_METADATA_DELAY_SECONDS,
            retry_if=is_retryable,
            label="secondary metadata",
        )
