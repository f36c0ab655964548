"""Domain-specific exceptions for the services layer.

Every failure that leaves a pipeline is one of these. ``code`` is the
stable identifier used by the API layer; ``category`` drives fallback
decisions and user-facing messages.
"""
from enum import Enum


class ErrorCategory(str, Enum):
    """Fixed failure taxonomy."""

    USER_INPUT = "user_input"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    BOT_DETECTION = "bot_detection"
    FORMAT_DRIFT = "format_drift"
    UNAVAILABLE = "unavailable"
    AGE_RESTRICTED = "age_restricted"
    NETWORK_ERROR = "network_error"
    CONSTRAINT_VIOLATION = "constraint_violation"
    TRANSCODE_FAILURE = "transcode_failure"
    UNKNOWN = "unknown"


# Primary-strategy failures in these categories move the request to the
# secondary strategy instead of failing it. On the primary path a transcode
# failure can only come from the file-to-file merge.
FALLBACK_CATEGORIES = frozenset({
    ErrorCategory.PROVIDER_UNAVAILABLE,
    ErrorCategory.FORMAT_DRIFT,
    ErrorCategory.NETWORK_ERROR,
    ErrorCategory.TRANSCODE_FAILURE,
    ErrorCategory.UNKNOWN,
})

# Deterministic failures: retrying the same operation cannot change the outcome.
NON_RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.USER_INPUT,
    ErrorCategory.PROVIDER_UNAVAILABLE,
    ErrorCategory.UNAVAILABLE,
    ErrorCategory.AGE_RESTRICTED,
    ErrorCategory.CONSTRAINT_VIOLATION,
})


class ClipfetchError(Exception):
    """Base exception for media pipeline errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, code: str) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message
            code: Stable error code for API responses
        """
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidReferenceError(ClipfetchError):
    """Raised when the target reference is missing, malformed or blocked."""

    category = ErrorCategory.USER_INPUT

    def __init__(self, message: str = "The provided reference is invalid or blocked") -> None:
        super().__init__(message, "INVALID_REFERENCE")


class NoSearchMatchError(ClipfetchError):
    """Raised when a search query yields no result."""

    category = ErrorCategory.USER_INPUT

    def __init__(self, query: str = "") -> None:
        message = f"No video found for: {query}" if query else "No video found"
        super().__init__(message, "NO_MATCH")


class ProviderUnavailableError(ClipfetchError):
    """Raised when the primary provider's binary or runtime cannot run."""

    category = ErrorCategory.PROVIDER_UNAVAILABLE

    def __init__(self, message: str = "Download tool is not available") -> None:
        super().__init__(message, "PROVIDER_UNAVAILABLE")


class BotDetectionError(ClipfetchError):
    """Raised when the provider blocks the request with a verification challenge."""

    category = ErrorCategory.BOT_DETECTION

    def __init__(
        self,
        message: str = "The provider is currently blocking requests",
    ) -> None:
        super().__init__(message, "BOT_DETECTION")


class FormatDriftError(ClipfetchError):
    """Raised when the secondary provider can no longer parse the site."""

    category = ErrorCategory.FORMAT_DRIFT

    def __init__(self, message: str = "The provider changed its page format") -> None:
        super().__init__(message, "FORMAT_DRIFT")


class VideoUnavailableError(ClipfetchError):
    """Raised when the video is not found, private or removed."""

    category = ErrorCategory.UNAVAILABLE

    def __init__(self, message: str = "Video not found or unavailable") -> None:
        super().__init__(message, "NOT_FOUND")


class AgeRestrictedError(ClipfetchError):
    """Raised when the video is age-gated."""

    category = ErrorCategory.AGE_RESTRICTED

    def __init__(self, message: str = "Video is age-restricted") -> None:
        super().__init__(message, "AGE_RESTRICTED")


class ConstraintViolationError(ClipfetchError):
    """Raised when the source duration or output size exceeds its limit."""

    category = ErrorCategory.CONSTRAINT_VIOLATION

    def __init__(self, message: str, limit: str = "") -> None:
        self.limit = limit
        super().__init__(message, "CONSTRAINT_VIOLATION")


class TranscodeFailureError(ClipfetchError):
    """Raised when ffmpeg fails to spawn, exits non-zero or produces bad output."""

    category = ErrorCategory.TRANSCODE_FAILURE

    def __init__(
        self,
        message: str = "Video processing failed",
        returncode: int | None = None,
        code: str = "TRANSCODE_FAILED",
    ) -> None:
        self.returncode = returncode
        super().__init__(message, code)


class MergeTimeoutError(TranscodeFailureError):
    """Raised when the piped merge exceeds its wall-clock limit and is killed."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Merge timed out after {timeout_seconds:g} seconds",
            code="MERGE_TIMEOUT",
        )


class NetworkError(ClipfetchError):
    """Raised for connectivity failures talking to a provider."""

    category = ErrorCategory.NETWORK_ERROR

    def __init__(self, message: str = "Network error while contacting the provider") -> None:
        super().__init__(message, "NETWORK_ERROR")


class ProviderError(ClipfetchError):
    """Raised when a provider fails for an unrecognised reason."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str = "Video processing failed") -> None:
        super().__init__(message, "UNKNOWN")
