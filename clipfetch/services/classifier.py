"""Map raw provider, network and process failures onto the error taxonomy."""
from enum import Enum

from clipfetch.core.logging import get_logger
from clipfetch.services.errors import (
    AgeRestrictedError,
    BotDetectionError,
    ClipfetchError,
    ErrorCategory,
    FormatDriftError,
    NetworkError,
    ProviderError,
    ProviderUnavailableError,
    TranscodeFailureError,
    VideoUnavailableError,
)

logger = get_logger(__name__)


class FailureOrigin(str, Enum):
    """Where a raw failure was raised."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    TRANSCODE = "transcode"


# Exception class names (anywhere in the MRO) -> category. Matching by name
# keeps the classifier independent of which provider library raised.
_TYPE_RULES: tuple[tuple[frozenset[str], ErrorCategory], ...] = (
    (frozenset({"BotDetection", "LoginRequired", "PoTokenRequired"}), ErrorCategory.BOT_DETECTION),
    (frozenset({"AgeRestrictedError", "AgeCheckRequiredError"}), ErrorCategory.AGE_RESTRICTED),
    (frozenset({"RegexMatchError", "HTMLParseError", "ExtractError"}), ErrorCategory.FORMAT_DRIFT),
    (
        frozenset({
            "VideoUnavailable", "VideoPrivate", "VideoRegionBlocked",
            "MembersOnly", "RecordingUnavailable", "LiveStreamError",
        }),
        ErrorCategory.UNAVAILABLE,
    ),
    (
        frozenset({
            "TimeoutError", "ConnectionError", "URLError", "HTTPError",
            "IncompleteRead", "RemoteDisconnected", "gaierror", "TransportError",
        }),
        ErrorCategory.NETWORK_ERROR,
    ),
)

# Message substrings -> category, checked in order. Age gating must be
# tested before the generic "sign in to confirm" bot challenge.
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("sign in to confirm your age", "age-restricted", "age restricted", "inappropriate for some users"),
     ErrorCategory.AGE_RESTRICTED),
    (("sign in to confirm", "not a bot", "captcha", "bot detection", "anti-bot", "http error 429", "too many requests"),
     ErrorCategory.BOT_DETECTION),
    (("pyinstaller", "failed to execute script", "error while loading shared libraries", "command not found",
      "no such file or directory: 'yt-dlp'"),
     ErrorCategory.PROVIDER_UNAVAILABLE),
    (("requested format is not available", "no video formats found", "could not find match for",
      "regexmatcherror", "unable to extract", "cipher", "decipher"),
     ErrorCategory.FORMAT_DRIFT),
    (("video unavailable", "private video", "is private", "video is not available", "has been removed",
      "does not exist", "video not found", "geo-blocked", "not available in your country", "members-only"),
     ErrorCategory.UNAVAILABLE),
    (("network", "timed out", "timeout", "connection", "temporary failure in name resolution", "unreachable",
      "http error 5"),
     ErrorCategory.NETWORK_ERROR),
)

_CATEGORY_ERRORS: dict[ErrorCategory, type[ClipfetchError]] = {
    ErrorCategory.PROVIDER_UNAVAILABLE: ProviderUnavailableError,
    ErrorCategory.BOT_DETECTION: BotDetectionError,
    ErrorCategory.FORMAT_DRIFT: FormatDriftError,
    ErrorCategory.UNAVAILABLE: VideoUnavailableError,
    ErrorCategory.AGE_RESTRICTED: AgeRestrictedError,
    ErrorCategory.NETWORK_ERROR: NetworkError,
    ErrorCategory.TRANSCODE_FAILURE: TranscodeFailureError,
    ErrorCategory.UNKNOWN: ProviderError,
}


def _type_names(exc: BaseException) -> set[str]:
    return {cls.__name__ for cls in type(exc).__mro__}


def classify(exc: BaseException, origin: FailureOrigin | None = None) -> ErrorCategory:
    """Classify a raw failure.

    Args:
        exc: The exception to classify
        origin: Which collaborator raised it, if known

    Returns:
        The matching taxonomy category (``UNKNOWN`` when nothing matches)
    """
    if isinstance(exc, ClipfetchError):
        return exc.category

    if origin is FailureOrigin.TRANSCODE:
        return ErrorCategory.TRANSCODE_FAILURE

    # A missing executable on the primary path means the runtime is absent.
    if isinstance(exc, FileNotFoundError) and origin in (None, FailureOrigin.PRIMARY):
        return ErrorCategory.PROVIDER_UNAVAILABLE

    names = _type_names(exc)
    for type_names, category in _TYPE_RULES:
        if names & type_names:
            return category

    message = str(exc).lower()
    for needles, category in _MESSAGE_RULES:
        if any(needle in message for needle in needles):
            return category

    if isinstance(exc, OSError):
        return ErrorCategory.NETWORK_ERROR

    return ErrorCategory.UNKNOWN


def to_pipeline_error(
    exc: BaseException, origin: FailureOrigin | None = None
) -> ClipfetchError:
    """Translate a raw failure into the matching domain exception.

    Domain exceptions pass through untouched so the original message and
    code survive repeated classification.
    """
    if isinstance(exc, ClipfetchError):
        return exc

    category = classify(exc, origin)
    if category is ErrorCategory.UNKNOWN:
        logger.debug(f"Unclassified {origin.value if origin else 'pipeline'} failure: {exc!r}")

    error_cls = _CATEGORY_ERRORS.get(category, ProviderError)
    detail = str(exc).strip()
    error = error_cls(detail) if detail else error_cls()
    error.__cause__ = exc
    return error
