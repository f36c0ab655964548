"""Structured logging configuration."""
import hashlib
import logging
import sys
from urllib.parse import urlparse

from clipfetch.core.config import settings

_NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "tenacity", "pytubefix")


def setup_logging(level: str | None = None) -> None:
    """Configure structured logging for the application.

    Args:
        level: Optional level name overriding ``settings.LOG_LEVEL``
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    if settings.is_production:
        # JSON logs for production (easier for log aggregators)
        log_format = '{"time":"%(asctime)s","level":"%(levelname)s","name":"%(name)s","message":"%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


def redact_reference(reference: str) -> str:
    """Create a safe version of a reference for logging.

    URLs keep scheme, host and path with the query replaced by a short
    hash; free-text references are reduced to their hash.
    """
    ref_hash = hashlib.sha256(reference.encode()).hexdigest()[:8]
    try:
        parsed = urlparse(reference)
    except ValueError:
        return f"invalid-reference (hash:{ref_hash})"
    if not parsed.scheme or not parsed.hostname:
        return f"text (hash:{ref_hash})"
    return f"{parsed.scheme}://{parsed.hostname}{parsed.path} (hash:{ref_hash})"
