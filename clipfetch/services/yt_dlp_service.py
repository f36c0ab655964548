"""yt-dlp integration for the primary acquisition strategy and search."""

import asyncio
import ipaddress
import shutil
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yt_dlp

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger, redact_reference
from clipfetch.services.classifier import FailureOrigin, to_pipeline_error
from clipfetch.services.errors import (
    ClipfetchError,
    InvalidReferenceError,
    ProviderError,
    ProviderUnavailableError,
    VideoUnavailableError,
)

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BLOCKED_HOSTNAMES = {"localhost", "127.0.0.1", "0.0.0.0", "::1"}

SEARCH_PREFIX = "ytsearch1:"
STDERR_TAIL_CHARS = 500


class YtDlpService:
    """Service for interacting with yt-dlp."""

    # ------------------------------------------------------------------
    # URL helpers
    # ------------------------------------------------------------------

    @staticmethod
    def normalize_url(url: str) -> str:
        """Normalize and validate a URL for safety.

        Args:
            url: Raw URL string from user input

        Returns:
            Normalized URL string

        Raises:
            InvalidReferenceError: If URL is malformed or blocked
        """
        url = url.strip()
        if not url:
            raise InvalidReferenceError("A video link is required")

        try:
            parsed = urlparse(url)
        except ValueError as e:
            logger.warning(f"Failed to parse URL: {e}")
            raise InvalidReferenceError("Malformed URL")

        if parsed.scheme.lower() not in settings.allowed_schemes_list:
            raise InvalidReferenceError(
                f"URL scheme not allowed. Allowed schemes: "
                f"{', '.join(settings.allowed_schemes_list)}"
            )

        if not parsed.hostname:
            raise InvalidReferenceError("URL must have a valid hostname")

        # SSRF protection: block private networks
        if settings.BLOCK_PRIVATE_NETWORKS:
            try:
                ip = ipaddress.ip_address(parsed.hostname)
                if ip.is_private or ip.is_loopback or ip.is_link_local:
                    logger.warning(f"Blocked private network URL: {parsed.hostname}")
                    raise InvalidReferenceError("Private network URLs are not allowed")
            except ValueError:
                # Not an IP address, hostname is OK
                pass

            if parsed.hostname.lower() in BLOCKED_HOSTNAMES:
                raise InvalidReferenceError("Localhost URLs are not allowed")

        return url

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    @staticmethod
    def is_available() -> bool:
        """Return True when the yt-dlp executable can be found on PATH."""
        return shutil.which(settings.YTDLP_BINARY) is not None

    # ------------------------------------------------------------------
    # yt-dlp option builders
    # ------------------------------------------------------------------

    @classmethod
    def _build_ydl_options(cls, **overrides: Any) -> dict[str, Any]:
        """Build yt-dlp configuration options for metadata extraction."""
        ydl_opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "socket_timeout": settings.YTDLP_SOCKET_TIMEOUT,
            "extractor_retries": settings.YTDLP_EXTRACTOR_RETRIES,
        }

        if settings.YTDLP_USER_AGENT:
            ydl_opts["http_headers"] = {"User-Agent": settings.YTDLP_USER_AGENT}

        if settings.YTDLP_COOKIES_FROM_BROWSER:
            ydl_opts["cookiesfrombrowser"] = (settings.YTDLP_COOKIES_FROM_BROWSER,)

        if settings.YTDLP_PROXY:
            ydl_opts["proxy"] = settings.YTDLP_PROXY

        ydl_opts.update(overrides)
        return ydl_opts

    @classmethod
    def build_download_command(
        cls, url: str, format_selector: str, output_path: Path,
    ) -> list[str]:
        """Build a yt-dlp command that writes one format to *output_path*."""
        normalized_url = cls.normalize_url(url)

        cmd: list[str] = [
            settings.YTDLP_BINARY,
            "-f", format_selector,
            "-o", str(output_path),
            "--no-part",
            "--force-overwrites",
            "--no-warnings",
            "--quiet",
            "--no-playlist",
            "--concurrent-fragments", str(settings.YTDLP_CONCURRENT_FRAGMENTS),
            "--socket-timeout", str(settings.YTDLP_SOCKET_TIMEOUT),
            "--retries", str(settings.YTDLP_RETRIES),
            "--fragment-retries", str(settings.YTDLP_FRAGMENT_RETRIES),
            "--extractor-retries", str(settings.YTDLP_EXTRACTOR_RETRIES),
        ]

        # User agent spoofing
        if settings.YTDLP_USER_AGENT:
            cmd.extend(["--user-agent", settings.YTDLP_USER_AGENT])

        # Browser cookies (can bypass throttling)
        if settings.YTDLP_COOKIES_FROM_BROWSER:
            cmd.extend(["--cookies-from-browser", settings.YTDLP_COOKIES_FROM_BROWSER])

        # Proxy (can help with regional throttling)
        if settings.YTDLP_PROXY:
            cmd.extend(["--proxy", settings.YTDLP_PROXY])

        cmd.extend(["--", normalized_url])
        return cmd

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    @classmethod
    def _handle_fetch_error(cls, error: Exception, safe_url: str) -> ClipfetchError:
        """Transform a yt-dlp failure into a classified domain exception."""
        if isinstance(error, yt_dlp.utils.UnsupportedError):
            logger.warning(f"Unsupported platform for {safe_url}: {error}")
            return VideoUnavailableError("This platform is not supported")

        domain_error = to_pipeline_error(error, FailureOrigin.PRIMARY)
        if isinstance(error, yt_dlp.utils.DownloadError):
            logger.warning(f"yt-dlp error for {safe_url}: {domain_error.code} - {error}")
        else:
            logger.error(f"Unexpected yt-dlp failure for {safe_url}: {error}", exc_info=True)
        return domain_error

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_duration(duration_raw: Any) -> int | None:
        """Extract and validate duration in seconds."""
        if isinstance(duration_raw, (int, float)):
            return int(duration_raw)
        return None

    @classmethod
    def fetch_metadata(cls, url: str) -> dict[str, Any]:
        """Fetch title and duration without downloading.

        Args:
            url: Video URL

        Returns:
            ``{"title": str, "duration_seconds": int}``

        Raises:
            InvalidReferenceError: If URL is invalid or blocked
            ClipfetchError: Classified yt-dlp failure
        """
        url = cls.normalize_url(url)
        safe_url = redact_reference(url)
        logger.info(f"Fetching metadata via yt-dlp for: {safe_url}")

        try:
            with yt_dlp.YoutubeDL(cls._build_ydl_options()) as ydl:
                info = ydl.extract_info(url, download=False)
        except ClipfetchError:
            raise
        except Exception as e:
            raise cls._handle_fetch_error(e, safe_url) from e

        if not info:
            raise VideoUnavailableError()

        return {
            "title": info.get("title") or "Unknown Video",
            "duration_seconds": cls._extract_duration(info.get("duration")) or 0,
        }

    @classmethod
    def search(cls, query: str) -> str | None:
        """Return the URL of the best match for a free-text query, or None."""
        query = query.strip()
        if not query:
            return None

        logger.info(f"Searching for: {redact_reference(query)}")
        opts = cls._build_ydl_options(extract_flat="in_playlist", noplaylist=False)
        try:
            with yt_dlp.YoutubeDL(opts) as ydl:
                result = ydl.extract_info(f"{SEARCH_PREFIX}{query}", download=False)
        except Exception as e:
            raise cls._handle_fetch_error(e, "search") from e

        entries = (result or {}).get("entries") or []
        for entry in entries:
            if not entry:
                continue
            url = entry.get("webpage_url") or entry.get("url")
            if not url and entry.get("id"):
                url = f"https://www.youtube.com/watch?v={entry['id']}"
            if url:
                return url
        return None

    @classmethod
    async def download_to_file(
        cls,
        url: str,
        format_selector: str,
        output_path: Path,
        timeout: float | None = None,
    ) -> int:
        """Download one format to *output_path*.

        Returns:
            Size of the written file in bytes

        Raises:
            ProviderUnavailableError: If the yt-dlp executable cannot be started
            ClipfetchError: Classified download failure
        """
        timeout = timeout or settings.YTDLP_DOWNLOAD_TIMEOUT_SECONDS
        cmd = cls.build_download_command(url, format_selector, output_path)
        safe_url = redact_reference(url)
        logger.info(f"Downloading {format_selector} from {safe_url} to {output_path.name}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ProviderUnavailableError(f"Failed to start {settings.YTDLP_BINARY}: {e}") from e
        except OSError as e:
            raise ProviderUnavailableError(f"Failed to start download: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProviderError(f"Download timed out ({timeout:g}s limit)")
        except BaseException:
            if process.returncode is None:
                process.kill()
            raise

        if process.returncode != 0:
            stderr_text = (stderr or b"").decode(errors="replace").strip()
            logger.error(
                f"yt-dlp download failed ({process.returncode}) "
                f"for {safe_url}: {stderr_text[-STDERR_TAIL_CHARS:]}"
            )
            error = to_pipeline_error(
                RuntimeError(stderr_text or f"yt-dlp exited with code {process.returncode}"),
                FailureOrigin.PRIMARY,
            )
            raise error

        if not output_path.exists() or output_path.stat().st_size == 0:
            raise ProviderError("Download produced no output file")

        file_size = output_path.stat().st_size
        logger.info(f"Download complete: {file_size:,} bytes for {safe_url}")
        return file_size
