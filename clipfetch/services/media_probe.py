"""Checks that a finished artifact is a playable video container."""
import json
import subprocess
from pathlib import Path
from typing import Any

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger

logger = get_logger(__name__)

PROBE_TIMEOUT_SECONDS = 15
HEADER_BYTES = 64

EBML_MAGIC = b"\x1a\x45\xdf\xa3"


def has_container_signature(path: Path) -> bool:
    """True for an ISO-BMFF (``ftyp`` box at offset 4) or Matroska/WebM file."""
    try:
        with open(path, "rb") as f:
            header = f.read(HEADER_BYTES)
    except OSError:
        return False
    if len(header) >= 8 and header[4:8] == b"ftyp":
        return True
    return header.startswith(EBML_MAGIC)


def probe(path: Path) -> dict[str, Any]:
    """Return ffprobe's JSON description of *path*.

    Raises:
        FileNotFoundError: If the ffprobe binary is missing
        RuntimeError: If ffprobe fails, times out or prints invalid JSON
    """
    command = [
        settings.FFPROBE_BINARY,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            timeout=PROBE_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"ffprobe timed out while probing {path.name}") from exc
    except subprocess.CalledProcessError as exc:
        stderr_text = (exc.stderr or "").strip()
        raise RuntimeError(f"ffprobe failed for {path.name}: {stderr_text or exc}") from exc

    try:
        return json.loads(completed.stdout or "{}")
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"ffprobe returned invalid JSON for {path.name}") from exc


def is_decodable(path: Path, use_ffprobe: bool | None = None) -> bool:
    """Cheap container check, then an ffprobe pass requiring a video stream.

    Without an ffprobe binary only the container check is applied.
    """
    if not has_container_signature(path):
        logger.warning(f"{path.name} has no recognised container signature")
        return False

    use_ffprobe = settings.VALIDATE_WITH_FFPROBE if use_ffprobe is None else use_ffprobe
    if not use_ffprobe:
        return True

    try:
        payload = probe(path)
    except FileNotFoundError:
        logger.warning("ffprobe not found; validating by container signature only")
        return True
    except RuntimeError as e:
        logger.warning(str(e))
        return False

    streams = payload.get("streams") or []
    if not any(stream.get("codec_type") == "video" for stream in streams):
        logger.warning(f"{path.name} contains no video stream")
        return False
    return True
