"""Ownership and guaranteed removal of a pipeline's ephemeral resources."""
import os
import tempfile
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger

if TYPE_CHECKING:
    from clipfetch.services.merger import MergeProcessHandle

logger = get_logger(__name__)

ARTIFACT_PREFIX = "clipfetch_"


class ResourceJanitor:
    """Track temp files and merge processes created by one pipeline.

    ``cleanup()`` may be called any number of times; files that are already
    gone and processes that already exited are skipped silently.
    """

    def __init__(self, temp_dir: str | os.PathLike | None = None) -> None:
        base = temp_dir or settings.TEMP_DIR or tempfile.gettempdir()
        self.temp_dir = Path(base)
        self._artifacts: list[Path] = []
        self._processes: list["MergeProcessHandle"] = []

    def new_artifact(self, suffix: str = "") -> Path:
        """Reserve a collision-free temp path and register it for cleanup.

        The file itself is not created; whoever writes it owns the content.
        """
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = self.temp_dir / f"{ARTIFACT_PREFIX}{uuid.uuid4().hex}{suffix}"
        self._artifacts.append(path)
        return path

    def track_process(self, handle: "MergeProcessHandle") -> None:
        self._processes.append(handle)

    @property
    def artifacts(self) -> list[Path]:
        return list(self._artifacts)

    @property
    def outstanding(self) -> list[Path]:
        """Registered artifacts that still exist on disk."""
        return [path for path in self._artifacts if path.exists()]

    def discard(self, path: Path) -> bool:
        """Remove one artifact now. Returns True if a file was deleted."""
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not remove artifact {path.name}: {e}")
            return False
        logger.debug(f"Removed artifact {path.name}")
        return True

    def cleanup(self) -> None:
        """Kill live merge processes and delete every registered artifact."""
        for handle in self._processes:
            handle.kill()
        removed = sum(1 for path in self._artifacts if self.discard(path))
        if removed:
            logger.info(f"Cleaned up {removed} temp artifact(s)")
