"""Test configuration and fixtures."""
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from clipfetch.main import create_app
from clipfetch.services.identity import ClientIdentity, IdentityRotator
from clipfetch.services.janitor import ResourceJanitor
from clipfetch.services.metadata import MetadataResolver
from clipfetch.services.retry import RetryExecutor

# ISO-BMFF header: box size, "ftyp", major brand
MP4_HEADER = b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00isomiso2"


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app.

    Yields:
        TestClient instance
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def clear_metadata_cache() -> Generator[None, None, None]:
    """Keep cached metadata from leaking between tests."""
    MetadataResolver.clear_cache()
    yield
    MetadataResolver.clear_cache()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by a ``no_wait_executor``."""
    return []


@pytest.fixture
def no_wait_executor(sleeps: list[float]) -> RetryExecutor:
    """RetryExecutor that records its delays instead of sleeping."""
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryExecutor(exponential=False, sleep=_sleep)


@pytest.fixture
def rotator() -> IdentityRotator:
    return IdentityRotator([ClientIdentity("WEB"), ClientIdentity("MWEB"), ClientIdentity("ANDROID")])


@pytest.fixture
def janitor(tmp_path: Path) -> ResourceJanitor:
    return ResourceJanitor(temp_dir=tmp_path / "work")


def _write_mp4(path: Path, size: int = 2048) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(MP4_HEADER + b"\x00" * max(0, size - len(MP4_HEADER)))
    return path


@pytest.fixture
def write_mp4():
    """Writer for files that pass the container signature check."""
    return _write_mp4
