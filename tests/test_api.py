"""Tests for API endpoints."""
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from clipfetch.models.media import Strategy, VideoMetadata
from clipfetch.services.delivery import user_message
from clipfetch.services.errors import (
    BotDetectionError,
    ClipfetchError,
    ConstraintViolationError,
    MergeTimeoutError,
    NoSearchMatchError,
)
from clipfetch.services.pipeline import PipelineResult, PipelineState


def fake_pipeline(tmp_path: Path, title: str = "Test Video", error: ClipfetchError | None = None):
    """Build a MediaPipeline replacement that delivers one canned outcome."""
    calls = []

    class FakePipeline:
        def __init__(self, request, delivery, **kwargs) -> None:
            self.request = request
            self.delivery = delivery
            calls.append(request)

        async def run(self) -> PipelineResult:
            if error is not None:
                await self.delivery.send_text(user_message(error))
                return PipelineResult(state=PipelineState.FAILED, error=error)
            output = tmp_path / "out.mp4"
            output.write_bytes(b"\x00\x00\x00\x18ftypisom")
            await self.delivery.send_video(output, f"{title}\nSize: 0.00MB")
            return PipelineResult(
                state=PipelineState.COMPLETED,
                metadata=VideoMetadata(title=title, duration_seconds=60, strategy=Strategy.PRIMARY),
                bytes_transferred=1234,
            )

    FakePipeline.calls = calls
    return FakePipeline


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    def test_health_check(self, client: TestClient) -> None:
        """Test health check endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert isinstance(data["primary_available"], bool)

    @patch("clipfetch.main.YtDlpService.is_available", return_value=False)
    def test_health_reports_missing_primary(self, mock_available, client: TestClient) -> None:
        response = client.get("/health")
        assert response.json()["primary_available"] is False


class TestFetchEndpoint:
    """Tests for the fetch-by-URL endpoint."""

    def test_fetch_success(self, client: TestClient, tmp_path: Path) -> None:
        """The merged file comes back as an mp4 attachment."""
        pipeline_cls = fake_pipeline(tmp_path, title="Test Video")
        with patch("clipfetch.api.v1.endpoints.videos.MediaPipeline", pipeline_cls):
            response = client.post(
                "/api/v1/videos/fetch",
                json={"reference": "  https://www.youtube.com/watch?v=test  "},
            )

        assert response.status_code == 200
        assert response.headers["content-type"] == "video/mp4"
        assert "attachment" in response.headers["content-disposition"].lower()
        assert 'filename="Test_Video.mp4"' in response.headers["content-disposition"]
        assert response.headers["x-video-title"] == "Test%20Video"
        assert response.headers["x-bytes-transferred"] == "1234"
        assert response.content.startswith(b"\x00\x00\x00\x18ftyp")

        request = pipeline_cls.calls[0]
        assert request.reference == "https://www.youtube.com/watch?v=test"
        assert request.kind == "reference"

    def test_fetch_non_ascii_title(self, client: TestClient, tmp_path: Path) -> None:
        pipeline_cls = fake_pipeline(tmp_path, title="Видео")
        with patch("clipfetch.api.v1.endpoints.videos.MediaPipeline", pipeline_cls):
            response = client.post(
                "/api/v1/videos/fetch",
                json={"reference": "https://www.youtube.com/watch?v=test"},
            )

        assert response.status_code == 200
        assert "filename*=UTF-8''" in response.headers["content-disposition"]

    @pytest.mark.parametrize("reference", ["", "   ", "short"])
    def test_fetch_invalid_reference(self, client: TestClient, reference: str) -> None:
        response = client.post("/api/v1/videos/fetch", json={"reference": reference})
        assert response.status_code == 422  # Validation error

    @pytest.mark.parametrize(
        "error, status_code, code",
        [
            (BotDetectionError(), 503, "BOT_DETECTION"),
            (ConstraintViolationError("Video is too long", limit="duration"), 413, "CONSTRAINT_VIOLATION"),
            (MergeTimeoutError(300), 504, "MERGE_TIMEOUT"),
        ],
    )
    def test_fetch_failure(
        self,
        client: TestClient,
        tmp_path: Path,
        error: ClipfetchError,
        status_code: int,
        code: str,
    ) -> None:
        """A failed pipeline maps its error code to an HTTP status and a user message."""
        pipeline_cls = fake_pipeline(tmp_path, error=error)
        with patch("clipfetch.api.v1.endpoints.videos.MediaPipeline", pipeline_cls):
            response = client.post(
                "/api/v1/videos/fetch",
                json={"reference": "https://www.youtube.com/watch?v=test"},
            )

        assert response.status_code == status_code
        data = response.json()
        assert data["code"] == code
        assert data["message"].startswith("Download failed.")


class TestSearchEndpoint:
    """Tests for the fetch-by-search endpoint."""

    def test_search_success(self, client: TestClient, tmp_path: Path) -> None:
        pipeline_cls = fake_pipeline(tmp_path, title="Found")
        with patch("clipfetch.api.v1.endpoints.videos.MediaPipeline", pipeline_cls):
            response = client.post("/api/v1/videos/search", json={"query": "lofi beats"})

        assert response.status_code == 200
        assert response.headers["x-video-title"] == "Found"
        request = pipeline_cls.calls[0]
        assert request.reference == "lofi beats"
        assert request.kind == "search"

    def test_search_no_match(self, client: TestClient, tmp_path: Path) -> None:
        pipeline_cls = fake_pipeline(tmp_path, error=NoSearchMatchError("zzzz"))
        with patch("clipfetch.api.v1.endpoints.videos.MediaPipeline", pipeline_cls):
            response = client.post("/api/v1/videos/search", json={"query": "zzzz"})

        assert response.status_code == 404
        data = response.json()
        assert data["code"] == "NO_MATCH"
        assert "zzzz" in data["message"]

    def test_search_empty_query(self, client: TestClient) -> None:
        response = client.post("/api/v1/videos/search", json={"query": "  "})
        assert response.status_code == 422
