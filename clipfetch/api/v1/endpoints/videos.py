"""Video-related API endpoints."""
import re
from typing import Literal
from urllib.parse import quote

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response

from clipfetch.api.errors import error_response
from clipfetch.core.logging import get_logger
from clipfetch.models.media import AcquisitionRequest, FetchRequest, SearchRequest
from clipfetch.services.delivery import BufferedDelivery
from clipfetch.services.pipeline import MediaPipeline

logger = get_logger(__name__)

router = APIRouter()

_RESPONSES = {
    200: {"description": "Merged video file", "content": {"video/mp4": {}}},
    400: {"description": "Invalid reference"},
    403: {"description": "Age-restricted video"},
    404: {"description": "Video not found or no search match"},
    413: {"description": "Video exceeds the duration or size limit"},
    502: {"description": "Provider failed to deliver the video"},
    503: {"description": "Provider blocking requests or unavailable"},
    504: {"description": "Merge timed out"},
}


def _sanitize_filename(filename: str) -> str:
    """Sanitize a filename for safe use in Content-Disposition header.

    Args:
        filename: Raw filename

    Returns:
        Sanitized filename safe for headers (ASCII only)
    """
    # Only keep ASCII alphanumeric, spaces, hyphens, dots
    filename = re.sub(r'[^a-zA-Z0-9\s\-\.]', '', filename, flags=re.ASCII)
    filename = re.sub(r'\s+', '_', filename)
    if len(filename) > 200:
        filename = filename[:200]
    return filename or "download"


def _build_content_disposition(filename: str) -> str:
    """Build Content-Disposition header with proper encoding for non-ASCII filenames.

    Uses RFC 5987 encoding to support Unicode filenames while maintaining
    compatibility with older browsers.
    """
    ascii_filename = _sanitize_filename(filename)
    encoded_filename = quote(filename, safe='')
    return f"attachment; filename=\"{ascii_filename}\"; filename*=UTF-8''{encoded_filename}"


async def _run_pipeline(
    reference: str, kind: Literal["reference", "search"]
) -> Response | JSONResponse:
    """Run one pipeline and turn its single delivered outcome into a response."""
    delivery = BufferedDelivery()
    pipeline = MediaPipeline(AcquisitionRequest(reference=reference, kind=kind), delivery)
    result = await pipeline.run()

    if result.succeeded and delivery.video is not None:
        title = result.metadata.title if result.metadata else "video"
        return Response(
            content=delivery.video.content,
            media_type="video/mp4",
            headers={
                "Content-Disposition": _build_content_disposition(f"{title}.mp4"),
                "X-Video-Title": quote(title, safe=''),
                "X-Bytes-Transferred": str(result.bytes_transferred),
            },
        )

    error = result.error
    code = error.code if error else "INTERNAL_ERROR"
    message = delivery.text or (error.message if error else "Video processing failed")
    return error_response(code, message)


@router.post(
    "/fetch",
    summary="Fetch video by URL",
    description="Download, merge and return a video from a direct URL",
    responses=_RESPONSES,
)
async def fetch_video(request: FetchRequest) -> Response:
    """Fetch a single merged mp4 for a direct video URL.

    Args:
        request: Request containing the video URL

    Returns:
        The video bytes, or an error response
    """
    return await _run_pipeline(request.reference, "reference")


@router.post(
    "/search",
    summary="Fetch video by search",
    description="Search for a video and return the best match as a merged mp4",
    responses=_RESPONSES,
)
async def search_video(request: SearchRequest) -> Response:
    """Fetch a single merged mp4 for the best match of a search query.

    Args:
        request: Request containing the search text

    Returns:
        The video bytes, or an error response
    """
    return await _run_pipeline(request.query, "search")
