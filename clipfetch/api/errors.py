"""Global exception handlers for API errors."""
from fastapi import Request, status
from fastapi.responses import JSONResponse

from clipfetch.core.logging import get_logger
from clipfetch.models.media import ErrorResponse

logger = get_logger(__name__)

# Map error codes to HTTP status codes
STATUS_CODE_MAP = {
    "INVALID_REFERENCE": status.HTTP_400_BAD_REQUEST,
    "NO_MATCH": status.HTTP_404_NOT_FOUND,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "AGE_RESTRICTED": status.HTTP_403_FORBIDDEN,
    "CONSTRAINT_VIOLATION": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    "BOT_DETECTION": status.HTTP_503_SERVICE_UNAVAILABLE,
    "PROVIDER_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
    "FORMAT_DRIFT": status.HTTP_502_BAD_GATEWAY,
    "NETWORK_ERROR": status.HTTP_502_BAD_GATEWAY,
    "TRANSCODE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "MERGE_TIMEOUT": status.HTTP_504_GATEWAY_TIMEOUT,
    "UNKNOWN": status.HTTP_502_BAD_GATEWAY,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(code: str, message: str) -> JSONResponse:
    """Build the JSON error response for *code*."""
    status_code = STATUS_CODE_MAP.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    body = ErrorResponse(code=code, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Args:
        request: FastAPI request
        exc: Unexpected exception

    Returns:
        JSON response with generic error
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return error_response(
        "INTERNAL_ERROR", "An unexpected error occurred. Please try again later."
    )
