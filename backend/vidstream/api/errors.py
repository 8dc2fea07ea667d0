"""Global exception handlers for API errors."""
import httpx
from fastapi import Request, status
from fastapi.responses import JSONResponse

from vidstream.core.logging import get_logger
from vidstream.models.video import ErrorResponse
from vidstream.services.errors import VidstreamError

logger = get_logger(__name__)

STATUS_CODE_MAP = {
    "NOT_A_PLATFORM_DOMAIN": status.HTTP_400_BAD_REQUEST,
    "NO_IDENTIFIER_FOUND": status.HTTP_400_BAD_REQUEST,
    "MALFORMED_IDENTIFIER": status.HTTP_400_BAD_REQUEST,
    "VIDEO_UNAVAILABLE": status.HTTP_404_NOT_FOUND,
    "NOT_PLAYABLE": status.HTTP_404_NOT_FOUND,
    "NO_SUCH_FORMAT": status.HTTP_404_NOT_FOUND,
    "NO_FORMATS_AFTER_FILTER": status.HTTP_404_NOT_FOUND,
    "UNSUPPORTED_FILTER": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "UPSTREAM_ERROR": status.HTTP_502_BAD_GATEWAY,
    "CONFIG_NOT_FOUND": status.HTTP_502_BAD_GATEWAY,
    "CONFIG_PARSE_ERROR": status.HTTP_502_BAD_GATEWAY,
    "PLAYER_RESPONSE_PARSE_ERROR": status.HTTP_502_BAD_GATEWAY,
    "MANIFEST_PARSE_ERROR": status.HTTP_502_BAD_GATEWAY,
}

# Caller mistakes, not worth a warning
_QUIET_CODES = {"NOT_A_PLATFORM_DOMAIN", "NO_IDENTIFIER_FOUND", "MALFORMED_IDENTIFIER"}


async def vidstream_error_handler(request: Request, exc: VidstreamError) -> JSONResponse:
    """Handle all VidstreamError exceptions.

    Args:
        request: FastAPI request
        exc: Domain exception

    Returns:
        JSON response with error details
    """
    status_code = STATUS_CODE_MAP.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    if exc.code not in _QUIET_CODES:
        logger.warning(f"Domain error: {exc.code} - {exc.message}")

    error_response = ErrorResponse(code=exc.code, message=exc.message)

    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(),
    )


async def transport_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
    """Handle network failures talking to the platform.

    Args:
        request: FastAPI request
        exc: httpx error raised by a metadata request

    Returns:
        JSON response with a 502 status
    """
    logger.warning(f"Upstream transport error: {exc!r}")

    error_response = ErrorResponse(
        code="TRANSPORT_ERROR",
        message=str(exc) or "Request to the video platform failed",
    )

    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=error_response.model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Args:
        request: FastAPI request
        exc: Unexpected exception

    Returns:
        JSON response with generic error
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)

    error_response = ErrorResponse(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response.model_dump(),
    )
