"""
API error types and error message utilities.

Every failure a handler can report maps to one ApiError subclass, rendered as
``{"detail": "..."}`` with the matching status code. Internal details are
logged, never sent to clients.
"""
import logging
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from config import ERROR_DETAIL_MAX_LENGTH

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors that map directly to an HTTP response."""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[Dict[str, str]] = None):
        self.detail = detail or self.default_detail
        self.headers = headers
        super().__init__(self.detail)


class InvalidRequestError(ApiError):
    """Missing, oversized, or wrongly typed input, or a bad path parameter."""

    status_code = 400
    default_detail = "Invalid request"


class UnauthenticatedError(ApiError):
    """Missing or invalid bearer token."""

    status_code = 401
    default_detail = "Couldn't validate JWT"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenError(ApiError):
    """Authenticated user does not own the resource."""

    status_code = 403
    default_detail = "Forbidden"


class NotFoundError(ApiError):
    status_code = 404
    default_detail = "Not found"


class InternalFailureError(ApiError):
    """Subprocess, storage, or database failure not otherwise classified."""

    status_code = 500
    default_detail = "Internal server error"


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render an ApiError as a JSON response."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers,
    )


def truncate_string(text: Optional[str], max_length: int) -> Optional[str]:
    """
    Truncate text to max_length characters, marking the cut with an ellipsis.

    Args:
        text: The text to truncate (None passes through)
        max_length: Maximum length of the result, including the ellipsis

    Returns:
        The text unchanged if it fits, otherwise a max_length-long prefix ending in "..."
    """
    if text is None:
        return None
    if len(text) <= max_length:
        return text
    if max_length < 4:
        # No room for an ellipsis
        return text[:max_length]
    return text[: max_length - 3] + "..."


def truncate_error(error: Optional[str], max_length: int = ERROR_DETAIL_MAX_LENGTH) -> Optional[str]:
    """Truncate an error message (e.g. ffmpeg stderr) to a loggable length."""
    return truncate_string(error, max_length)
