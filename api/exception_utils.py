"""
Standardized exception handling utilities.

This module provides consistent patterns for exception handling across the API,
ensuring ApiErrors and HTTPExceptions are properly re-raised and everything
else is logged before it becomes a generic 500.
"""

import functools
import logging
from typing import Any, Callable, TypeVar

from fastapi import HTTPException

from api.errors import ApiError, InternalFailureError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def handle_api_exceptions(
    operation_name: str,
    error_detail: str = "Internal server error",
    log_errors: bool = True,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for standardized exception handling in API endpoints.

    This ensures:
    1. ApiErrors and HTTPExceptions are always re-raised (never masked)
    2. Generic exceptions are logged with their traceback and converted to
       InternalFailureError with a sanitized message

    The wrapper keeps the endpoint's signature (functools.wraps), so FastAPI
    still sees the original parameters.

    Args:
        operation_name: Name of the operation for logging context
        error_detail: Client-facing message for unexpected exceptions
        log_errors: Whether to log exceptions (default: True)

    Example:
        @handle_api_exceptions("video_upload", "Failed to upload video")
        async def upload_video(...):
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except (ApiError, HTTPException):
                raise
            except Exception as e:
                if log_errors:
                    logger.exception(f"Unexpected error in {operation_name}: {e}")
                raise InternalFailureError(error_detail) from e

        return wrapper

    return decorator
