"""
Tests for standardized exception handling utilities.
"""

import logging

import pytest
from fastapi import HTTPException

from api.errors import InternalFailureError, NotFoundError
from api.exception_utils import handle_api_exceptions


class TestHandleAPIExceptions:
    """Test the handle_api_exceptions decorator."""

    @pytest.mark.asyncio
    async def test_reraises_api_error(self):
        """ApiErrors keep their status and detail."""

        @handle_api_exceptions("test_operation")
        async def failing_func():
            raise NotFoundError("Video not found")

        with pytest.raises(NotFoundError) as exc_info:
            await failing_func()

        assert exc_info.value.detail == "Video not found"

    @pytest.mark.asyncio
    async def test_reraises_http_exception(self):
        @handle_api_exceptions("test_operation")
        async def failing_func():
            raise HTTPException(status_code=503, detail="Service unavailable", headers={"Retry-After": "30"})

        with pytest.raises(HTTPException) as exc_info:
            await failing_func()

        assert exc_info.value.status_code == 503
        assert exc_info.value.headers == {"Retry-After": "30"}

    @pytest.mark.asyncio
    async def test_converts_generic_exception(self):
        """Unexpected exceptions become InternalFailureError with a sanitized message."""

        @handle_api_exceptions("test_operation", "Operation failed")
        async def failing_func():
            raise ValueError("secret internal path /srv/assets")

        with pytest.raises(InternalFailureError) as exc_info:
            await failing_func()

        assert exc_info.value.detail == "Operation failed"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_logs_exception(self, caplog):
        @handle_api_exceptions("test_operation")
        async def failing_func():
            raise ValueError("Internal error")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(InternalFailureError):
                await failing_func()

        assert "Unexpected error in test_operation" in caplog.text
        assert "Internal error" in caplog.text

    @pytest.mark.asyncio
    async def test_no_logging_when_disabled(self, caplog):
        @handle_api_exceptions("test_operation", log_errors=False)
        async def failing_func():
            raise ValueError("Internal error")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(InternalFailureError):
                await failing_func()

        assert "Unexpected error in test_operation" not in caplog.text

    @pytest.mark.asyncio
    async def test_preserves_function_metadata(self):
        """FastAPI relies on the wrapped signature, so functools.wraps must apply."""

        @handle_api_exceptions("test_operation")
        async def documented_func(arg: int) -> str:
            """This is a test function."""
            return f"result: {arg}"

        assert documented_func.__name__ == "documented_func"
        assert documented_func.__doc__ == "This is a test function."
        assert documented_func.__annotations__["arg"] is int
        assert await documented_func(3) == "result: 3"
