"""
Tests for the API error taxonomy and error message truncation.
"""

import json
from unittest.mock import MagicMock

import pytest

from api.errors import (
    ApiError,
    ForbiddenError,
    InternalFailureError,
    InvalidRequestError,
    NotFoundError,
    UnauthenticatedError,
    api_error_handler,
    truncate_error,
    truncate_string,
)
from config import ERROR_DETAIL_MAX_LENGTH, ERROR_SUMMARY_MAX_LENGTH


class TestErrorTypes:
    """Each error type carries its HTTP status."""

    @pytest.mark.parametrize(
        "error_cls,status",
        [
            (InvalidRequestError, 400),
            (UnauthenticatedError, 401),
            (ForbiddenError, 403),
            (NotFoundError, 404),
            (InternalFailureError, 500),
        ],
    )
    def test_status_codes(self, error_cls, status):
        assert error_cls().status_code == status
        assert issubclass(error_cls, ApiError)

    def test_custom_detail(self):
        assert NotFoundError("Video not found").detail == "Video not found"

    def test_default_detail(self):
        assert InternalFailureError().detail == "Internal server error"

    def test_unauthenticated_sets_www_authenticate(self):
        """401 responses should advertise the Bearer scheme."""
        assert UnauthenticatedError().headers == {"WWW-Authenticate": "Bearer"}


class TestApiErrorHandler:
    """Tests for rendering ApiErrors as JSON responses."""

    @pytest.mark.asyncio
    async def test_renders_detail_and_status(self):
        request = MagicMock()
        response = await api_error_handler(request, ForbiddenError("Video not owned by this user"))

        assert response.status_code == 403
        assert json.loads(response.body) == {"detail": "Video not owned by this user"}

    @pytest.mark.asyncio
    async def test_passes_headers_through(self):
        request = MagicMock()
        response = await api_error_handler(request, UnauthenticatedError())

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_logs_server_errors(self, caplog):
        request = MagicMock()
        request.method = "POST"
        request.url.path = "/api/video_upload/abc"

        with caplog.at_level("ERROR", logger="api.errors"):
            await api_error_handler(request, InternalFailureError())

        assert "/api/video_upload/abc" in caplog.text


class TestTruncateString:
    """Tests for the generic truncate_string function."""

    def test_short_text_unchanged(self):
        assert truncate_string("Short text", 50) == "Short text"

    def test_long_text_gets_ellipsis(self):
        result = truncate_string("a" * 100, 50)
        assert result == "a" * 47 + "..."

    def test_none_passes_through(self):
        assert truncate_string(None, 50) is None

    def test_small_max_length_has_no_ellipsis(self):
        """With max_length < 4 there is no room for an ellipsis."""
        assert truncate_string("abcdefgh", 3) == "abc"
        assert truncate_string("abcdefgh", 1) == "a"


class TestTruncateError:
    """Tests for the truncate_error function."""

    def test_exact_length_not_truncated(self):
        msg = "a" * ERROR_DETAIL_MAX_LENGTH
        assert truncate_error(msg) == msg

    def test_long_ffmpeg_stderr(self):
        """Long subprocess output is cut to the detail limit."""
        stderr = "[mp4 @ 0x55d] moov atom not found\n" * 100
        result = truncate_error(stderr)
        assert len(result) == ERROR_DETAIL_MAX_LENGTH
        assert result.startswith("[mp4 @ 0x55d] moov atom not found")
        assert result.endswith("...")

    def test_summary_length(self):
        result = truncate_error("a" * (ERROR_SUMMARY_MAX_LENGTH + 50), ERROR_SUMMARY_MAX_LENGTH)
        assert len(result) == ERROR_SUMMARY_MAX_LENGTH

    def test_summary_less_than_detail(self):
        assert ERROR_SUMMARY_MAX_LENGTH < ERROR_DETAIL_MAX_LENGTH
