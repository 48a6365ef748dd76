"""Tests for database retry functionality."""

import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from api.db_retry import (
    DatabaseRetryableError,
    db_execute_with_retry,
    execute_with_retry,
    fetch_one_with_retry,
    is_retryable_database_error,
)


class TestIsRetryableDatabaseError:
    """Tests for is_retryable_database_error function."""

    def test_database_is_locked_message(self):
        """Should detect 'database is locked' message."""
        exc = sqlite3.OperationalError("database is locked")
        assert is_retryable_database_error(exc) is True

    def test_sqlite_busy_message(self):
        exc = Exception("SQLITE_BUSY: some other text")
        assert is_retryable_database_error(exc) is True

    def test_case_insensitive(self):
        exc = Exception("DATABASE IS LOCKED")
        assert is_retryable_database_error(exc) is True

    def test_postgres_deadlock(self):
        exc = Exception("deadlock detected")
        assert is_retryable_database_error(exc) is True

    def test_sqlstate_serialization_failure(self):
        """Should detect retryable SQLSTATE codes exposed by the driver."""
        exc = Exception("some driver error")
        exc.sqlstate = "40001"
        assert is_retryable_database_error(exc) is True

    def test_wrapped_cause(self):
        """Should look through wrapped driver exceptions."""
        try:
            try:
                raise sqlite3.OperationalError("database is locked")
            except sqlite3.OperationalError as inner:
                raise RuntimeError("query failed") from inner
        except RuntimeError as outer:
            assert is_retryable_database_error(outer) is True

    def test_other_sqlite_error(self):
        """Should return False for other SQLite errors."""
        exc = sqlite3.OperationalError("no such table: videos")
        assert is_retryable_database_error(exc) is False


class TestExecuteWithRetry:
    """Tests for execute_with_retry function."""

    @pytest.mark.asyncio
    async def test_success_on_first_try(self):
        mock_func = AsyncMock(return_value="success")

        result = await execute_with_retry(mock_func)

        assert result == "success"
        assert mock_func.call_count == 1

    @pytest.mark.asyncio
    async def test_retry_then_succeed(self):
        """Should retry on a locked database and return the eventual result."""
        mock_func = AsyncMock(
            side_effect=[
                sqlite3.OperationalError("database is locked"),
                sqlite3.OperationalError("database is locked"),
                "success",
            ]
        )

        with patch("api.db_retry.asyncio.sleep", new_callable=AsyncMock):
            result = await execute_with_retry(mock_func, max_retries=3, base_delay=0.01)

        assert result == "success"
        assert mock_func.call_count == 3

    @pytest.mark.asyncio
    async def test_exhaust_retries(self):
        """Should raise DatabaseRetryableError after exhausting retries."""
        mock_func = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))

        with patch("api.db_retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(DatabaseRetryableError):
                await execute_with_retry(mock_func, max_retries=2, base_delay=0.01)

        assert mock_func.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self):
        mock_func = AsyncMock(side_effect=ValueError("bad value"))

        with pytest.raises(ValueError):
            await execute_with_retry(mock_func)

        assert mock_func.call_count == 1

    @pytest.mark.asyncio
    async def test_backoff_delays_capped(self):
        """Delays should grow but never exceed max_delay (plus jitter)."""
        mock_func = AsyncMock(side_effect=sqlite3.OperationalError("database is locked"))
        sleep_mock = AsyncMock()

        with patch("api.db_retry.asyncio.sleep", sleep_mock):
            with pytest.raises(DatabaseRetryableError):
                await execute_with_retry(mock_func, max_retries=5, base_delay=0.1, max_delay=0.3)

        delays = [call.args[0] for call in sleep_mock.call_args_list]
        assert len(delays) == 5
        assert all(d <= 0.3 * 1.25 for d in delays)


class TestQueryHelpers:
    """Tests for the fetch/execute wrappers."""

    @pytest.mark.asyncio
    async def test_fetch_one_uses_given_database(self):
        database = MagicMock()
        database.fetch_one = AsyncMock(return_value={"id": "abc"})

        result = await fetch_one_with_retry(database, "SELECT 1")

        assert result == {"id": "abc"}
        database.fetch_one.assert_awaited_once_with("SELECT 1")

    @pytest.mark.asyncio
    async def test_execute_retries_locked_database(self):
        database = MagicMock()
        database.execute = AsyncMock(side_effect=[sqlite3.OperationalError("database is locked"), 1])

        with patch("api.db_retry.asyncio.sleep", new_callable=AsyncMock):
            result = await db_execute_with_retry(database, "UPDATE videos SET title = 'x'")

        assert result == 1
        assert database.execute.await_count == 2
