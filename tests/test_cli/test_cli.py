"""Tests for the queue-retry CLI commands."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from src.cli import main


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_queue():
    """RedisVisibilityQueue usable as an async context manager."""
    queue = MagicMock()
    queue.__aenter__ = AsyncMock(return_value=queue)
    queue.__aexit__ = AsyncMock(return_value=None)
    queue.enqueue = AsyncMock(return_value="abc123")
    queue.health_check = AsyncMock(return_value=True)
    return queue


class TestEnqueue:
    def test_enqueue_prints_id(self, runner, mock_queue):
        with patch("src.queues.redis_queue.RedisVisibilityQueue", return_value=mock_queue):
            result = runner.invoke(main, ["enqueue", "emails", "hello", "--delay", "5"])

        assert result.exit_code == 0, result.output
        assert "Enqueued message abc123 on emails" in result.output
        mock_queue.enqueue.assert_awaited_once_with(
            "emails", "hello", visibility_delay_seconds=5
        )


class TestDepth:
    def test_depth_lists_queues(self, runner, mock_queue):
        async def metadata(name):
            if name == "cli-broken":
                raise ConnectionError("refused")
            return MagicMock(approximate_message_count=12)

        mock_queue.get_queue_metadata = AsyncMock(side_effect=metadata)

        with patch("src.queues.redis_queue.RedisVisibilityQueue", return_value=mock_queue):
            result = runner.invoke(main, ["depth", "cli-emails", "cli-broken"])

        assert result.exit_code == 0, result.output
        assert "Queue Depth:" in result.output
        assert "cli-emails: 12" in result.output
        assert "cli-broken: unavailable" in result.output

    def test_depth_without_queues_fails(self, runner, monkeypatch):
        from src.config.settings import get_settings

        monkeypatch.setenv("MONITORED_QUEUES", "")
        get_settings.cache_clear()
        try:
            result = runner.invoke(main, ["depth"])
        finally:
            get_settings.cache_clear()

        assert result.exit_code == 1
        assert "MONITORED_QUEUES is empty" in result.output


class TestHealth:
    def test_healthy(self, runner, mock_queue):
        with patch("src.queues.redis_queue.RedisVisibilityQueue", return_value=mock_queue):
            result = runner.invoke(main, ["health"])

        assert result.exit_code == 0
        assert "✓ redis: True" in result.output

    def test_unhealthy(self, runner, mock_queue):
        mock_queue.health_check = AsyncMock(return_value=False)

        with patch("src.queues.redis_queue.RedisVisibilityQueue", return_value=mock_queue):
            result = runner.invoke(main, ["health"])

        assert result.exit_code == 1
        assert "✗ redis: False" in result.output

    def test_connection_error_is_unhealthy(self, runner, mock_queue):
        mock_queue.__aenter__ = AsyncMock(side_effect=ConnectionError("refused"))

        with patch("src.queues.redis_queue.RedisVisibilityQueue", return_value=mock_queue):
            result = runner.invoke(main, ["health"])

        assert result.exit_code == 1
