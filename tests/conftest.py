"""Pytest fixtures for queue-retry tests."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.config.settings import Settings
from src.queues.config import RetryConfig
from src.queues.message import QueueMessage, QueueMetadata


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        redis_url="redis://localhost:6379/1",  # Use DB 1 for tests
        monitored_queues="emails, webhooks",
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    """Default backoff bounds with a fast worker loop."""
    return RetryConfig(
        poll_interval_seconds=0.01,
        worker_backoff_base_delay=0.01,
        worker_backoff_max_delay=0.05,
    )


@pytest.fixture
def make_message():
    """Factory for message descriptors at a given delivery count."""

    def _make(delivery_count: int = 1, message_id: str = "msg-1", queue_name: str = "emails"):
        inserted = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
        return QueueMessage(
            id=message_id,
            receipt_token=f"receipt-{delivery_count}",
            delivery_count=delivery_count,
            queue_name=queue_name,
            inserted_at=inserted,
            expires_at=inserted + timedelta(days=7),
            next_visible_at=inserted + timedelta(seconds=30),
            body='{"to": "a@example.com"}',
        )

    return _make


@pytest.fixture
def mock_transport():
    """Queue transport whose calls succeed."""
    transport = AsyncMock()
    transport.update_visibility = AsyncMock(return_value=None)
    transport.get_queue_metadata = AsyncMock(
        side_effect=lambda name: QueueMetadata(queue_name=name, approximate_message_count=0)
    )
    return transport
