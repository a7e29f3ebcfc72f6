"""Tests for the queue message descriptor."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.queues.message import QueueMessage, QueueMetadata


@pytest.fixture
def raw_metadata() -> dict:
    """Metadata as reported by a queue service."""
    return {
        "id": "5f149158-92fa-4aaf-84c9-667750fdfaad",
        "popReceipt": "AgAAAAMAAAAAAAAAtS7dxwYV0wE=",
        "dequeueCount": 1,
        "queue": "created-messages",
        "insertionTime": "2026-08-14T13:58:17+00:00",
        "expirationTime": "2026-08-21T13:58:17+00:00",
        "nextVisibleTime": "2026-08-14T14:08:19+00:00",
        "messageText": '{"messageId": "5991ac7944430d3670b81b74"}',
    }


class TestFromMetadata:
    """Tests for QueueMessage.from_metadata()."""

    def test_decodes_transport_names(self, raw_metadata):
        message = QueueMessage.from_metadata(raw_metadata)

        assert message.id == "5f149158-92fa-4aaf-84c9-667750fdfaad"
        assert message.receipt_token == "AgAAAAMAAAAAAAAAtS7dxwYV0wE="
        assert message.delivery_count == 1
        assert message.queue_name == "created-messages"
        assert message.inserted_at == datetime(2026, 8, 14, 13, 58, 17, tzinfo=timezone.utc)
        assert message.body == '{"messageId": "5991ac7944430d3670b81b74"}'

    def test_queue_name_override(self, raw_metadata):
        message = QueueMessage.from_metadata(raw_metadata, queue_name="emails")
        assert message.queue_name == "emails"

    def test_optional_fields_default_to_none(self):
        message = QueueMessage.from_metadata(
            {"id": "m1", "popReceipt": "r1", "dequeueCount": 3}
        )
        assert message.delivery_count == 3
        assert message.queue_name == ""
        assert message.expires_at is None
        assert message.body is None

    def test_missing_receipt_is_rejected(self, raw_metadata):
        del raw_metadata["popReceipt"]
        with pytest.raises(ValidationError):
            QueueMessage.from_metadata(raw_metadata)

    def test_zero_delivery_count_is_rejected(self, raw_metadata):
        """Delivery counts start at 1."""
        raw_metadata["dequeueCount"] = 0
        with pytest.raises(ValidationError):
            QueueMessage.from_metadata(raw_metadata)


class TestQueueMessage:
    """Tests for descriptor behaviour."""

    def test_is_immutable(self, make_message):
        message = make_message()
        with pytest.raises(ValidationError):
            message.delivery_count = 2

    def test_accepts_python_field_names(self, make_message):
        message = make_message(delivery_count=4)
        assert message.delivery_count == 4
        assert message.receipt_token == "receipt-4"

    def test_describe_omits_receipt(self, make_message):
        summary = make_message(delivery_count=2).describe()
        assert "id = msg-1" in summary
        assert "dequeueCount = 2" in summary
        assert "receipt" not in summary


class TestQueueMetadata:
    def test_defaults_to_zero(self):
        assert QueueMetadata(queue_name="emails").approximate_message_count == 0
