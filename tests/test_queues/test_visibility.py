"""Tests for best-effort visibility timeout extension."""

from unittest.mock import AsyncMock

from prometheus_client import REGISTRY

from src.queues.visibility import VisibilityExtender


def _update_errors(queue: str) -> float:
    return (
        REGISTRY.get_sample_value(
            "queue_retry_visibility_update_errors_total", {"queue": queue}
        )
        or 0.0
    )


class TestVisibilityExtender:
    """Tests for VisibilityExtender.extend_visibility()."""

    async def test_updates_visibility_with_delay(self, mock_transport, make_message):
        message = make_message(delivery_count=3)
        extender = VisibilityExtender(mock_transport)

        assert await extender.extend_visibility(message, 3) is True

        mock_transport.update_visibility.assert_awaited_once_with(
            "emails", "msg-1", "receipt-3", 3
        )

    async def test_transport_error_still_reports_dispatch(self, make_message):
        """A failed update must not stop the caller from retrying."""
        transport = AsyncMock()
        transport.update_visibility = AsyncMock(side_effect=ConnectionError("refused"))
        extender = VisibilityExtender(transport)
        before = _update_errors("vis-errors")

        result = await extender.extend_visibility(
            make_message(queue_name="vis-errors"), 1
        )

        assert result is True
        transport.update_visibility.assert_awaited_once()
        assert _update_errors("vis-errors") == before + 1

    async def test_exhausted_budget_skips_transport(self, mock_transport, make_message):
        extender = VisibilityExtender(mock_transport)

        assert await extender.extend_visibility(make_message(delivery_count=22), None) is False

        mock_transport.update_visibility.assert_not_called()
