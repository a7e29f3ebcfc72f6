"""
Tests for the failure orchestrator.

Covers the four decision paths:
- Transient error within budget -> visibility extended, retry requested
- Transient error past budget -> processing stops, no visibility update
- Permanent error with successful cleanup -> processing stops
- Permanent error with failing cleanup -> escalated to the transient path
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.queues.backoff import MAX_RETRIES
from src.queues.config import RetryConfig
from src.queues.errors import (
    Classification,
    PermanentError,
    RetryRequested,
    TransientError,
)
from src.queues.orchestrator import FailureOrchestrator, FailureOutcome


class AlwaysPermanent:
    """Classifier that ignores transient tags."""

    def classify(self, error):
        return Classification.PERMANENT


@pytest.fixture
def orchestrator(mock_transport):
    return FailureOrchestrator(mock_transport)


class TestTransientPath:
    """Transient errors schedule a delayed redelivery until the budget runs out."""

    async def test_first_delivery_requests_retry(self, orchestrator, mock_transport, make_message):
        on_transient = AsyncMock()
        error = TransientError("connection reset")

        with pytest.raises(RetryRequested) as exc_info:
            await orchestrator.handle_failure(
                make_message(delivery_count=1), error, on_transient=on_transient
            )

        assert exc_info.value.delay_seconds == 1
        assert exc_info.value.__cause__ is error
        assert str(exc_info.value) == "Retry|emails|connection reset"
        mock_transport.update_visibility.assert_awaited_once_with(
            "emails", "msg-1", "receipt-1", 1
        )
        on_transient.assert_awaited_once_with(error)

    async def test_delay_follows_delivery_count(self, orchestrator, mock_transport, make_message):
        resolution = await orchestrator.resolve(make_message(delivery_count=10), TimeoutError())

        assert resolution.outcome is FailureOutcome.RETRY_REQUESTED
        assert resolution.delay_seconds == 292
        mock_transport.update_visibility.assert_awaited_once_with(
            "emails", "msg-1", "receipt-10", 292
        )

    async def test_last_budgeted_delivery_still_retries(self, orchestrator, make_message):
        resolution = await orchestrator.resolve(
            make_message(delivery_count=MAX_RETRIES), TransientError("busy")
        )
        assert resolution.outcome is FailureOutcome.RETRY_REQUESTED

    async def test_exhausted_budget_stops(self, orchestrator, mock_transport, make_message):
        on_transient = AsyncMock()

        resolution = await orchestrator.handle_failure(
            make_message(delivery_count=MAX_RETRIES + 1),
            TransientError("still down"),
            on_transient=on_transient,
        )

        assert resolution.outcome is FailureOutcome.STOPPED
        assert resolution.classification is Classification.TRANSIENT
        assert resolution.delay_seconds is None
        mock_transport.update_visibility.assert_not_called()
        on_transient.assert_awaited_once()

    async def test_visibility_failure_does_not_change_decision(self, make_message):
        transport = AsyncMock()
        transport.update_visibility = AsyncMock(side_effect=ConnectionError("refused"))
        orchestrator = FailureOrchestrator(transport)

        with pytest.raises(RetryRequested) as exc_info:
            await orchestrator.handle_failure(make_message(delivery_count=1), TransientError("x"))

        assert exc_info.value.delay_seconds == 1
        transport.update_visibility.assert_awaited_once()

    async def test_on_transient_failure_is_swallowed(self, orchestrator, make_message):
        on_transient = AsyncMock(side_effect=RuntimeError("telemetry down"))

        with pytest.raises(RetryRequested):
            await orchestrator.handle_failure(
                make_message(), TransientError("x"), on_transient=on_transient
            )

        on_transient.assert_awaited_once()

    async def test_visibility_extended_before_callback(self, mock_transport, make_message):
        calls = []
        mock_transport.update_visibility = AsyncMock(
            side_effect=lambda *args: calls.append("update_visibility")
        )

        async def on_transient(error):
            calls.append("on_transient")

        orchestrator = FailureOrchestrator(mock_transport)
        with pytest.raises(RetryRequested):
            await orchestrator.handle_failure(
                make_message(), TransientError("x"), on_transient=on_transient
            )

        assert calls == ["update_visibility", "on_transient"]


class TestPermanentPath:
    """Permanent errors run the cleanup callback; failed cleanups escalate."""

    async def test_successful_cleanup_stops(self, orchestrator, mock_transport, make_message):
        on_permanent = AsyncMock()
        on_transient = AsyncMock()
        error = PermanentError("invalid payload")

        resolution = await orchestrator.handle_failure(
            make_message(), error, on_transient=on_transient, on_permanent=on_permanent
        )

        assert resolution.outcome is FailureOutcome.STOPPED
        assert resolution.classification is Classification.PERMANENT
        assert resolution.escalations == 0
        on_permanent.assert_awaited_once_with(error)
        on_transient.assert_not_called()
        mock_transport.update_visibility.assert_not_called()

    async def test_failed_cleanup_escalates_to_retry(self, orchestrator, mock_transport, make_message):
        cleanup_error = ConnectionError("store unavailable")
        on_permanent = AsyncMock(side_effect=cleanup_error)
        on_transient = AsyncMock()

        with pytest.raises(RetryRequested) as exc_info:
            await orchestrator.handle_failure(
                make_message(delivery_count=2),
                PermanentError("invalid payload"),
                on_transient=on_transient,
                on_permanent=on_permanent,
            )

        # Same delivery count drives the escalated retry
        assert exc_info.value.delay_seconds == 2
        mock_transport.update_visibility.assert_awaited_once_with(
            "emails", "msg-1", "receipt-2", 2
        )
        escalated = on_transient.await_args.args[0]
        assert isinstance(escalated, TransientError)
        assert str(escalated) == "store unavailable"
        assert escalated.__cause__ is cleanup_error

    async def test_failed_cleanup_past_budget_stops(self, orchestrator, mock_transport, make_message):
        on_permanent = AsyncMock(side_effect=RuntimeError("store unavailable"))

        resolution = await orchestrator.handle_failure(
            make_message(delivery_count=MAX_RETRIES + 1),
            PermanentError("invalid payload"),
            on_permanent=on_permanent,
        )

        assert resolution.outcome is FailureOutcome.STOPPED
        assert resolution.classification is Classification.TRANSIENT
        assert resolution.escalations == 1
        mock_transport.update_visibility.assert_not_called()

    async def test_escalation_is_bounded(self, mock_transport, make_message):
        """A classifier that never says transient cannot loop forever."""
        on_permanent = AsyncMock(side_effect=RuntimeError("store unavailable"))
        orchestrator = FailureOrchestrator(
            mock_transport,
            classifier=AlwaysPermanent(),
            config=RetryConfig(max_escalations=2),
        )

        resolution = await orchestrator.resolve(
            make_message(), PermanentError("invalid payload"), on_permanent=on_permanent
        )

        assert resolution.outcome is FailureOutcome.RETRY_REQUESTED
        assert resolution.escalations == 3
        # Original attempt plus two re-classified escalations
        assert on_permanent.await_count == 3

    async def test_zero_escalations_skips_reclassification(self, mock_transport, make_message):
        on_permanent = AsyncMock(side_effect=RuntimeError("store unavailable"))
        orchestrator = FailureOrchestrator(
            mock_transport,
            classifier=AlwaysPermanent(),
            config=RetryConfig(max_escalations=0),
        )

        resolution = await orchestrator.resolve(
            make_message(), PermanentError("invalid payload"), on_permanent=on_permanent
        )

        assert resolution.outcome is FailureOutcome.RETRY_REQUESTED
        assert on_permanent.await_count == 1


class TestClassifierInjection:
    """The orchestrator defers every classification to the injected classifier."""

    async def test_uses_injected_classifier(self, mock_transport, make_message):
        classifier = MagicMock()
        classifier.classify.return_value = Classification.PERMANENT
        orchestrator = FailureOrchestrator(mock_transport, classifier=classifier)
        error = TimeoutError("would be transient by default")

        resolution = await orchestrator.resolve(make_message(), error)

        classifier.classify.assert_called_once_with(error)
        assert resolution.outcome is FailureOutcome.STOPPED

    async def test_callbacks_are_optional(self, orchestrator, make_message):
        resolution = await orchestrator.handle_failure(make_message(), PermanentError("x"))
        assert resolution.outcome is FailureOutcome.STOPPED
