"""
Failure orchestration for queue message processing.

Call FailureOrchestrator.handle_failure() from the error path of a queue
handler. It decides, for one failed delivery:

    Transient error
        1. compute the backoff delay from the delivery count
        2. extend the message's visibility timeout (best effort)
        3. run on_transient (its failure is logged and ignored)
        4. raise RetryRequested, unless the retry budget is exhausted,
           in which case processing stops

    Permanent error
        1. run on_permanent
        2. if it succeeds, processing stops
        3. if it raises, the cleanup failure is retried as a transient
           error against the same delivery count

Redelivery is always left to the queue: RetryRequested must propagate to
the hosting consumer so the message is not deleted.

A classifier that keeps calling escalated errors permanent would bounce
between the two paths forever, so escalations within one call are capped
by ``max_escalations``; past the cap the error goes straight to the
transient path, which always terminates.
"""

import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced
from src.queues.backoff import DelayPolicy
from src.queues.config import RetryConfig
from src.queues.errors import (
    Classification,
    DefaultErrorClassifier,
    ErrorClassifier,
    RetryRequested,
    TransientError,
)
from src.queues.message import QueueMessage
from src.queues.transport import QueueTransport
from src.queues.visibility import VisibilityExtender

logger = structlog.get_logger(__name__)

FailureCallback = Callable[[Exception], Awaitable[None]]


class FailureOutcome(str, enum.Enum):
    """Final state of a failure orchestration."""

    RETRY_REQUESTED = "retry_requested"
    STOPPED = "stopped"


@dataclass(frozen=True)
class FailureResolution:
    """
    Result of resolving one failed delivery.

    Attributes:
        outcome: Whether the queue should redeliver the message
        classification: Classification of the error that decided the outcome
        error: That error (an escalated TransientError after a failed cleanup)
        delay_seconds: Backoff applied on the transient path, if any
        escalations: Number of failed permanent-error cleanups
    """

    outcome: FailureOutcome
    classification: Classification
    error: Exception
    delay_seconds: int | None = None
    escalations: int = 0


async def _noop(error: Exception) -> None:
    return None


class FailureOrchestrator:
    """
    Retry/stop decision engine for failed queue deliveries.

    Usage:
        orchestrator = FailureOrchestrator(transport)

        try:
            await process(message)
        except Exception as e:
            await orchestrator.handle_failure(
                message, e,
                on_transient=record_transient,
                on_permanent=park_message,
            )
    """

    def __init__(
        self,
        transport: QueueTransport,
        classifier: ErrorClassifier | None = None,
        config: RetryConfig | None = None,
        policy: DelayPolicy | None = None,
        extender: VisibilityExtender | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            transport: Queue transport used for visibility updates
            classifier: Error classifier (DefaultErrorClassifier if None)
            config: Retry configuration (defaults if None)
            policy: Delay policy (built from config if None)
            extender: Visibility extender (built on transport if None)
        """
        self._config = config or RetryConfig()
        self._classifier = classifier or DefaultErrorClassifier()
        self._policy = policy or DelayPolicy.from_config(self._config)
        self._extender = extender or VisibilityExtender(transport)
        self._max_escalations = self._config.max_escalations
        self._metrics = get_metrics()
        self._tracer = get_tracer(__name__)

    @property
    def policy(self) -> DelayPolicy:
        return self._policy

    async def handle_failure(
        self,
        message: QueueMessage,
        error: Exception,
        on_transient: FailureCallback | None = None,
        on_permanent: FailureCallback | None = None,
    ) -> FailureResolution:
        """
        Handle a failed delivery.

        Returns normally when processing should stop (the message is settled).

        Raises:
            RetryRequested: When the queue must redeliver the message. The
                original error is chained as ``__cause__``.
        """
        resolution = await self.resolve(message, error, on_transient, on_permanent)
        if resolution.outcome is FailureOutcome.RETRY_REQUESTED:
            raise RetryRequested(
                queue_name=message.queue_name,
                message_id=message.id,
                delay_seconds=resolution.delay_seconds,
                reason=str(resolution.error),
            ) from resolution.error
        return resolution

    async def resolve(
        self,
        message: QueueMessage,
        error: Exception,
        on_transient: FailureCallback | None = None,
        on_permanent: FailureCallback | None = None,
    ) -> FailureResolution:
        """Same as handle_failure() but returns the retry decision instead of raising."""
        on_transient = on_transient or _noop
        on_permanent = on_permanent or _noop

        with traced(
            self._tracer,
            "queue.handle_failure",
            {
                "queue.name": message.queue_name,
                "queue.message_id": message.id,
                "queue.delivery_count": message.delivery_count,
            },
        ) as span:
            current = error
            escalations = 0

            while True:
                if escalations > self._max_escalations:
                    classification = Classification.TRANSIENT
                else:
                    classification = self._classifier.classify(current)
                self._metrics.record_failure(message.queue_name, classification.value)

                if classification is Classification.TRANSIENT:
                    resolution = await self._transient_path(
                        message, current, on_transient, escalations
                    )
                    break

                cleanup_error = await self._run_permanent_cleanup(
                    message, current, on_permanent
                )
                if cleanup_error is None:
                    resolution = FailureResolution(
                        outcome=FailureOutcome.STOPPED,
                        classification=Classification.PERMANENT,
                        error=current,
                        escalations=escalations,
                    )
                    break

                escalations += 1
                self._metrics.escalations.labels(queue=message.queue_name).inc()
                logger.error(
                    "Permanent error cleanup failed, escalating",
                    queue=message.queue_name,
                    message_id=message.id,
                    delivery_count=message.delivery_count,
                    escalations=escalations,
                    error=str(cleanup_error),
                )
                escalated = TransientError(str(cleanup_error))
                escalated.__cause__ = cleanup_error
                current = escalated

            span.set_attribute("queue.outcome", resolution.outcome.value)
            span.set_attribute("queue.classification", resolution.classification.value)
            return resolution

    async def _transient_path(
        self,
        message: QueueMessage,
        error: Exception,
        on_transient: FailureCallback,
        escalations: int,
    ) -> FailureResolution:
        delay = self._policy.delay_for(message.delivery_count)
        should_retry = await self._extender.extend_visibility(message, delay)

        try:
            await on_transient(error)
        except Exception as e:
            logger.warning(
                "Transient error callback failed",
                queue=message.queue_name,
                message_id=message.id,
                error=str(e),
            )

        if should_retry:
            self._metrics.retries_scheduled.labels(queue=message.queue_name).inc()
            logger.warning(
                "Transient error, retry scheduled",
                queue=message.queue_name,
                message_id=message.id,
                delivery_count=message.delivery_count,
                delay_seconds=delay,
                error=str(error),
            )
            outcome = FailureOutcome.RETRY_REQUESTED
        else:
            self._metrics.retries_exhausted.labels(queue=message.queue_name).inc()
            logger.error(
                "Maximum number of retries reached, stop processing",
                queue=message.queue_name,
                message_id=message.id,
                delivery_count=message.delivery_count,
                max_retries=self._policy.max_retries,
                error=str(error),
            )
            outcome = FailureOutcome.STOPPED

        return FailureResolution(
            outcome=outcome,
            classification=Classification.TRANSIENT,
            error=error,
            delay_seconds=delay,
            escalations=escalations,
        )

    async def _run_permanent_cleanup(
        self,
        message: QueueMessage,
        error: Exception,
        on_permanent: FailureCallback,
    ) -> Exception | None:
        """Run on_permanent; return the exception it raised, if any."""
        logger.error(
            "Permanent error",
            queue=message.queue_name,
            message_id=message.id,
            error=str(error),
        )
        try:
            await on_permanent(error)
        except Exception as e:
            return e

        self._metrics.permanent_handled.labels(queue=message.queue_name).inc()
        logger.warning(
            "Permanent error handled",
            queue=message.queue_name,
            message_id=message.id,
        )
        return None
