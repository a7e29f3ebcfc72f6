"""
Queue worker - receives messages and settles them through the failure orchestrator.

Runs as a long-lived service that:
1. Receives leased batches from a RedisVisibilityQueue
2. Parks messages past the poison threshold on the poison queue
3. Calls the message handler
4. Deletes the message on success or when the orchestrator stops processing
5. Leaves the message leased when the orchestrator requests a retry, so
   it reappears after the backoff delay with a higher delivery count
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from src.observability.logging import bind_context, clear_context
from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced
from src.queues.backoff import ReconnectBackoff
from src.queues.config import RetryConfig
from src.queues.errors import ErrorClassifier, ReceiptMismatchError, RetryRequested
from src.queues.message import QueueMessage
from src.queues.orchestrator import FailureCallback, FailureOrchestrator
from src.queues.redis_queue import RedisVisibilityQueue

logger = structlog.get_logger(__name__)

MessageHandler = Callable[[QueueMessage], Awaitable[None]]


class QueueWorker:
    """
    Worker that processes messages from one queue.

    Features:
    - Backoff-scheduled redelivery of transient failures
    - Cleanup callback and escalation for permanent failures
    - Poison queue for messages delivered too many times
    - Supervised loop with reconnect backoff
    - Metrics and tracing per message

    Usage:
        async def handle(message: QueueMessage) -> None:
            await send_email(json.loads(message.body))

        worker = QueueWorker("emails", handle, on_permanent=report_bad_payload)
        await worker.start()  # Runs until stopped
    """

    def __init__(
        self,
        queue_name: str,
        handler: MessageHandler,
        queue: RedisVisibilityQueue | None = None,
        orchestrator: FailureOrchestrator | None = None,
        classifier: ErrorClassifier | None = None,
        config: RetryConfig | None = None,
        on_transient: FailureCallback | None = None,
        on_permanent: FailureCallback | None = None,
    ):
        """
        Initialize the worker.

        Args:
            queue_name: Queue to consume
            handler: Async callable that processes one message; raises on failure
            queue: Queue transport (or create from config)
            orchestrator: Failure orchestrator (or create on the queue)
            classifier: Error classifier for the default orchestrator
            config: Retry configuration
            on_transient: Callback run for transient failures
            on_permanent: Cleanup callback run for permanent failures
        """
        self._queue_name = queue_name
        self._handler = handler
        self._config = config or RetryConfig()
        self._queue = queue or RedisVisibilityQueue(config=self._config)
        self._orchestrator = orchestrator or FailureOrchestrator(
            self._queue,
            classifier=classifier,
            config=self._config,
        )
        self._on_transient = on_transient
        self._on_permanent = on_permanent

        self._running = False
        self._metrics = get_metrics()
        self._tracer = get_tracer(__name__)

        logger.info(
            "QueueWorker initialized",
            queue=queue_name,
            max_retries=self._orchestrator.policy.max_retries,
            poison_threshold=self._config.poison_threshold,
        )

    async def start(self) -> None:
        """
        Start the worker with a supervised retry loop.

        Reconnects on failures using exponential backoff. Exits after
        worker_max_consecutive_failures or on CancelledError.
        """
        self._running = True
        backoff = ReconnectBackoff(
            base_delay=self._config.worker_backoff_base_delay,
            max_delay=self._config.worker_backoff_max_delay,
        )

        logger.info("Starting queue worker", queue=self._queue_name)

        while self._running:
            try:
                await self._queue.connect()
                await self._process_loop(backoff)
            except asyncio.CancelledError:
                logger.info("Queue worker cancelled", queue=self._queue_name)
                break
            except Exception as e:
                if backoff.attempt >= self._config.worker_max_consecutive_failures:
                    logger.error(
                        "Queue worker exceeded max consecutive failures",
                        queue=self._queue_name,
                        failures=backoff.attempt,
                        error=str(e),
                    )
                    raise
                delay = backoff.next_delay()
                logger.warning(
                    "Queue worker error, reconnecting",
                    queue=self._queue_name,
                    error=str(e),
                    attempt=backoff.attempt,
                    retry_delay=round(delay, 1),
                )
                await self._queue.close()
                await asyncio.sleep(delay)

        await self._queue.close()

    async def stop(self) -> None:
        """Stop the worker after the current batch."""
        logger.info("Stopping queue worker", queue=self._queue_name)
        self._running = False

    async def _process_loop(self, backoff: ReconnectBackoff) -> None:
        """Main processing loop. Each completed batch clears the failure streak."""
        while self._running:
            processed = await self.run_once()
            backoff.reset()
            if processed == 0:
                await asyncio.sleep(self._config.poll_interval_seconds)

    async def run_once(self) -> int:
        """
        Receive and process a single batch.

        Returns:
            Number of messages received
        """
        messages = await self._queue.receive(
            self._queue_name,
            count=self._config.receive_batch_size,
            visibility_timeout_seconds=self._config.visibility_timeout_seconds,
        )
        for message in messages:
            await self.process_message(message)
        return len(messages)

    async def process_message(self, message: QueueMessage) -> str:
        """
        Process one delivery and settle it.

        Returns:
            Outcome status: success, retry, stopped, poison, or skipped when
            the lease expired before a poison move
        """
        if message.delivery_count > self._config.poison_threshold:
            return await self._park(message)

        bind_context(queue=self._queue_name, message_id=message.id)
        start_time = time.monotonic()
        try:
            with traced(
                self._tracer,
                "queue.process_message",
                {
                    "queue.name": self._queue_name,
                    "queue.message_id": message.id,
                    "queue.delivery_count": message.delivery_count,
                },
            ):
                status = await self._handle(message)
        finally:
            clear_context()

        self._metrics.record_processed(
            self._queue_name, status, latency=time.monotonic() - start_time
        )
        return status

    async def _park(self, message: QueueMessage) -> str:
        """Move a message past the poison threshold to the poison queue."""
        try:
            await self._queue.move_to_poison(message)
        except ReceiptMismatchError as e:
            # Lease expired; the next delivery is parked by whoever receives it
            logger.warning(
                "Could not move message to poison queue",
                queue=self._queue_name,
                message_id=message.id,
                error=str(e),
            )
            self._metrics.record_processed(self._queue_name, "skipped")
            return "skipped"

        self._metrics.record_processed(self._queue_name, "poison")
        return "poison"

    async def _handle(self, message: QueueMessage) -> str:
        try:
            await self._handler(message)
        except Exception as e:
            try:
                await self._orchestrator.handle_failure(
                    message,
                    e,
                    on_transient=self._on_transient,
                    on_permanent=self._on_permanent,
                )
            except RetryRequested as retry:
                logger.info(
                    "Message left for redelivery",
                    delivery_count=message.delivery_count,
                    delay_seconds=retry.delay_seconds,
                )
                return "retry"
            await self._settle(message)
            return "stopped"

        await self._settle(message)
        logger.debug("Message processed", delivery_count=message.delivery_count)
        return "success"

    async def _settle(self, message: QueueMessage) -> None:
        """Delete a message that needs no further delivery."""
        try:
            await self._queue.delete(self._queue_name, message.id, message.receipt_token)
        except ReceiptMismatchError as e:
            # Lease expired and another consumer picked it up; it settles there
            logger.warning("Could not delete message", error=str(e))
