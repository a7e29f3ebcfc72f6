"""
Queue depth reporting.

Samples the approximate length of each monitored queue and publishes it
as the ``queue_retry_queue_depth`` gauge. One best-effort sample per
queue and call; a failing queue is logged and skipped.
"""

import asyncio

import structlog

from src.observability.metrics import get_metrics
from src.queues.transport import QueueTransport

logger = structlog.get_logger(__name__)


class QueueDepthReporter:
    """
    Periodic queue length sampler.

    Usage:
        reporter = QueueDepthReporter(queue, ["emails", "webhooks"])
        depths = await reporter.report()      # single sample
        await reporter.run(interval_seconds=60)  # until stop()
    """

    def __init__(self, transport: QueueTransport, queue_names: list[str]):
        self._transport = transport
        self._queue_names = list(queue_names)
        self._metrics = get_metrics()
        self._stopped = False

    async def report(self) -> dict[str, int]:
        """
        Sample every monitored queue concurrently.

        Returns:
            Queue name -> approximate message count, for queues that
            answered. Failed queues are left out.
        """
        results = await asyncio.gather(
            *(self._sample(name) for name in self._queue_names)
        )
        return {name: depth for name, depth in results if depth is not None}

    async def _sample(self, queue_name: str) -> tuple[str, int | None]:
        try:
            metadata = await self._transport.get_queue_metadata(queue_name)
        except Exception as e:
            self._metrics.queue_depth_errors.labels(queue=queue_name).inc()
            logger.error("Error in queue monitor", queue=queue_name, error=str(e))
            return queue_name, None

        depth = metadata.approximate_message_count or 0
        logger.debug("Queue length sampled", queue=queue_name, length=depth)
        self._metrics.set_queue_depth(queue_name, depth)
        return queue_name, depth

    async def run(self, interval_seconds: float) -> None:
        """
        Report every interval_seconds until stop() is called.

        A stop() issued before run() starts is honoured.
        """
        while not self._stopped:
            await self.report()
            await asyncio.sleep(interval_seconds)

    def stop(self) -> None:
        self._stopped = True
