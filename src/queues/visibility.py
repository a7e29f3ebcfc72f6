"""
Best-effort visibility timeout extension.

Pushing a failed message's next visible time forward is what turns a
redelivery into a delayed retry. A failed extension only means the
message may come back sooner than planned, never that it is lost, so
transport errors are logged and swallowed here.
"""

import structlog

from src.observability.metrics import get_metrics
from src.queues.message import QueueMessage
from src.queues.transport import QueueTransport

logger = structlog.get_logger(__name__)


class VisibilityExtender:
    """
    Delays the next delivery of a message through the queue transport.

    Usage:
        extender = VisibilityExtender(transport)
        should_retry = await extender.extend_visibility(message, delay_seconds)
    """

    def __init__(self, transport: QueueTransport):
        self._transport = transport
        self._metrics = get_metrics()

    async def extend_visibility(
        self,
        message: QueueMessage,
        delay_seconds: int | None,
    ) -> bool:
        """
        Set the message's next visible time to now + delay_seconds.

        Args:
            message: Descriptor of the failed delivery
            delay_seconds: Delay from the delay policy; None means the
                retry budget is exhausted

        Returns:
            True once the update was attempted, even if the transport
            reported an error. False only when delay_seconds is None,
            in which case the transport is not called.
        """
        if delay_seconds is None:
            logger.debug(
                "Maximum number of retries reached, visibility not extended",
                queue=message.queue_name,
                message_id=message.id,
                delivery_count=message.delivery_count,
            )
            return False

        try:
            await self._transport.update_visibility(
                message.queue_name,
                message.id,
                message.receipt_token,
                delay_seconds,
            )
        except Exception as e:
            self._metrics.visibility_update_errors.labels(queue=message.queue_name).inc()
            logger.error(
                "Visibility timeout update failed",
                queue=message.queue_name,
                message_id=message.id,
                error=str(e),
            )
        else:
            logger.debug(
                "Visibility timeout updated",
                queue=message.queue_name,
                message_id=message.id,
                delivery_count=message.delivery_count,
                delay_seconds=delay_seconds,
            )

        return True
