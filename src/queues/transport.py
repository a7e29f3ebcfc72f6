"""Outbound contract between the failure-handling engine and a queue service."""

from typing import Protocol, runtime_checkable

from src.queues.message import QueueMetadata


@runtime_checkable
class QueueTransport(Protocol):
    """
    Operations the engine needs from an at-least-once queue.

    Implementations may be shared by concurrent message handlers and
    must be safe for that; the engine adds no locking of its own.
    """

    async def update_visibility(
        self,
        queue_name: str,
        message_id: str,
        receipt_token: str,
        delay_seconds: int,
    ) -> None:
        """Make the message invisible until now + delay_seconds. Raises on failure."""
        ...

    async def get_queue_metadata(self, queue_name: str) -> QueueMetadata:
        """Return queue-level metadata such as the approximate message count."""
        ...
