"""
Transport-independent view of a dequeued message.

A QueueMessage is built fresh for every delivery and never mutated:
extending visibility or deleting the message changes transport state,
not the descriptor. Queue services report metadata under their own
camelCase names (``dequeueCount``, ``popReceipt``, ...); those names are
accepted as aliases so raw metadata can be validated directly.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class QueueMessage(BaseModel):
    """
    Queue message descriptor.

    Attributes:
        id: Queue-assigned id, stable across redeliveries
        receipt_token: Opaque token required to update or delete the message;
            changes on every delivery
        delivery_count: 1-based number of times the message became visible
        queue_name: Logical queue, used for logging and metrics only
        inserted_at / expires_at / next_visible_at: Informational timestamps
        body: Raw message text, if the transport provides it
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    receipt_token: str = Field(..., min_length=1, alias="popReceipt")
    delivery_count: int = Field(..., ge=1, alias="dequeueCount")
    queue_name: str = Field(default="", alias="queue")
    inserted_at: datetime | None = Field(default=None, alias="insertionTime")
    expires_at: datetime | None = Field(default=None, alias="expirationTime")
    next_visible_at: datetime | None = Field(default=None, alias="nextVisibleTime")
    body: str | None = Field(default=None, alias="messageText")

    @classmethod
    def from_metadata(
        cls,
        metadata: Mapping[str, Any],
        queue_name: str | None = None,
    ) -> "QueueMessage":
        """
        Validate raw queue metadata into a descriptor.

        Args:
            metadata: Transport metadata, keyed by field or alias name
            queue_name: Overrides any queue name found in the metadata

        Raises:
            pydantic.ValidationError: If id, receipt or delivery count
                are missing or invalid.
        """
        data = dict(metadata)
        if queue_name is not None:
            data.pop("queue", None)
            data["queue_name"] = queue_name
        return cls.model_validate(data)

    def describe(self) -> str:
        """One-line summary for log messages."""
        return "; ".join(
            [
                f"queue = {self.queue_name}",
                f"id = {self.id}",
                f"dequeueCount = {self.delivery_count}",
                f"insertionTime = {self.inserted_at}",
                f"expirationTime = {self.expires_at}",
                f"nextVisibleTime = {self.next_visible_at}",
            ]
        )


class QueueMetadata(BaseModel):
    """Queue-level metadata returned by the transport."""

    queue_name: str
    approximate_message_count: int = Field(default=0, ge=0)
