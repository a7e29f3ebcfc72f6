"""
Failure handling for at-least-once queue consumers.

Decides, for every failed delivery, whether the message should be
redelivered, how long to wait, and when to give up.

Classes:
    FailureOrchestrator: Classifies failures and drives retry/cleanup
    DelayPolicy: Exponential backoff keyed by delivery count
    VisibilityExtender: Best-effort visibility timeout updates
    QueueMessage: Transport-independent message descriptor
    RedisVisibilityQueue: Redis queue with visibility timeouts
    QueueWorker: Consumer loop hosting the orchestrator
    QueueDepthReporter: Queue length sampling
    RetryConfig: Backoff and worker configuration

Example:
    from src.queues import FailureOrchestrator, PermanentError, RedisVisibilityQueue

    async with RedisVisibilityQueue() as queue:
        orchestrator = FailureOrchestrator(queue)

        for message in await queue.receive("emails"):
            try:
                await send(message.body)
            except Exception as e:
                await orchestrator.handle_failure(
                    message, e, on_permanent=park_message
                )
"""

from src.queues.backoff import MAX_RETRIES, DelayPolicy, compute_delay, derive_max_retries
from src.queues.config import RetryConfig
from src.queues.errors import (
    Classification,
    DefaultErrorClassifier,
    ErrorClassifier,
    PermanentError,
    ReceiptMismatchError,
    RetryRequested,
    TransientError,
)
from src.queues.message import QueueMessage, QueueMetadata
from src.queues.monitor import QueueDepthReporter
from src.queues.orchestrator import FailureOrchestrator, FailureOutcome, FailureResolution
from src.queues.redis_queue import RedisVisibilityQueue
from src.queues.transport import QueueTransport
from src.queues.visibility import VisibilityExtender
from src.queues.worker import QueueWorker

__all__ = [
    "MAX_RETRIES",
    "Classification",
    "DefaultErrorClassifier",
    "DelayPolicy",
    "ErrorClassifier",
    "FailureOrchestrator",
    "FailureOutcome",
    "FailureResolution",
    "PermanentError",
    "QueueDepthReporter",
    "QueueMessage",
    "QueueMetadata",
    "QueueTransport",
    "QueueWorker",
    "ReceiptMismatchError",
    "RedisVisibilityQueue",
    "RetryConfig",
    "RetryRequested",
    "TransientError",
    "VisibilityExtender",
    "compute_delay",
    "derive_max_retries",
]
