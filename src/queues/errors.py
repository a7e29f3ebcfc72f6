"""
Error taxonomy and classification for queue message failures.

Every processing failure is either transient (worth retrying later) or
permanent (retrying will not help). The failure orchestrator never
inspects errors itself; it asks an injected ErrorClassifier.

Handlers can tag failures explicitly by raising TransientError or
PermanentError. DefaultErrorClassifier honours those tags and falls back
to the exception type for anything untagged.
"""

import asyncio
import enum
from typing import Protocol, runtime_checkable

import redis.exceptions
from pydantic import ValidationError


class Classification(str, enum.Enum):
    """Outcome of classifying a failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


class QueueProcessingError(Exception):
    """Base class for tagged processing failures."""


class TransientError(QueueProcessingError):
    """Failure expected to go away on a later attempt (timeouts, contention)."""


class PermanentError(QueueProcessingError):
    """Failure that retrying cannot fix (bad payload, business rejection, not found)."""


class RetryRequested(Exception):
    """
    Raised by the failure orchestrator to request native redelivery.

    The hosting consumer must let this propagate (or otherwise leave the
    message undeleted) so the queue makes the message visible again after
    the scheduled delay.

    Attributes:
        queue_name: Queue the message belongs to
        message_id: Id of the message to redeliver
        delay_seconds: Delay applied to the message's visibility timeout
    """

    def __init__(
        self,
        queue_name: str,
        message_id: str,
        delay_seconds: int,
        reason: str,
    ):
        super().__init__(f"Retry|{queue_name}|{reason}")
        self.queue_name = queue_name
        self.message_id = message_id
        self.delay_seconds = delay_seconds


class ReceiptMismatchError(Exception):
    """Raised when a receipt token no longer matches the stored message."""


@runtime_checkable
class ErrorClassifier(Protocol):
    """Decides whether a failure is transient or permanent. Must be pure."""

    def classify(self, error: BaseException) -> Classification: ...


# Untagged exceptions that usually clear up on their own
TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    redis.exceptions.ConnectionError,
    redis.exceptions.TimeoutError,
    redis.exceptions.BusyLoadingError,
)

# Untagged exceptions that signal bad data
PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    ValidationError,
    ValueError,
    TypeError,
    LookupError,
)


class DefaultErrorClassifier:
    """
    Type-based classifier.

    Order of precedence:
        1. Explicit TransientError / PermanentError tags
        2. Timeouts and connection errors -> transient
        3. Validation, value, type and lookup errors -> permanent
        4. Anything else -> transient (the retry budget still bounds it)
    """

    def __init__(
        self,
        transient_types: tuple[type[BaseException], ...] = TRANSIENT_TYPES,
        permanent_types: tuple[type[BaseException], ...] = PERMANENT_TYPES,
    ):
        self._transient_types = transient_types
        self._permanent_types = permanent_types

    def classify(self, error: BaseException) -> Classification:
        if isinstance(error, TransientError):
            return Classification.TRANSIENT
        if isinstance(error, PermanentError):
            return Classification.PERMANENT
        if isinstance(error, self._transient_types):
            return Classification.TRANSIENT
        if isinstance(error, self._permanent_types):
            return Classification.PERMANENT
        return Classification.TRANSIENT
