"""
Redis-backed at-least-once queue with visibility timeouts.

Provides the queue semantics the failure-handling engine relies on:
- Messages become invisible for a lease when received and reappear
  automatically if they are not deleted before the lease ends
- Every receive increments a per-message dequeue count and issues a new
  receipt token; updates and deletes must present the current token
- The visibility timeout of a received message can be pushed forward
- Messages past the poison threshold are parked on ``<queue>-poison``

Layout per queue (``{prefix}:{queue}``):
- ``{prefix}:{queue}:visible``: sorted set of message ids scored by the
  epoch milliseconds at which they next become visible
- ``{prefix}:{queue}:msg:{id}``: hash with text, dequeue_count,
  pop_receipt, inserted_at, expires_at; expires with the message TTL

Receive, update, delete and poison moves run as Lua scripts so receipt
checks and counter increments are atomic across consumers. The scripts
touch keys derived from the message id, so this layout targets standalone
Redis.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from types import TracebackType

import redis.asyncio as redis

from src.config.settings import get_settings
from src.queues.config import RetryConfig
from src.queues.errors import ReceiptMismatchError
from src.queues.message import QueueMessage, QueueMetadata

logger = logging.getLogger(__name__)

POISON_SUFFIX = "-poison"

# KEYS[1] visible zset; ARGV: now_ms, count, next_visible_ms, hash prefix, receipts...
_RECEIVE_LUA = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
local result = {}
local n = 0
for _, id in ipairs(ids) do
    local key = ARGV[4] .. id
    if redis.call('EXISTS', key) == 1 then
        n = n + 1
        local receipt = ARGV[4 + n]
        local count = redis.call('HINCRBY', key, 'dequeue_count', 1)
        redis.call('HSET', key, 'pop_receipt', receipt)
        redis.call('ZADD', KEYS[1], ARGV[3], id)
        local fields = redis.call('HMGET', key, 'text', 'inserted_at', 'expires_at')
        table.insert(result, {id, fields[1], count, receipt, fields[2], fields[3]})
    else
        redis.call('ZREM', KEYS[1], id)
    end
end
return result
"""

# KEYS[1] visible zset, KEYS[2] message hash; ARGV: message id, receipt, next_visible_ms
_UPDATE_LUA = """
local receipt = redis.call('HGET', KEYS[2], 'pop_receipt')
if not receipt then
    return 0
end
if receipt ~= ARGV[2] then
    return -1
end
redis.call('ZADD', KEYS[1], ARGV[3], ARGV[1])
return 1
"""

# KEYS[1] visible zset, KEYS[2] message hash; ARGV: message id, receipt
_DELETE_LUA = """
local receipt = redis.call('HGET', KEYS[2], 'pop_receipt')
if not receipt then
    return 0
end
if receipt ~= ARGV[2] then
    return -1
end
redis.call('DEL', KEYS[2])
redis.call('ZREM', KEYS[1], ARGV[1])
return 1
"""

# KEYS[1] visible zset, KEYS[2] message hash, KEYS[3] poison visible zset,
# KEYS[4] poison message hash; ARGV: message id, receipt, now_ms, expires_at_ms, ttl_seconds
_POISON_LUA = """
local receipt = redis.call('HGET', KEYS[2], 'pop_receipt')
if not receipt then
    return 0
end
if receipt ~= ARGV[2] then
    return -1
end
local text = redis.call('HGET', KEYS[2], 'text') or ''
redis.call('DEL', KEYS[2])
redis.call('ZREM', KEYS[1], ARGV[1])
redis.call('HSET', KEYS[4], 'text', text, 'dequeue_count', 0, 'pop_receipt', '',
    'inserted_at', ARGV[3], 'expires_at', ARGV[4])
redis.call('EXPIRE', KEYS[4], ARGV[5])
redis.call('ZADD', KEYS[3], ARGV[3], ARGV[1])
return 1
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _from_ms(value: str | int | None) -> datetime | None:
    if value is None or value == "":
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class RedisVisibilityQueue:
    """
    Visibility-timeout queue on top of Redis.

    Implements the QueueTransport protocol used by the visibility extender
    and queue depth reporter, plus the enqueue/receive/delete operations
    a worker needs.

    Usage:
        async with RedisVisibilityQueue() as queue:
            await queue.enqueue("emails", '{"to": "a@example.com"}')

            for message in await queue.receive("emails"):
                process(message.body)
                await queue.delete("emails", message.id, message.receipt_token)
    """

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str | None = None,
        config: RetryConfig | None = None,
    ):
        """
        Initialize the queue.

        Args:
            redis_url: Redis connection URL (uses settings if None)
            key_prefix: Prefix for all Redis keys (uses settings if None)
            config: Retry configuration for default lease and TTL
        """
        settings = get_settings()
        self._config = config or RetryConfig()
        self._redis_url = redis_url or str(settings.redis_url)
        self._key_prefix = key_prefix or settings.queue_key_prefix

        self._redis: redis.Redis | None = None
        self._receive_script = None
        self._update_script = None
        self._delete_script = None
        self._poison_script = None

    async def connect(self) -> None:
        """Establish Redis connection and register the queue scripts."""
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._register_scripts()
        logger.info(f"Connected to Redis, key_prefix={self._key_prefix}")

    def _register_scripts(self) -> None:
        self._receive_script = self._redis.register_script(_RECEIVE_LUA)
        self._update_script = self._redis.register_script(_UPDATE_LUA)
        self._delete_script = self._redis.register_script(_DELETE_LUA)
        self._poison_script = self._redis.register_script(_POISON_LUA)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
            logger.info("Redis connection closed")

    async def __aenter__(self) -> "RedisVisibilityQueue":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._redis is None:
            raise RuntimeError("Not connected to Redis. Call connect() first.")
        return self._redis

    # Keys

    def _visible_key(self, queue_name: str) -> str:
        return f"{self._key_prefix}:{queue_name}:visible"

    def _message_prefix(self, queue_name: str) -> str:
        return f"{self._key_prefix}:{queue_name}:msg:"

    def _message_key(self, queue_name: str, message_id: str) -> str:
        return f"{self._message_prefix(queue_name)}{message_id}"

    # Producer side

    async def enqueue(
        self,
        queue_name: str,
        text: str,
        visibility_delay_seconds: int = 0,
        ttl_seconds: int | None = None,
    ) -> str:
        """
        Add a message to the queue.

        Args:
            queue_name: Target queue
            text: Message body
            visibility_delay_seconds: Initial delay before the message is visible
            ttl_seconds: Absolute lifetime (uses config default if None)

        Returns:
            The queue-assigned message id
        """
        ttl = ttl_seconds or self._config.message_ttl_seconds
        message_id = uuid.uuid4().hex
        now = _now_ms()

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._message_key(queue_name, message_id),
                mapping={
                    "text": text,
                    "dequeue_count": 0,
                    "pop_receipt": "",
                    "inserted_at": now,
                    "expires_at": now + ttl * 1000,
                },
            )
            pipe.expire(self._message_key(queue_name, message_id), ttl)
            pipe.zadd(
                self._visible_key(queue_name),
                {message_id: now + visibility_delay_seconds * 1000},
            )
            await pipe.execute()

        logger.debug(f"Enqueued message {message_id} on {queue_name}")
        return message_id

    # Consumer side

    async def receive(
        self,
        queue_name: str,
        count: int | None = None,
        visibility_timeout_seconds: int | None = None,
    ) -> list[QueueMessage]:
        """
        Receive up to ``count`` visible messages and lease them.

        Each returned message carries an incremented delivery count and a
        fresh receipt token, and stays invisible for the lease duration.
        """
        count = count or self._config.receive_batch_size
        lease = visibility_timeout_seconds or self._config.visibility_timeout_seconds
        now = _now_ms()
        next_visible = now + lease * 1000
        receipts = [uuid.uuid4().hex for _ in range(count)]

        rows = await self._receive_script(
            keys=[self._visible_key(queue_name)],
            args=[now, count, next_visible, self._message_prefix(queue_name), *receipts],
        )

        messages = []
        for message_id, text, dequeue_count, receipt, inserted_at, expires_at in rows or []:
            messages.append(
                QueueMessage(
                    id=message_id,
                    receipt_token=receipt,
                    delivery_count=int(dequeue_count),
                    queue_name=queue_name,
                    inserted_at=_from_ms(inserted_at),
                    expires_at=_from_ms(expires_at),
                    next_visible_at=_from_ms(next_visible),
                    body=text,
                )
            )
        return messages

    async def update_visibility(
        self,
        queue_name: str,
        message_id: str,
        receipt_token: str,
        delay_seconds: int,
    ) -> None:
        """
        Set the message's next visible time to now + delay_seconds.

        Raises:
            ReceiptMismatchError: If the message is gone or the receipt is stale
        """
        result = await self._update_script(
            keys=[
                self._visible_key(queue_name),
                self._message_key(queue_name, message_id),
            ],
            args=[message_id, receipt_token, _now_ms() + delay_seconds * 1000],
        )
        self._check_receipt_result(result, queue_name, message_id)

    async def delete(self, queue_name: str, message_id: str, receipt_token: str) -> None:
        """
        Delete a received message.

        Raises:
            ReceiptMismatchError: If the message is gone or the receipt is stale
        """
        result = await self._delete_script(
            keys=[
                self._visible_key(queue_name),
                self._message_key(queue_name, message_id),
            ],
            args=[message_id, receipt_token],
        )
        self._check_receipt_result(result, queue_name, message_id)
        logger.debug(f"Deleted message {message_id} from {queue_name}")

    async def move_to_poison(self, message: QueueMessage) -> str:
        """
        Park a message on the poison queue and delete the original.

        Both happen in one script, and only while the receipt is current,
        so a message is never both parked and redelivered. The parked copy
        keeps the message id and starts with a dequeue count of 0.

        Returns:
            Id of the message on the poison queue

        Raises:
            ReceiptMismatchError: If the message is gone or the receipt is stale
        """
        poison_queue = f"{message.queue_name}{POISON_SUFFIX}"
        ttl = self._config.message_ttl_seconds
        now = _now_ms()

        result = await self._poison_script(
            keys=[
                self._visible_key(message.queue_name),
                self._message_key(message.queue_name, message.id),
                self._visible_key(poison_queue),
                self._message_key(poison_queue, message.id),
            ],
            args=[message.id, message.receipt_token, now, now + ttl * 1000, ttl],
        )
        self._check_receipt_result(result, message.queue_name, message.id)
        logger.warning(
            f"Moved message {message.id} to {poison_queue} "
            f"after {message.delivery_count} deliveries"
        )
        return message.id

    @staticmethod
    def _check_receipt_result(result: int, queue_name: str, message_id: str) -> None:
        if result == 0:
            raise ReceiptMismatchError(f"Message {queue_name}:{message_id} not found")
        if result == -1:
            raise ReceiptMismatchError(
                f"Receipt for message {queue_name}:{message_id} is no longer valid"
            )

    # Metadata

    async def get_queue_metadata(self, queue_name: str) -> QueueMetadata:
        """Return the approximate number of messages (visible or leased)."""
        count = await self.redis.zcard(self._visible_key(queue_name))
        return QueueMetadata(queue_name=queue_name, approximate_message_count=count)

    async def health_check(self) -> bool:
        """Check if Redis connection is healthy."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
