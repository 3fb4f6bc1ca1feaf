import asyncio
import hashlib
import json
import time
from typing import Any, Dict, Optional, Tuple
import redis.asyncio as redis
from redis.asyncio import ConnectionPool
import logging

logger = logging.getLogger(__name__)


def _hash_message(message_json: str) -> str:
    return hashlib.sha256(message_json.encode("utf-8")).hexdigest()


def unpack_message(message_json: str) -> Tuple[str, str]:
    """
    Split a queued message into (id, body).

    Producers push ``{"id": ..., "body": ...}``. Anything else is delivered
    as-is, keyed by its content hash, so the relay can route it as malformed.
    """
    try:
        raw = json.loads(message_json)
    except ValueError:
        return _hash_message(message_json), message_json

    if not isinstance(raw, dict) or "body" not in raw:
        return _hash_message(message_json), message_json

    message_id = str(raw.get("id") or _hash_message(message_json))
    body = raw["body"]
    if not isinstance(body, str):
        body = json.dumps(body)
    return message_id, body


# Moves the oldest message to the processing list and records its lease in one step,
# so a claimed message always has a lease that can expire.
CLAIM_SCRIPT = """
    local message_json = redis.call('RPOPLPUSH', KEYS[1], KEYS[2])
    if not message_json then
        return false
    end

    redis.call('HSET', KEYS[3], ARGV[1], message_json)
    redis.call('ZADD', KEYS[4], ARGV[2], ARGV[1])
    local deliveries = redis.call('HINCRBY', KEYS[5], message_json, 1)

    return {message_json, deliveries}
"""

# Drops a live lease and, when ARGV[2] is non-empty, pushes it to the failed queue
# in the same step.
RELEASE_SCRIPT = """
    local message_json = redis.call('HGET', KEYS[1], ARGV[1])
    if not message_json then
        return 0
    end

    redis.call('HDEL', KEYS[1], ARGV[1])
    redis.call('ZREM', KEYS[2], ARGV[1])
    redis.call('LREM', KEYS[3], 1, message_json)
    redis.call('HDEL', KEYS[4], message_json)

    if ARGV[2] ~= '' then
        redis.call('LPUSH', KEYS[5], ARGV[2])
    end

    return 1
"""

REQUEUE_SCRIPT = """
    local expired = redis.call('ZRANGEBYSCORE', KEYS[2], 0, ARGV[1])
    local moved = 0

    for _, handle in ipairs(expired) do
        redis.call('ZREM', KEYS[2], handle)
        local message_json = redis.call('HGET', KEYS[1], handle)
        if message_json then
            redis.call('HDEL', KEYS[1], handle)
            redis.call('LREM', KEYS[3], 1, message_json)
            redis.call('RPUSH', KEYS[4], message_json)
            moved = moved + 1
        end
    end

    return moved
"""


class RedisClient:
    """
    Redis client for lease-based queue management.

    A queue is a list of JSON messages. Claiming a message moves it to
    ``<queue>:processing`` and records a lease handle with an expiry in a
    single Lua call. The lease is later released (acknowledged), released
    onto ``<queue>:failed`` (dead-lettered), or pushed back onto the queue
    once it expires.
    """

    def __init__(self, url: str, max_connections: int = 10, poll_interval: float = 0.5):
        self.pool = ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True
        )
        self.client: Optional[redis.Redis] = None
        self.poll_interval = poll_interval

    async def connect(self):
        """Initialize Redis connection."""
        try:
            self.client = redis.Redis(connection_pool=self.pool)
            # Test connection
            await self.client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    async def disconnect(self):
        """Close Redis connection."""
        if self.client:
            await self.client.aclose()
            logger.info("Redis connection closed")
        await self.pool.disconnect()

    @staticmethod
    def processing_key(queue_name: str) -> str:
        return f"{queue_name}:processing"

    @staticmethod
    def leases_key(queue_name: str) -> str:
        return f"{queue_name}:leases"

    @staticmethod
    def lease_expiry_key(queue_name: str) -> str:
        return f"{queue_name}:lease_expiry"

    @staticmethod
    def deliveries_key(queue_name: str) -> str:
        return f"{queue_name}:deliveries"

    @staticmethod
    def failed_key(queue_name: str) -> str:
        return f"{queue_name}:failed"

    async def queue_message(self, queue_name: str, message: Dict[str, Any]):
        """Add message to queue."""
        try:
            await self.client.lpush(queue_name, json.dumps(message, default=str))
            logger.debug(f"Message queued to {queue_name}")
        except Exception as e:
            logger.error(f"Failed to queue message to {queue_name}: {e}")
            raise

    async def claim_message(
        self, queue_name: str, handle: str, lease_seconds: int, timeout: float = 0
    ) -> Optional[Tuple[str, int]]:
        """
        Claim the oldest message under ``handle`` for ``lease_seconds``.

        Blocking commands cannot run inside a script, so a non-zero
        ``timeout`` is served by retrying every ``poll_interval`` seconds.

        Returns:
            (message_json, delivery count including this one), or None when
            nothing arrived within ``timeout``
        """
        keys = [
            queue_name,
            self.processing_key(queue_name),
            self.leases_key(queue_name),
            self.lease_expiry_key(queue_name),
            self.deliveries_key(queue_name),
        ]
        deadline = time.monotonic() + max(timeout, 0)
        try:
            while True:
                result = await self.client.eval(
                    CLAIM_SCRIPT,
                    len(keys),
                    *keys,
                    handle,
                    time.time() + lease_seconds
                )
                if result:
                    return result[0], int(result[1])

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                await asyncio.sleep(min(self.poll_interval, remaining))
        except Exception as e:
            logger.error(f"Failed to claim message from {queue_name}: {e}")
            raise

    async def release_lease(
        self, queue_name: str, handle: str, failed_message: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Remove a leased message for good, optionally onto the failed queue.

        Returns False when the handle is unknown: already released, or its
        lease expired and the message went back to the queue. Nothing is
        pushed to the failed queue in that case.
        """
        keys = [
            self.leases_key(queue_name),
            self.lease_expiry_key(queue_name),
            self.processing_key(queue_name),
            self.deliveries_key(queue_name),
            self.failed_key(queue_name),
        ]
        payload = json.dumps(failed_message, default=str) if failed_message is not None else ""
        try:
            result = await self.client.eval(RELEASE_SCRIPT, len(keys), *keys, handle, payload)
            return bool(result)
        except Exception as e:
            logger.error(f"Failed to release lease {handle} on {queue_name}: {e}")
            raise

    async def requeue_expired_leases(self, queue_name: str) -> int:
        """Push messages whose lease has expired back onto the queue for redelivery."""
        keys = [
            self.leases_key(queue_name),
            self.lease_expiry_key(queue_name),
            self.processing_key(queue_name),
            queue_name,
        ]
        try:
            moved = int(await self.client.eval(REQUEUE_SCRIPT, len(keys), *keys, time.time()))
            if moved:
                logger.info(f"Requeued {moved} expired leases on {queue_name}")
            return moved
        except Exception as e:
            logger.error(f"Failed requeueing expired leases for {queue_name}: {e}")
            raise
