import uuid
from typing import Any, Dict, List, Optional
from redis.exceptions import RedisError

from relay.core.exceptions import TransportError, AcknowledgeFailure, DeadLetterFailure
from relay.core.redis_client import RedisClient, unpack_message
from relay.schemas.envelope import Envelope, iso_timestamp
from .queue_service import QueueService


class RedisQueueService(QueueService):
    """Lease queue on Redis lists. Dead letters go to ``<queue>:failed``."""

    backend = "redis"

    def __init__(self, redis_client: RedisClient, queue_name: str):
        super().__init__(queue_name)
        self.redis = redis_client

    async def enqueue(self, body: str, message_id: Optional[str] = None) -> str:
        """Producer side: push a message and return its id."""
        message_id = message_id or str(uuid.uuid4())
        await self.redis.queue_message(self.queue_ref, {"id": message_id, "body": body})
        return message_id

    async def receive(self, max_messages: int = 1, lease_seconds: int = 600, wait_seconds: int = 20) -> List[Envelope]:
        envelopes = []
        try:
            await self.redis.requeue_expired_leases(self.queue_ref)
            for i in range(max_messages):
                handle = uuid.uuid4().hex
                # Only the first claim long-polls
                claimed = await self.redis.claim_message(
                    self.queue_ref, handle, lease_seconds, timeout=wait_seconds if i == 0 else 0
                )
                if claimed is None:
                    break
                message_json, receive_count = claimed
                message_id, body = unpack_message(message_json)
                envelopes.append(
                    Envelope(handle=handle, id=message_id, body=body, receive_count=receive_count)
                )
        except RedisError as e:
            self.logger.error("redis.receive_failed", queue=self.queue_ref, error=str(e))
            raise TransportError(f"Redis receive failed: {e}", backend=self.backend) from e
        return envelopes

    async def delete(self, handle: str) -> None:
        try:
            released = await self.redis.release_lease(self.queue_ref, handle)
        except RedisError as e:
            raise AcknowledgeFailure(f"Redis delete failed: {e}", handle=handle) from e
        if not released:
            raise AcknowledgeFailure("Lease expired or handle unknown", handle=handle)

    async def dead_letter(self, envelope: Envelope, reason: str) -> None:
        failed_message: Dict[str, Any] = {
            "id": envelope.id,
            "body": envelope.body,
            "receive_count": envelope.receive_count,
            "failed_at": iso_timestamp(),
            "error_message": reason,
            "original_queue": self.queue_ref,
        }
        # Pushed to :failed and released in one script
        try:
            released = await self.redis.release_lease(
                self.queue_ref, envelope.handle, failed_message=failed_message
            )
        except RedisError as e:
            raise DeadLetterFailure(f"Redis dead-letter failed: {e}", message_id=envelope.id) from e
        if not released:
            raise DeadLetterFailure("Lease expired or handle unknown", message_id=envelope.id)
