from typing import Any, List, Optional
from botocore.exceptions import BotoCoreError, ClientError

from relay.core.aws import error_code
from relay.core.exceptions import TransportError, AcknowledgeFailure, DeadLetterFailure
from relay.schemas.envelope import Envelope, iso_timestamp
from .queue_service import QueueService


class SQSQueueService(QueueService):
    """Amazon SQS queue. ``client`` is an open aioboto3 SQS client."""

    backend = "sqs"

    def __init__(self, client: Any, queue_url: str, dead_letter_queue_url: Optional[str] = None):
        super().__init__(queue_url)
        self.client = client
        self.dead_letter_queue_url = dead_letter_queue_url

    async def receive(self, max_messages: int = 1, lease_seconds: int = 600, wait_seconds: int = 20) -> List[Envelope]:
        try:
            response = await self.client.receive_message(
                QueueUrl=self.queue_ref,
                MaxNumberOfMessages=max_messages,
                VisibilityTimeout=lease_seconds,
                WaitTimeSeconds=wait_seconds,
                MessageSystemAttributeNames=["ApproximateReceiveCount"],
            )
        except (BotoCoreError, ClientError) as e:
            self.logger.error("sqs.receive_failed", queue=self.queue_ref, error=str(e))
            raise TransportError(f"SQS receive failed: {e}", backend=self.backend) from e

        envelopes = []
        for msg in response.get("Messages") or []:
            attributes = msg.get("Attributes") or {}
            receive_count = attributes.get("ApproximateReceiveCount")
            envelopes.append(
                Envelope(
                    handle=msg["ReceiptHandle"],
                    id=msg["MessageId"],
                    body=msg.get("Body") or "",
                    receive_count=int(receive_count) if receive_count else None,
                )
            )
        return envelopes

    async def delete(self, handle: str) -> None:
        try:
            await self.client.delete_message(QueueUrl=self.queue_ref, ReceiptHandle=handle)
        except (BotoCoreError, ClientError) as e:
            code = error_code(e) if isinstance(e, ClientError) else type(e).__name__
            raise AcknowledgeFailure(f"SQS delete failed ({code}): {e}", handle=handle) from e

    async def dead_letter(self, envelope: Envelope, reason: str) -> None:
        if not self.dead_letter_queue_url:
            raise DeadLetterFailure("No dead-letter queue configured", message_id=envelope.id)

        try:
            await self.client.send_message(
                QueueUrl=self.dead_letter_queue_url,
                MessageBody=envelope.body or " ",
                MessageAttributes={
                    "original_message_id": {"DataType": "String", "StringValue": envelope.id},
                    "original_queue": {"DataType": "String", "StringValue": self.queue_ref},
                    "error_message": {"DataType": "String", "StringValue": (reason or "unknown")[:256]},
                    "failed_at": {"DataType": "String", "StringValue": iso_timestamp()},
                },
            )
        except (BotoCoreError, ClientError) as e:
            raise DeadLetterFailure(f"SQS dead-letter send failed: {e}", message_id=envelope.id) from e

        try:
            await self.delete(envelope.handle)
        except AcknowledgeFailure as e:
            # Copy already sits on the DLQ; the original is redelivered and dead-lettered again
            raise DeadLetterFailure(str(e), message_id=envelope.id) from e
