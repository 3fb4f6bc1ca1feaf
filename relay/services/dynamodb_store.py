from typing import Any
from botocore.exceptions import BotoCoreError, ClientError

from relay.core.aws import error_code, is_fatal
from relay.core.exceptions import TransportError, PersistFailure
from relay.schemas.envelope import Record
from .store_service import DurableStore


class DynamoDBStore(DurableStore):
    """DynamoDB table keyed by ``id``. ``client`` is an open aioboto3 DynamoDB client."""

    backend = "dynamodb"

    def __init__(self, client: Any, table_name: str):
        super().__init__(table_name)
        self.client = client

    async def upsert(self, record: Record) -> None:
        # PutItem replaces any item with the same key
        try:
            await self.client.put_item(TableName=self.table_ref, Item=record.to_item())
        except (BotoCoreError, ClientError) as e:
            if is_fatal(e):
                self.logger.error("dynamodb.unreachable", table=self.table_ref, error=str(e))
                raise TransportError(f"DynamoDB unavailable: {e}", backend=self.backend) from e
            code = error_code(e) if isinstance(e, ClientError) else type(e).__name__
            raise PersistFailure(f"DynamoDB put_item rejected ({code}): {e}", message_id=record.id) from e
