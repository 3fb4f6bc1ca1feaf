from .queue_service import QueueService
from .store_service import DurableStore
from .sqs_queue import SQSQueueService
from .redis_queue import RedisQueueService
from .dynamodb_store import DynamoDBStore
from .postgres_store import PostgresStore

__all__ = [
    "QueueService",
    "DurableStore",
    "SQSQueueService",
    "RedisQueueService",
    "DynamoDBStore",
    "PostgresStore",
]
