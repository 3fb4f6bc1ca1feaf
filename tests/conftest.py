"""
Pytest configuration and fixtures for relay tests.
"""
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from relay.core.exceptions import TransportError, PersistFailure, AcknowledgeFailure, DeadLetterFailure
from relay.core.queue_policies import RelayPolicy
from relay.core.redis_client import RedisClient
from relay.schemas.envelope import Envelope, Record
from relay.services.queue_service import QueueService
from relay.services.store_service import DurableStore


class FakeQueue(QueueService):
    """
    In-memory lease queue.

    Leased messages stay invisible until deleted or until ``expire_leases``
    is called, which makes every un-deleted message deliverable again.
    """

    backend = "fake"

    def __init__(self, calls: List[tuple]):
        super().__init__("fake-queue")
        self.calls = calls
        self.visible: List[Dict] = []
        self.leased: Dict[str, Dict] = {}
        self.receive_counts: Dict[str, int] = {}
        self.handle_ids: Dict[str, str] = {}
        self.dead_letters: List[Dict] = []
        self._handles = itertools.count(1)
        self.fail_receive: Optional[Exception] = None
        self.fail_delete = 0
        self.fail_dead_letter = False

    def put(self, message_id: str, body: str):
        self.visible.append({"id": message_id, "body": body})

    def expire_leases(self):
        self.visible.extend(self.leased.values())
        self.leased.clear()

    async def receive(self, max_messages=1, lease_seconds=600, wait_seconds=20):
        self.calls.append(("receive",))
        if self.fail_receive:
            raise self.fail_receive
        envelopes = []
        while self.visible and len(envelopes) < max_messages:
            message = self.visible.pop(0)
            handle = f"h{next(self._handles)}"
            self.leased[handle] = message
            self.handle_ids[handle] = message["id"]
            count = self.receive_counts.get(message["id"], 0) + 1
            self.receive_counts[message["id"]] = count
            envelopes.append(
                Envelope(handle=handle, id=message["id"], body=message["body"], receive_count=count)
            )
        return envelopes

    async def delete(self, handle):
        self.calls.append(("delete", handle))
        if self.fail_delete:
            self.fail_delete -= 1
            raise AcknowledgeFailure("delete rejected", handle=handle)
        if handle not in self.leased:
            raise AcknowledgeFailure("unknown handle", handle=handle)
        del self.leased[handle]

    async def dead_letter(self, envelope, reason):
        self.calls.append(("dead_letter", envelope.id))
        if self.fail_dead_letter:
            raise DeadLetterFailure("dead-letter rejected", message_id=envelope.id)
        self.dead_letters.append({"id": envelope.id, "body": envelope.body, "error_message": reason})
        self.leased.pop(envelope.handle, None)


class FakeStore(DurableStore):
    """In-memory upsert store keyed by id."""

    backend = "fake"

    def __init__(self, calls: List[tuple]):
        super().__init__("fake-table")
        self.calls = calls
        self.records: Dict[str, Record] = {}
        self.fail_upserts = 0
        self.transport_down = False

    async def upsert(self, record):
        if self.transport_down:
            raise TransportError("store unreachable", backend=self.backend)
        if self.fail_upserts:
            self.fail_upserts -= 1
            raise PersistFailure("write rejected", message_id=record.id)
        self.records[record.id] = record
        self.calls.append(("upsert", record.id))


class TickingClock:
    """Returns a later instant on every call."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


@pytest.fixture
def calls():
    """Ordered log of queue and store calls."""
    return []


@pytest.fixture
def fake_queue(calls):
    return FakeQueue(calls)


@pytest.fixture
def fake_store(calls):
    return FakeStore(calls)


@pytest.fixture
def clock():
    return TickingClock(datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc))


@pytest.fixture
def policy():
    """Policy with the default lease settings and dead-lettering."""
    return RelayPolicy(
        wait_seconds=0,
        visibility_timeout_seconds=600,
        exit_when_empty=False,
        poison_message_policy="dead_letter",
        max_receive_count=None,
    )


@pytest.fixture
def mock_sqs_client():
    """Mock aioboto3 SQS client."""
    client = MagicMock()
    client.receive_message = AsyncMock(return_value={})
    client.delete_message = AsyncMock(return_value={})
    client.send_message = AsyncMock(return_value={"MessageId": "dlq-1"})
    return client


@pytest.fixture
def mock_dynamodb_client():
    """Mock aioboto3 DynamoDB client."""
    client = MagicMock()
    client.put_item = AsyncMock(return_value={})
    return client


@pytest.fixture
def mock_redis():
    """Mock Redis lease client."""
    redis_mock = MagicMock(spec=RedisClient)
    redis_mock.requeue_expired_leases = AsyncMock(return_value=0)
    redis_mock.claim_message = AsyncMock(return_value=None)
    redis_mock.release_lease = AsyncMock(return_value=True)
    redis_mock.queue_message = AsyncMock()
    return redis_mock
