import asyncio
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Optional

from relay.core.exceptions import (
    TransportError, MalformedPayload, PersistFailure, AcknowledgeFailure, DeadLetterFailure,
)
from relay.core.logging import get_logger
from relay.core.queue_policies import (
    RelayPolicy, DEFAULT_POLICY, POISON_DEAD_LETTER, POISON_DISCARD,
)
from relay.schemas.envelope import (
    Envelope, Record, ProcessResult, STATUS_SUCCESS, STATUS_RETRY, STATUS_DEAD_LETTER,
)
from relay.services.queue_service import QueueService
from relay.services.store_service import DurableStore


STATE_IDLE = "idle"
STATE_FETCHING = "fetching"
STATE_PROCESSING = "processing"
STATE_STOPPED = "stopped"

STOP_SHUTDOWN = "shutdown"
STOP_QUEUE_EMPTY = "queue_empty"
STOP_TRANSPORT_ERROR = "transport_error"
STOP_UNEXPECTED_ERROR = "unexpected_error"


@dataclass
class RelayStats:
    received: int = 0
    persisted: int = 0
    deleted: int = 0
    malformed: int = 0
    persist_failed: int = 0
    ack_failed: int = 0
    dead_lettered: int = 0
    empty_polls: int = 0


@dataclass
class LoopOutcome:
    reason: str
    stats: RelayStats
    error: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return 1 if self.reason in (STOP_TRANSPORT_ERROR, STOP_UNEXPECTED_ERROR) else 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RelayLoop:
    """
    Moves messages from a queue into a durable store, one lease at a time.

    Each cycle fetches at most one message, upserts it as a Record and only
    then deletes it from the queue. Per-message failures end that message's
    cycle; only a TransportError stops the loop.
    """

    def __init__(
        self,
        queue: QueueService,
        store: DurableStore,
        policy: RelayPolicy = DEFAULT_POLICY,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.queue = queue
        self.store = store
        self.policy = policy
        self.clock = clock
        self.stats = RelayStats()
        self.state = STATE_IDLE
        self.logger = get_logger(self.__class__.__name__)

    async def fetch_batch(self) -> Optional[Envelope]:
        """
        Lease at most one message.

        Returns:
            Envelope or None when the queue is currently empty

        Raises:
            TransportError: the queue cannot be reached
        """
        self.state = STATE_FETCHING
        envelopes = await self.queue.receive(
            max_messages=1,
            lease_seconds=self.policy.visibility_timeout_seconds,
            wait_seconds=self.policy.wait_seconds,
        )
        if not envelopes:
            self.stats.empty_polls += 1
            self.logger.debug("queue.empty", queue=self.queue.queue_ref)
            return None

        envelope = envelopes[0]
        self.stats.received += 1
        self.logger.info("message.received", message_id=envelope.id, receive_count=envelope.receive_count)
        return envelope

    async def process(self, envelope: Envelope) -> ProcessResult:
        """
        Parse, persist, then acknowledge one delivery.

        Parse and store rejections are turned into a ProcessResult; a
        TransportError from the store propagates.
        """
        self.state = STATE_PROCESSING
        log = self.logger.with_context(message_id=envelope.id)

        try:
            payload = envelope.parse_payload()
        except MalformedPayload as e:
            self.stats.malformed += 1
            log.error("message.malformed", error=str(e), policy=self.policy.poison_message_policy)
            return await self._handle_poison(envelope, str(e))

        record = Record.capture(envelope.id, payload, self.clock())
        try:
            await self.store.upsert(record)
        except PersistFailure as e:
            self.stats.persist_failed += 1
            log.warning("message.persist_failed", error=str(e), receive_count=envelope.receive_count)
            if self.policy.retries_exhausted(envelope.receive_count):
                return await self._dead_letter(envelope, f"Retries exhausted: {e}")
            # Left leased; the queue redelivers it after the lease expires
            return ProcessResult(status=STATUS_RETRY, message_id=envelope.id, error=str(e))

        self.stats.persisted += 1
        log.info("message.persisted", timestamp=record.timestamp)

        try:
            await self.queue.delete(envelope.handle)
        except AcknowledgeFailure as e:
            self.stats.ack_failed += 1
            log.warning("message.ack_failed", error=str(e))
            return ProcessResult(status=STATUS_SUCCESS, message_id=envelope.id, acknowledged=False, error=str(e))

        self.stats.deleted += 1
        log.info("message.deleted")
        return ProcessResult(status=STATUS_SUCCESS, message_id=envelope.id, acknowledged=True)

    async def _handle_poison(self, envelope: Envelope, reason: str) -> ProcessResult:
        policy = self.policy.poison_message_policy
        if policy == POISON_DEAD_LETTER:
            return await self._dead_letter(envelope, reason)

        if policy == POISON_DISCARD:
            try:
                await self.queue.delete(envelope.handle)
            except AcknowledgeFailure as e:
                self.stats.ack_failed += 1
                self.logger.warning("message.ack_failed", message_id=envelope.id, error=str(e))
                return ProcessResult(status=STATUS_DEAD_LETTER, message_id=envelope.id, error=reason)
            self.stats.deleted += 1
            self.logger.warning("message.discarded", message_id=envelope.id, reason=reason)
            return ProcessResult(status=STATUS_DEAD_LETTER, message_id=envelope.id, acknowledged=True, error=reason)

        return ProcessResult(status=STATUS_RETRY, message_id=envelope.id, error=reason)

    async def _dead_letter(self, envelope: Envelope, reason: str) -> ProcessResult:
        try:
            await self.queue.dead_letter(envelope, reason)
        except DeadLetterFailure as e:
            self.logger.error("message.dead_letter_failed", message_id=envelope.id, error=str(e))
            return ProcessResult(status=STATUS_RETRY, message_id=envelope.id, error=str(e))

        self.stats.dead_lettered += 1
        self.logger.warning("message.dead_lettered", message_id=envelope.id, reason=reason)
        return ProcessResult(status=STATUS_DEAD_LETTER, message_id=envelope.id, acknowledged=True, error=reason)

    async def run_once(self) -> Optional[ProcessResult]:
        """One fetch and, if a message arrived, one process step."""
        envelope = await self.fetch_batch()
        if envelope is None:
            self.state = STATE_IDLE
            return None

        try:
            return await self.process(envelope)
        except TransportError:
            raise
        except Exception as e:
            self.logger.exception("message.unexpected_error", message_id=envelope.id, error=str(e))
            return ProcessResult(status=STATUS_RETRY, message_id=envelope.id, error=str(e))
        finally:
            self.state = STATE_IDLE

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> LoopOutcome:
        """
        Main relay loop.

        Runs until ``stop_event`` is set, the queue or store becomes
        unreachable, a fetch fails unexpectedly, or (in drain mode) a receive
        comes back empty. The stop
        event is only checked between cycles, so a leased message is always
        persisted and acknowledged (or left for redelivery) before exit.
        """
        stop_event = stop_event or asyncio.Event()
        reason = STOP_SHUTDOWN
        error = None

        self.logger.info(
            "relay.started",
            queue_backend=self.queue.backend,
            queue=self.queue.queue_ref,
            store_backend=self.store.backend,
            store=self.store.table_ref,
            wait_seconds=self.policy.wait_seconds,
            visibility_timeout_seconds=self.policy.visibility_timeout_seconds,
            exit_when_empty=self.policy.exit_when_empty,
        )

        try:
            while not stop_event.is_set():
                self.state = STATE_IDLE
                result = await self.run_once()
                if result is None and self.policy.exit_when_empty:
                    reason = STOP_QUEUE_EMPTY
                    break
        except TransportError as e:
            reason = STOP_TRANSPORT_ERROR
            error = str(e)
            self.logger.error("relay.transport_error", backend=e.backend, error=error)
        except Exception as e:
            # Raised outside a message's boundary, e.g. a delivery that cannot be read
            reason = STOP_UNEXPECTED_ERROR
            error = str(e)
            self.logger.exception("relay.unexpected_error", error=error)
        finally:
            self.state = STATE_STOPPED

        self.logger.info("relay.stopped", reason=reason, **asdict(self.stats))
        return LoopOutcome(reason=reason, stats=self.stats, error=error)
