from abc import ABC, abstractmethod
from typing import List

from relay.core.logging import get_logger
from relay.schemas.envelope import Envelope


class QueueService(ABC):
    """
    Lease-based queue contract consumed by the relay loop.

    Implementations translate backend errors at this boundary:
    ``receive`` raises TransportError, ``delete`` raises AcknowledgeFailure,
    ``dead_letter`` raises DeadLetterFailure.
    """

    backend: str = "queue"

    def __init__(self, queue_ref: str):
        self.queue_ref = queue_ref
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def receive(self, max_messages: int = 1, lease_seconds: int = 600, wait_seconds: int = 20) -> List[Envelope]:
        """Lease up to ``max_messages`` messages, waiting at most ``wait_seconds``. May return []."""

    @abstractmethod
    async def delete(self, handle: str) -> None:
        """Acknowledge one delivery."""

    @abstractmethod
    async def dead_letter(self, envelope: Envelope, reason: str) -> None:
        """Move a delivery off the main queue onto the dead-letter path."""
