from dataclasses import dataclass
from typing import Optional

from relay.core.config import Settings


POISON_DEAD_LETTER = "dead_letter"
POISON_DISCARD = "discard"
POISON_RETAIN = "retain"


@dataclass
class RelayPolicy:
    wait_seconds: int
    visibility_timeout_seconds: int
    exit_when_empty: bool
    poison_message_policy: str
    max_receive_count: Optional[int]

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayPolicy":
        return cls(
            wait_seconds=settings.RECEIVE_WAIT_SECONDS,
            visibility_timeout_seconds=settings.VISIBILITY_TIMEOUT_SECONDS,
            exit_when_empty=settings.EXIT_WHEN_EMPTY,
            poison_message_policy=settings.POISON_MESSAGE_POLICY,
            max_receive_count=settings.MAX_RECEIVE_COUNT,
        )

    def retries_exhausted(self, receive_count: Optional[int]) -> bool:
        """True when a redelivery cap is configured and this delivery has reached it."""
        if self.max_receive_count is None or receive_count is None:
            return False
        return receive_count >= self.max_receive_count


DEFAULT_POLICY = RelayPolicy(
    wait_seconds=20,
    visibility_timeout_seconds=600,
    exit_when_empty=False,
    poison_message_policy=POISON_DEAD_LETTER,
    max_receive_count=None,
)
