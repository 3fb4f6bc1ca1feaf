from typing import Optional


class RelayError(Exception):
    """Base class for relay errors."""


class ConfigValidationError(RelayError):
    """Raised when configuration validation fails"""


class TransportError(RelayError):
    """Queue Service or Durable Store unreachable, or credentials rejected. Fatal to the run."""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class MalformedPayload(RelayError):
    """Message body does not parse into a payload."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id


class PersistFailure(RelayError):
    """Durable Store rejected the write. The message stays leased and is redelivered."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id


class AcknowledgeFailure(RelayError):
    """Queue delete rejected after a successful write."""

    def __init__(self, message: str, handle: Optional[str] = None):
        super().__init__(message)
        self.handle = handle


class DeadLetterFailure(RelayError):
    """Moving a message to the dead-letter path failed. The message stays leased."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id
