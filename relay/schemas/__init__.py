from .envelope import (
    Envelope, Payload, Record, ProcessResult, iso_timestamp,
    STATUS_SUCCESS, STATUS_RETRY, STATUS_DEAD_LETTER,
)

__all__ = [
    "Envelope", "Payload", "Record", "ProcessResult", "iso_timestamp",
    "STATUS_SUCCESS", "STATUS_RETRY", "STATUS_DEAD_LETTER",
]
