from datetime import datetime, timezone
from typing import Optional, Dict
from pydantic import BaseModel, ValidationError

from relay.core.exceptions import MalformedPayload


STATUS_SUCCESS = "success"
STATUS_RETRY = "retry"
STATUS_DEAD_LETTER = "dead_letter"


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix, e.g. 2024-05-01T12:00:00.123Z."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Envelope(BaseModel):
    """A single delivery of a queue message."""
    handle: str
    id: str
    body: str
    receive_count: Optional[int] = None

    def parse_payload(self) -> "Payload":
        return Payload.from_body(self.body, message_id=self.id)


class Payload(BaseModel):
    message: str

    @classmethod
    def from_body(cls, body: str, message_id: Optional[str] = None) -> "Payload":
        """
        Deserialize a raw message body.

        Raises:
            MalformedPayload: body is not a JSON object with a string ``message``
        """
        try:
            return cls.model_validate_json(body)
        except ValidationError as e:
            errors = ", ".join(err["msg"] for err in e.errors())
            raise MalformedPayload(f"Invalid message body: {errors}", message_id=message_id) from e


class Record(BaseModel):
    id: str
    timestamp: str
    message: str

    @classmethod
    def capture(cls, message_id: str, payload: Payload, moment: Optional[datetime] = None) -> "Record":
        return cls(id=message_id, timestamp=iso_timestamp(moment), message=payload.message)

    def to_item(self) -> Dict[str, Dict[str, str]]:
        """DynamoDB attribute-value map."""
        return {
            "id": {"S": self.id},
            "timestamp": {"S": self.timestamp},
            "message": {"S": self.message},
        }


class ProcessResult(BaseModel):
    status: str  # success|retry|dead_letter
    message_id: str
    acknowledged: bool = False
    error: Optional[str] = None
