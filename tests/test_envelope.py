"""
Unit tests for envelope, payload and record schemas.
"""
from datetime import datetime, timezone, timedelta

import pytest

from relay.core.exceptions import MalformedPayload
from relay.schemas.envelope import Envelope, Payload, Record, iso_timestamp


class TestPayload:
    """Test cases for payload parsing."""

    def test_parse(self):
        envelope = Envelope(handle="h1", id="m1", body='{"message":"hello"}')

        assert envelope.parse_payload() == Payload(message="hello")

    def test_extra_fields_ignored(self):
        assert Payload.from_body('{"message":"hello","sender":"x"}').message == "hello"

    @pytest.mark.parametrize("body", ["{not json", "{}", "", "null", "[]", '{"message": null}', '{"message": 1}'])
    def test_malformed(self, body):
        with pytest.raises(MalformedPayload) as exc_info:
            Envelope(handle="h1", id="m1", body=body).parse_payload()

        assert exc_info.value.message_id == "m1"


class TestRecord:
    """Test cases for record construction."""

    def test_capture(self):
        moment = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

        record = Record.capture("m1", Payload(message="hello"), moment)

        assert record == Record(id="m1", timestamp="2024-05-01T12:00:00.123Z", message="hello")

    def test_to_item(self):
        record = Record(id="m1", timestamp="2024-05-01T12:00:00.123Z", message="hello")

        assert record.to_item() == {
            "id": {"S": "m1"},
            "timestamp": {"S": "2024-05-01T12:00:00.123Z"},
            "message": {"S": "hello"},
        }


class TestIsoTimestamp:
    """Test cases for capture timestamps."""

    def test_converts_to_utc(self):
        moment = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))

        assert iso_timestamp(moment) == "2024-05-01T12:00:00.000Z"

    def test_naive_is_treated_as_utc(self):
        assert iso_timestamp(datetime(2024, 5, 1, 12, 0, 0)) == "2024-05-01T12:00:00.000Z"

    def test_defaults_to_now(self):
        before = datetime.now(timezone.utc).replace(microsecond=0)

        stamp = iso_timestamp()

        assert stamp.endswith("Z")
        parsed = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
        assert parsed >= before
