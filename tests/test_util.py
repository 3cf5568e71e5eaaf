from datetime import datetime, timezone
from decimal import Decimal

import pytest
import requests
from werkzeug.exceptions import BadRequest

from utils import util
from utils.util import api_retry_with_backoff, parse_amount, parse_timestamp, validate_payload

PAYLOAD_FIELDS = [
    {"field": "body", "type": str, "required": True},
    {"field": "tags", "type": list[str], "required": False},
    {"field": "price", "type": Decimal, "required": False},
    {"field": "sent_at", "type": datetime, "required": False},
    {"field": "rating", "type": int, "required": False},
]


def test_validate_payload_accepts_valid_payload():
    validate_payload(
        {
            "body": "hello",
            "tags": ["a", "b"],
            "price": "12.50",
            "sent_at": "2024-05-01T12:00:00Z",
            "rating": 4,
        },
        PAYLOAD_FIELDS,
    )


@pytest.mark.parametrize("data", [None, [], "body"])
def test_validate_payload_requires_object(data):
    with pytest.raises(BadRequest) as e:
        validate_payload(data, PAYLOAD_FIELDS)
    assert e.value.description == "missing json payload"


def test_validate_payload_collects_every_error():
    with pytest.raises(BadRequest) as e:
        validate_payload(
            {"tags": ["a", 1], "price": "-1", "sent_at": "soon", "rating": True},
            PAYLOAD_FIELDS,
        )

    errors = e.value.description.split("; ")
    assert errors == [
        "payload missing required field: body",
        "payload field 'tags' must be a list of str",
        "payload field 'price' must be a non-negative amount",
        "payload field 'sent_at' must be a valid ISO8601 datetime string",
        "payload field 'rating' must be of type int",
    ]


def test_parse_amount():
    assert parse_amount("10.5") == Decimal("10.5")
    assert parse_amount(3) == Decimal("3")
    assert parse_amount("0") == Decimal("0")
    for value in ("-1", "nan", "inf", "ten", ""):
        assert parse_amount(value) is None


def test_parse_timestamp():
    assert parse_timestamp("2024-05-01T12:00:00Z") == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T14:00:00+02:00") == datetime(
        2024, 5, 1, 12, tzinfo=timezone.utc
    )
    naive = parse_timestamp("2024-05-01T12:00:00")
    assert naive.tzinfo == timezone.utc
    assert parse_timestamp("yesterday") is None


def test_retry_gives_up_after_max_retries(monkeypatch):
    delays = []
    monkeypatch.setattr(util.time, "sleep", delays.append)
    calls = []

    def always_times_out():
        calls.append(1)
        raise TimeoutError("slow")

    assert api_retry_with_backoff(always_times_out) is False
    assert len(calls) == util.MAX_RETRIES
    assert delays == [1, 2]


def test_retry_stops_on_other_errors(monkeypatch):
    monkeypatch.setattr(util.time, "sleep", lambda seconds: None)
    calls = []

    def broken():
        calls.append(1)
        raise ValueError("bad payload")

    assert api_retry_with_backoff(broken) is False
    assert len(calls) == 1


def test_retry_returns_result_after_timeout(monkeypatch):
    monkeypatch.setattr(util.time, "sleep", lambda seconds: None)
    outcomes = [TimeoutError("slow"), "ok"]

    def flaky(value):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return f"{outcome} {value}"

    assert api_retry_with_backoff(flaky, "done") == "ok done"


def test_send_message_translates_timeout(monkeypatch):
    def timing_out_post(*args, **kwargs):
        raise requests.Timeout("slow")

    monkeypatch.setattr(requests, "post", timing_out_post)

    with pytest.raises(TimeoutError):
        util.send_message("http://hooks.example.test/notify", {"id": "1"})


def test_send_message_raises_for_error_status(monkeypatch):
    class ErrorResponse:
        status_code = 500

        def raise_for_status(self):
            raise requests.HTTPError("server error")

    monkeypatch.setattr(requests, "post", lambda *args, **kwargs: ErrorResponse())

    with pytest.raises(requests.HTTPError):
        util.send_message("http://hooks.example.test/notify", {"id": "1"})
