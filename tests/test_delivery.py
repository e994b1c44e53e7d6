from unittest.mock import Mock

import requests

from api import callback_url, decode_ack
from services.delivery import (
    DELIVERED,
    REJECTED,
    RETRY,
    BackoffPolicy,
    DeliveryEngine,
    attempt_until,
    classify,
)

from fakes import FakeSession, reply, server_error
from payloads import BAP_URI

PAYLOAD = {"context": {"transaction_id": "T1"}, "message": {"order": {"id": "O1"}}}


def engine(*replies, sleeps=None):
    session = FakeSession(*replies)
    return DeliveryEngine(
        session=session,
        policy=BackoffPolicy(3, 1000),
        timeout=8,
        sleep=(sleeps if sleeps is not None else []).append,
    ), session


def test_backoff_doubles():
    policy = BackoffPolicy(4, 1000)
    assert [policy.delay_seconds(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_callback_url_joins_action():
    assert callback_url("http://bap.test/", "on_confirm") == "http://bap.test/on_confirm"
    assert callback_url("http://bap.test/ondc", "on_status") == "http://bap.test/ondc/on_status"


def test_classify():
    assert classify(reply("ACK")) == DELIVERED
    assert classify(reply("NACK")) == REJECTED
    assert classify(reply("ACK", code=500)) == RETRY
    assert classify(server_error()) == RETRY


def test_decode_ack_bad_json():
    decoded = decode_ack(server_error(502))
    assert decoded.status_code == 502
    assert decoded.ack_status is None
    assert "Exception parsing" in decoded.raw_error


def test_first_ack_delivers_once():
    sleeps = []
    eng, session = engine(reply("ACK"), sleeps=sleeps)

    assert eng.deliver(BAP_URI, "on_confirm", PAYLOAD) is True
    assert len(session.calls) == 1
    assert session.calls[0]["url"] == "http://bap.test/on_confirm"
    assert session.calls[0]["timeout"] == 8
    assert sleeps == []


def test_retries_until_ack_with_exponential_delays():
    sleeps = []
    eng, session = engine(server_error(), reply("ACK", code=503), reply("ACK"), sleeps=sleeps)

    assert eng.deliver(BAP_URI, "on_cancel", PAYLOAD) is True
    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_nack_stops_immediately():
    sleeps = []
    eng, session = engine(reply("NACK", error={"code": "31003", "message": "mismatch"}), sleeps=sleeps)

    assert eng.deliver(BAP_URI, "on_confirm", PAYLOAD) is False
    assert len(session.calls) == 1
    assert sleeps == []


def test_exhausted_attempts():
    sleeps = []
    eng, session = engine(server_error(), server_error(), server_error(), reply("ACK"), sleeps=sleeps)

    assert eng.deliver(BAP_URI, "on_status", PAYLOAD) is False
    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_network_errors_are_retried():
    eng, session = engine(requests.Timeout("slow"), requests.ConnectionError("refused"), reply("ACK"))
    assert eng.deliver(BAP_URI, "on_confirm", PAYLOAD) is True
    assert len(session.calls) == 3


def test_per_call_attempt_override():
    sleeps = []
    eng, session = engine(server_error(), server_error(), sleeps=sleeps)

    assert eng.deliver(BAP_URI, "on_confirm", PAYLOAD, max_attempts=2, initial_delay_ms=250) is False
    assert len(session.calls) == 2
    assert sleeps == [0.25]


def test_missing_target_sends_nothing():
    eng, session = engine()
    assert eng.deliver("", "on_confirm", PAYLOAD) is False
    assert session.calls == []


def test_unexpected_error_never_escapes():
    session = Mock()
    session.post.side_effect = RuntimeError("boom")
    eng = DeliveryEngine(session=session, policy=BackoffPolicy(2, 10), sleep=lambda s: None)
    assert eng.deliver(BAP_URI, "on_confirm", PAYLOAD) is False


def test_attempt_until_returns_last_outcome():
    seen = []

    def attempt(n):
        seen.append(n)
        return RETRY

    assert attempt_until(attempt, BackoffPolicy(3, 100), sleep=lambda s: None) == RETRY
    assert seen == [1, 2, 3]
