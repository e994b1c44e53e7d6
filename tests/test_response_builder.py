from datetime import datetime, timezone

import pytest

from exceptions import ContextError, DomainError
from services.response_builder import (
    build_accepted_order,
    build_callback,
    build_cancelled_order,
    build_context,
    build_error_payload,
    build_rejected_order,
    build_status_order,
)

from payloads import BPP_IDENTITY, make_context, make_order

NOW = datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)


def test_context_keeps_transaction_and_replaces_message_id():
    original = make_context("confirm")
    ctx = build_context(original, "on_confirm", BPP_IDENTITY, now=NOW)

    assert ctx["transaction_id"] == "T1"
    assert ctx["message_id"] != "M1"
    assert ctx["action"] == "on_confirm"
    assert ctx["bpp_id"] == "bpp.test"
    assert ctx["bap_uri"] == original["bap_uri"]
    assert ctx["timestamp"] == "2026-10-19T10:00:00.000Z"
    assert original["action"] == "confirm"


def test_context_without_original_uses_defaults():
    ctx = build_context(None, "on_status", BPP_IDENTITY, now=NOW)
    assert ctx["transaction_id"].startswith("unknown-txn-")
    assert ctx["action"] == "on_status"
    assert ctx["bpp_uri"] == "http://bpp.test"


def test_accepted_order():
    order = build_accepted_order(make_order(), now=NOW)

    assert order["state"] == "Accepted"
    assert order["payment"]["status"] == "PAID"
    assert order["payment"]["params"]["amount"] == "250.00"
    fulfillment = order["fulfillments"][0]
    assert fulfillment["end"]["location"]["address"]["area_code"] == "700016"
    assert fulfillment["end"]["contact"]["phone"] == "9999999999"
    assert fulfillment["start"]["time"]["range"]["start"] == "2026-10-19T10:00:00.000Z"


@pytest.mark.parametrize("missing", ["billing", "quote"])
def test_accepted_order_missing_essentials(missing):
    order = make_order()
    del order[missing]
    with pytest.raises(DomainError) as e:
        build_accepted_order(order, now=NOW)
    assert e.value.code == "40000"


def test_accepted_order_missing_gps():
    order = make_order()
    del order["fulfillments"][0]["end"]["location"]["gps"]
    with pytest.raises(DomainError):
        build_accepted_order(order, now=NOW)


def test_rejected_order_carries_reason_and_canceller():
    order = build_rejected_order(make_order(), "001", "bpp.test", now=NOW)
    assert order["state"] == "Cancelled"
    assert order["cancellation"] == {"cancelled_by": "bpp.test", "reason": {"code": "001"}}
    assert order["items"] == [{"id": "I1", "quantity": {"count": 2}}]
    assert order["provider"] == {"id": "P1", "locations": [{"id": "L1"}]}


def test_cancelled_order_keeps_details():
    order = build_cancelled_order(make_order(), "O1", "002", "bap.test", now=NOW)
    assert order["state"] == "Cancelled"
    assert order["cancellation"]["reason"]["id"] == "002"
    assert order["billing"]["phone"] == "9999999999"


def test_status_order_uses_stored_state():
    order = build_status_order(make_order(), "Accepted", "2026-10-19T09:00:00.000Z")
    assert order["state"] == "Accepted"
    assert order["updated_at"] == "2026-10-19T09:00:00.000Z"


def test_callback_and_error_payload_shapes():
    ctx = make_context("on_confirm")
    assert build_callback(ctx, {"id": "O1"}) == {"context": ctx, "message": {"order": {"id": "O1"}}}

    payload = build_error_payload(ctx, ContextError("bad context"), "BPP error processing order")
    assert "message" not in payload
    assert payload["error"] == {
        "type": "CONTEXT-ERROR",
        "code": "30001",
        "message": "BPP error processing order: bad context",
    }
