from datetime import datetime, timedelta, timezone

import pytest

from exceptions import CONTEXT_ERROR, DOMAIN_ERROR
from services.validator import parse_timestamp, validate_request

from payloads import cancel_body, confirm_body, status_body

NOW = datetime(2026, 10, 19, 10, 1, 0, tzinfo=timezone.utc)


def test_valid_requests_pass():
    assert validate_request("confirm", confirm_body(), now=NOW).ok
    assert validate_request("cancel", cancel_body(), now=NOW).ok
    assert validate_request("status", status_body(), now=NOW).ok


@pytest.mark.parametrize("field", ["bap_uri", "transaction_id"])
def test_missing_context_field_is_context_error(field):
    body = confirm_body()
    del body["context"][field]

    result = validate_request("confirm", body, now=NOW)

    assert not result.ok
    assert result.error.error_type == CONTEXT_ERROR
    assert result.error.code == "30001"


def test_missing_context_entirely():
    result = validate_request("status", {"message": {"order_id": "O1"}}, now=NOW)
    assert result.error.code == "30001"


def test_confirm_without_order_id():
    body = confirm_body()
    del body["message"]["order"]["id"]
    result = validate_request("confirm", body, now=NOW)
    assert result.error.code == "30001"
    assert "order ID" in result.error.message


def test_cancel_requires_reason_and_timestamp():
    body = cancel_body()
    del body["message"]["cancellation_reason_id"]
    assert validate_request("cancel", body, now=NOW).error.code == "30001"

    body = cancel_body()
    del body["context"]["timestamp"]
    assert validate_request("cancel", body, now=NOW).error.code == "30001"


def test_cancel_reason_outside_allow_list():
    result = validate_request("cancel", cancel_body(reason="007"), now=NOW)

    assert result.error.error_type == DOMAIN_ERROR
    assert result.error.code == "40005"
    assert "007" in result.error.message


def test_reason_checked_before_freshness():
    body = cancel_body(reason="999", ttl="PT30S", timestamp="2026-10-19T09:00:00.000Z")
    assert validate_request("cancel", body, now=NOW).error.code == "40005"


def test_status_requires_order_id():
    body = status_body()
    body["message"] = {}
    assert validate_request("status", body, now=NOW).error.code == "30001"


def test_stale_request_with_ttl():
    old = (NOW - timedelta(minutes=10)).isoformat().replace("+00:00", "Z")
    result = validate_request("confirm", confirm_body(ttl="PT30S", timestamp=old), now=NOW)

    assert result.error.error_type == CONTEXT_ERROR
    assert result.error.code == "30011"


def test_fresh_request_with_ttl():
    recent = (NOW - timedelta(seconds=30)).isoformat().replace("+00:00", "Z")
    assert validate_request("status", status_body(ttl="PT30S", timestamp=recent), now=NOW).ok


def test_unparseable_timestamp_with_ttl_is_stale():
    result = validate_request("status", status_body(ttl="PT30S", timestamp="yesterday"), now=NOW)
    assert result.error.code == "30011"


def test_without_ttl_old_timestamp_is_accepted():
    assert validate_request("confirm", confirm_body(timestamp="2020-01-01T00:00:00Z"), now=NOW).ok


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2026-10-19T10:00:00") == datetime(2026, 10, 19, 10, tzinfo=timezone.utc)
    assert parse_timestamp(None) is None
