# ondc_relay/services/response_builder.py
import copy
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from config import (
    BPP_ID,
    BPP_URI,
    DOMAIN,
    COUNTRY_CODE,
    CITY_CODE,
    CORE_VERSION,
    STORE,
    ENABLE_TRACKING,
    PREPARATION_MINUTES,
    DEFAULT_DELIVERY_MINUTES,
    utc_now,
)
from exceptions import DomainError, ProtocolError, INCOMPLETE_ORDER
from models import OrderState
from logger import get_logger

log = get_logger("response_builder")

DEFAULT_IDENTITY = {"bpp_id": BPP_ID, "bpp_uri": BPP_URI}


def _iso(dt: datetime) -> str:
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_context(
    original_context: Optional[Dict[str, Any]],
    action: str,
    identity: Optional[Dict[str, str]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Fresh context for an outbound callback: same transaction, new message id, our identity."""
    identity = identity or DEFAULT_IDENTITY
    stamp = _iso(now or utc_now())

    if not original_context:
        log.error("Original context is missing; building default callback context.")
        return {
            "domain": DOMAIN,
            "country": COUNTRY_CODE,
            "city": CITY_CODE,
            "core_version": CORE_VERSION,
            "action": action,
            **identity,
            "transaction_id": f"unknown-txn-{uuid.uuid4()}",
            "message_id": str(uuid.uuid4()),
            "timestamp": stamp,
        }

    ctx = copy.deepcopy(original_context)
    ctx.update({
        "action": action,
        "message_id": str(uuid.uuid4()),
        "timestamp": stamp,
        **identity,
    })
    return ctx


def _fulfillments(order: Dict[str, Any], now: datetime) -> list:
    fulfillment = (order.get("fulfillments") or [None])[0]
    end_location = ((fulfillment or {}).get("end") or {}).get("location")
    billing = order.get("billing") or {}

    if (not fulfillment or not end_location or not end_location.get("address")
            or not end_location.get("gps") or not billing.get("phone")):
        raise DomainError(
            "Missing or incomplete mandatory fulfillment end location or billing contact details in order",
            INCOMPLETE_ORDER,
        )

    ready_at = now + timedelta(minutes=PREPARATION_MINUTES)
    delivered_by = now + timedelta(minutes=DEFAULT_DELIVERY_MINUTES)

    return [{
        "id": fulfillment.get("id") or "FULFILLMENT-1",
        "type": fulfillment.get("type") or "Delivery",
        "tracking": ENABLE_TRACKING,
        "state": {"descriptor": {"code": "Pending", "name": "Order Accepted"}},
        "start": {
            "location": {
                "gps": STORE["gps"],
                "address": {
                    "locality": STORE["locality"],
                    "city": STORE["city"],
                    "state": STORE["state"],
                    "country": STORE["country"],
                    "area_code": STORE["area_code"],
                },
            },
            "time": {"range": {"start": _iso(now), "end": _iso(ready_at)}},
            "contact": {"phone": STORE["phone"], "email": STORE["email"]},
        },
        "end": {
            "location": copy.deepcopy(end_location),
            "time": {"range": {"start": _iso(ready_at), "end": _iso(delivered_by)}},
            "contact": {"phone": billing.get("phone"), "email": billing.get("email")},
        },
    }]


def build_accepted_order(order: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utc_now()
    missing = [k for k in ("items", "billing", "quote", "payment") if not order.get(k)]
    if missing:
        raise DomainError(
            f"Cannot generate confirmation, essential order details missing: {', '.join(missing)}",
            INCOMPLETE_ORDER,
        )

    quote = copy.deepcopy(order["quote"])
    payment = copy.deepcopy(order["payment"])
    payment["status"] = "PAID"
    payment["params"] = {
        **(payment.get("params") or {}),
        "amount": (quote.get("price") or {}).get("value"),
        "transaction_status": "Captured",
    }

    return {
        "id": order.get("id"),
        "state": OrderState.ACCEPTED,
        "provider": copy.deepcopy(order.get("provider")),
        "items": copy.deepcopy(order["items"]),
        "billing": copy.deepcopy(order["billing"]),
        "fulfillments": _fulfillments(order, now),
        "quote": quote,
        "payment": payment,
        "created_at": order.get("created_at") or _iso(now),
        "updated_at": _iso(now),
    }


def build_rejected_order(
    order: Dict[str, Any],
    reason_code: Optional[str],
    cancelled_by: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    provider = order.get("provider") or {}
    locations = provider.get("locations") or []
    return {
        "id": order.get("id"),
        "state": OrderState.CANCELLED,
        "provider": {
            "id": provider.get("id"),
            "locations": [{"id": locations[0].get("id")}] if locations else [],
        } if provider else {},
        "items": [{"id": i.get("id"), "quantity": copy.deepcopy(i.get("quantity"))} for i in order.get("items") or []],
        "cancellation": {
            "cancelled_by": cancelled_by,
            "reason": {"code": reason_code or "003"},
        },
        "updated_at": _iso(now or utc_now()),
    }


def build_cancelled_order(
    order: Dict[str, Any],
    order_id: str,
    reason_id: str,
    cancelled_by: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    cancelled = copy.deepcopy(order)
    cancelled.update({
        "id": order_id,
        "state": OrderState.CANCELLED,
        "cancellation": {"cancelled_by": cancelled_by, "reason": {"id": reason_id}},
        "updated_at": _iso(now or utc_now()),
    })
    return cancelled


def build_status_order(order: Dict[str, Any], order_state: str, updated_at: Optional[str]) -> Dict[str, Any]:
    current = copy.deepcopy(order)
    current["state"] = order_state
    current["updated_at"] = updated_at or _iso(utc_now())
    return current


def build_callback(context: Dict[str, Any], order: Dict[str, Any]) -> Dict[str, Any]:
    return {"context": context, "message": {"order": order}}


def build_error_payload(context: Dict[str, Any], error: ProtocolError, prefix: str = "") -> Dict[str, Any]:
    body = error.to_dict()
    if prefix:
        body["message"] = f"{prefix}: {body['message']}"
    return {"context": context, "error": body}
