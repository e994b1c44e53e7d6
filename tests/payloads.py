import copy

BAP_URI = "http://bap.test"
BPP_IDENTITY = {"bpp_id": "bpp.test", "bpp_uri": "http://bpp.test"}


def make_context(action, txn="T1", msg="M1", **extra):
    ctx = {
        "domain": "ONDC:RET10",
        "country": "IND",
        "city": "std:033",
        "core_version": "1.2.0",
        "action": action,
        "bap_id": "bap.test",
        "bap_uri": BAP_URI,
        "transaction_id": txn,
        "message_id": msg,
        "timestamp": "2026-10-19T10:00:00.000Z",
    }
    ctx.update(extra)
    return ctx


def make_order(order_id="O1", area_code="700016", items=None, state="Created"):
    return {
        "id": order_id,
        "state": state,
        "provider": {"id": "P1", "locations": [{"id": "L1"}]},
        "items": items if items is not None else [
            {"id": "I1", "quantity": {"count": 2}, "@ondc/org/cancellable": True},
        ],
        "billing": {"name": "Asha", "phone": "9999999999", "email": "asha@example.com"},
        "fulfillments": [{
            "id": "F1",
            "type": "Delivery",
            "end": {"location": {
                "gps": "22.54,88.35",
                "address": {"area_code": area_code, "city": "Kolkata"},
            }},
        }],
        "quote": {"price": {"currency": "INR", "value": "250.00"}},
        "payment": {"type": "ON-ORDER", "collected_by": "BAP", "status": "NOT-PAID"},
    }


def confirm_body(order=None, txn="T1", msg="M1", **ctx):
    return {
        "context": make_context("confirm", txn, msg, **ctx),
        "message": {"order": order if order is not None else make_order()},
    }


def cancel_body(order_id="O1", reason="001", txn="T1", msg="M2", **ctx):
    return {
        "context": make_context("cancel", txn, msg, **ctx),
        "message": {"order_id": order_id, "cancellation_reason_id": reason},
    }


def status_body(order_id="O1", txn="T1", msg="M3", **ctx):
    return {
        "context": make_context("status", txn, msg, **ctx),
        "message": {"order_id": order_id},
    }


def on_action_body(action, order=None, txn="T1", msg="M9", error=None, state="Accepted"):
    body = {"context": make_context(action, txn, msg, bpp_id="bpp.test", bpp_uri="http://bpp.test")}
    if order is not False:
        order = copy.deepcopy(order if order is not None else make_order())
        if state is None:
            order.pop("state", None)
        else:
            order["state"] = state
        body["message"] = {"order": order}
    if error is not None:
        body["error"] = error
    return body
