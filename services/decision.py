from typing import Any, Dict, Iterable, List, Optional

from config import SERVICEABLE_PINCODES, FORCE_REJECT_ITEM_ID, NON_CANCELLABLE_STATES
from exceptions import NON_CANCELLABLE_STATE, NON_CANCELLABLE_ITEM
from models import CatalogSnapshot, Verdict
from logger import get_logger

log = get_logger("decision")

REASON_NOT_SERVICEABLE = "001"
REASON_ITEM_UNAVAILABLE = "003"


def delivery_area_code(order: Dict[str, Any]) -> Optional[str]:
    fulfillments = order.get("fulfillments") or []
    first = fulfillments[0] if fulfillments else {}
    return ((((first or {}).get("end") or {}).get("location") or {}).get("address") or {}).get("area_code")


def decide_confirm(
    order: Dict[str, Any],
    serviceable_area_codes: Iterable[str] = SERVICEABLE_PINCODES,
    force_reject_item_id: str = FORCE_REJECT_ITEM_ID,
) -> Verdict:
    order_id = order.get("id")

    if any((item or {}).get("id") == force_reject_item_id for item in order.get("items") or []):
        log.info(f"[{order_id}] Rejected: force-reject item present.")
        return Verdict(False, REASON_ITEM_UNAVAILABLE, "Item not available")

    area_code = delivery_area_code(order)
    if area_code is None or str(area_code) not in set(serviceable_area_codes):
        log.info(f"[{order_id}] Rejected: pincode {area_code} not serviceable.")
        return Verdict(False, REASON_NOT_SERVICEABLE, "Delivery location not serviceable")

    log.info(f"[{order_id}] Accepted.")
    return Verdict(True)


def decide_cancel(
    order_state: Optional[str],
    items: Optional[List[Dict[str, Any]]],
    catalog_snapshot: CatalogSnapshot,
    non_cancellable_states: Iterable[str] = NON_CANCELLABLE_STATES,
) -> Verdict:
    """Both the lifecycle state and every item must allow cancellation."""
    if order_state in set(non_cancellable_states):
        return Verdict(
            False,
            NON_CANCELLABLE_STATE,
            f"Order cannot be cancelled in current state ({order_state}).",
            cause="state",
        )

    for item in items or []:
        item_id = (item or {}).get("id")
        if item_id is not None and not catalog_snapshot.is_cancellable(item_id):
            log.warning(f"Item {item_id} is marked non-cancellable.")
            return Verdict(
                False,
                NON_CANCELLABLE_ITEM,
                f"Order cannot be cancelled as item {item_id} is non-cancellable.",
                cause="item",
            )

    return Verdict(True)


def needs_refund(order: Dict[str, Any]) -> bool:
    payment = order.get("payment") or {}
    return (
        payment.get("type") == "ON-ORDER"
        and payment.get("collected_by") == "BPP"
        and payment.get("status") in ("PAID", "Captured")
    )
