# ondc_relay/services/reconcile.py
from typing import Any, Callable, Dict, Iterable, List

from config import RECONCILE_AXES
from services.decision import delivery_area_code
from logger import get_logger

log = get_logger("reconcile")


def _items(order: Dict[str, Any]):
    return [
        {"id": (i or {}).get("id"), "quantity": (i or {}).get("quantity")}
        for i in order.get("items") or []
    ]


def _quote_value(order: Dict[str, Any]):
    return ((order.get("quote") or {}).get("price") or {}).get("value")


def _fulfillment(order: Dict[str, Any]):
    first = (order.get("fulfillments") or [{}])[0] or {}
    return first.get("type"), delivery_area_code(order)


AXES: Dict[str, Callable[[Dict[str, Any]], Any]] = {
    "items": _items,
    "quote": _quote_value,
    "fulfillment": _fulfillment,
}


def mismatched_axes(original: Dict[str, Any], received: Dict[str, Any], axes: Iterable[str] = RECONCILE_AXES) -> List[str]:
    """
    Names of the axes on which the received order diverges from the original.
    Empty list means the orders reconcile.
    """
    if not original or not received:
        return ["order"]

    out = []
    for name in axes:
        extract = AXES.get(name)
        if extract is None:
            raise ValueError(f"Unknown reconciliation axis {name!r}")
        if extract(original) != extract(received):
            log.warning(f"Order {name} mismatch.")
            out.append(name)
    return out
