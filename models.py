#models.py
import json
from dataclasses import dataclass, field, asdict
from types import MappingProxyType
from typing import Optional, List, Dict, Any, Mapping

from config import utc_now_iso

ACK = "ACK"
NACK = "NACK"

CONFIRM = "confirm"
CANCEL = "cancel"
STATUS = "status"
ON_CONFIRM = "on_confirm"
ON_CANCEL = "on_cancel"
ON_STATUS = "on_status"


class OrderStatus:
    """BPP (initiating role) record statuses."""
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    ON_CONFIRM_SENT = "ON_CONFIRM_SENT"
    ON_CONFIRM_FAILED = "ON_CONFIRM_FAILED"
    ERROR = "ERROR"

    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    CANCELLED = "CANCELLED"
    ON_CANCEL_SENT = "ON_CANCEL_SENT"
    CANCELLED_SEND_FAILED = "CANCELLED_SEND_FAILED"
    CANCEL_REJECTING = "CANCEL_REJECTING"
    CANCEL_REJECTED = "CANCEL_REJECTED"
    CANCEL_REJECTED_SEND_FAILED = "CANCEL_REJECTED_SEND_FAILED"
    CANCEL_ERROR = "CANCEL_ERROR"

    ON_STATUS_SENT = "ON_STATUS_SENT"
    ON_STATUS_FAILED = "ON_STATUS_FAILED"
    STATUS_ERROR = "STATUS_ERROR"

    # duplicate cancel requests in these states never re-run the decision
    CANCEL_REPLAY = frozenset({
        CANCEL_REQUESTED, CANCELLED, CANCEL_REJECTING, ON_CANCEL_SENT, CANCEL_REJECTED,
        CANCELLED_SEND_FAILED, CANCEL_REJECTED_SEND_FAILED,
    })
    # replayed cancels resend the cached on_cancel from these states
    CANCEL_RESEND = frozenset({ON_CANCEL_SENT, CANCEL_REJECTED, CANCELLED_SEND_FAILED, CANCEL_REJECTED_SEND_FAILED})
    # a cancel that claimed the record wins over a confirm still in flight
    CANCEL_FAMILY = CANCEL_REPLAY | {CANCEL_ERROR}

    SEND_FAILED = {
        ON_CONFIRM_FAILED: ON_CONFIRM_SENT,
        CANCELLED_SEND_FAILED: ON_CANCEL_SENT,
        CANCEL_REJECTED_SEND_FAILED: CANCEL_REJECTED,
    }


class BapStatus:
    """BAP (receiving role) record statuses."""
    CONFIRM_SENT = "CONFIRM_SENT"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED_BY_BUYER = "CANCELLED_BY_BUYER"
    CANCELLED_BY_SELLER = "CANCELLED_BY_SELLER"
    CANCELLED = "CANCELLED"
    CANCEL_ERROR = "CANCEL_ERROR"

    STATUS_TERMINAL = frozenset({"Delivered", "Completed", "Cancelled"})


class OrderState:
    """Protocol-level order states carried in message.order.state."""
    CREATED = "Created"
    ACCEPTED = "Accepted"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class Snapshot:
    """Immutable value copy of a JSON document. data() always hands out a fresh copy."""
    raw: str

    @classmethod
    def of(cls, payload: Optional[Mapping[str, Any]]) -> Optional["Snapshot"]:
        if payload is None:
            return None
        return cls(json.dumps(payload, sort_keys=True, separators=(",", ":")))

    def data(self) -> Dict[str, Any]:
        return json.loads(self.raw)


@dataclass(frozen=True)
class CatalogSnapshot:
    flags: Mapping[str, bool] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "flags", MappingProxyType(dict(self.flags)))

    @classmethod
    def from_items(cls, items: Optional[List[Dict[str, Any]]]) -> "CatalogSnapshot":
        flags = {}
        for item in items or []:
            if item.get("id") is None:
                continue
            flag = item.get("@ondc/org/cancellable")
            flags[str(item["id"])] = True if flag is None else bool(flag)
        return cls(flags)

    def is_cancellable(self, item_id: str) -> bool:
        # unknown items default to cancellable
        return self.flags.get(str(item_id), True)

    def to_dict(self) -> Dict[str, bool]:
        return dict(self.flags)


@dataclass
class OrderRecord:
    order_id: str
    status: str
    original_request: Optional[Snapshot] = None
    cancel_request: Optional[Snapshot] = None
    order_state: str = OrderState.CREATED
    catalog_snapshot: CatalogSnapshot = field(default_factory=CatalogSnapshot)
    response_payload: Optional[Snapshot] = None
    cancel_response_payload: Optional[Snapshot] = None
    status_callback: Optional[str] = None
    last_updated_at: str = field(default_factory=utc_now_iso)

    def original_order(self) -> Optional[Dict[str, Any]]:
        if self.original_request is None:
            return None
        return (self.original_request.data().get("message") or {}).get("order")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "status": self.status,
            "original_request": _snap_out(self.original_request),
            "cancel_request": _snap_out(self.cancel_request),
            "order_state": self.order_state,
            "catalog_snapshot": self.catalog_snapshot.to_dict(),
            "response_payload": _snap_out(self.response_payload),
            "cancel_response_payload": _snap_out(self.cancel_response_payload),
            "status_callback": self.status_callback,
            "last_updated_at": self.last_updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OrderRecord":
        return cls(
            order_id=d["order_id"],
            status=d["status"],
            original_request=Snapshot.of(d.get("original_request")),
            cancel_request=Snapshot.of(d.get("cancel_request")),
            order_state=d.get("order_state") or OrderState.CREATED,
            catalog_snapshot=CatalogSnapshot(d.get("catalog_snapshot") or {}),
            response_payload=Snapshot.of(d.get("response_payload")),
            cancel_response_payload=Snapshot.of(d.get("cancel_response_payload")),
            status_callback=d.get("status_callback"),
            last_updated_at=d.get("last_updated_at") or utc_now_iso(),
        )


@dataclass
class BapOrderRecord:
    order_id: str
    original_order_details: Snapshot
    original_context: Snapshot
    status: str = BapStatus.CONFIRM_SENT
    last_received_callback: Optional[Snapshot] = None
    ack_nack_sent: Optional[str] = None
    nack_reason: Optional[Dict[str, Any]] = None
    callback_decisions: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    last_updated_at: str = field(default_factory=utc_now_iso)

    @property
    def transaction_id(self) -> Optional[str]:
        return self.original_context.data().get("transaction_id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "original_order_details": self.original_order_details.data(),
            "original_context": self.original_context.data(),
            "status": self.status,
            "last_received_callback": _snap_out(self.last_received_callback),
            "ack_nack_sent": self.ack_nack_sent,
            "nack_reason": self.nack_reason,
            "callback_decisions": json.loads(json.dumps(self.callback_decisions)),
            "last_updated_at": self.last_updated_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BapOrderRecord":
        return cls(
            order_id=d["order_id"],
            original_order_details=Snapshot.of(d["original_order_details"]),
            original_context=Snapshot.of(d["original_context"]),
            status=d.get("status") or BapStatus.CONFIRM_SENT,
            last_received_callback=Snapshot.of(d.get("last_received_callback")),
            ack_nack_sent=d.get("ack_nack_sent"),
            nack_reason=d.get("nack_reason"),
            callback_decisions=d.get("callback_decisions") or {},
            last_updated_at=d.get("last_updated_at") or utc_now_iso(),
        )


def _snap_out(snap: Optional[Snapshot]) -> Optional[Dict[str, Any]]:
    return snap.data() if snap is not None else None


@dataclass(frozen=True)
class Verdict:
    accepted: bool
    reason_code: Optional[str] = None
    reason_message: Optional[str] = None
    cause: Optional[str] = None       # cancel only: "state" / "item"


@dataclass
class CallbackDecision:
    """Synchronous ACK/NACK for an inbound message."""
    ack: bool
    error: Optional[Dict[str, Any]] = None

    @property
    def status(self) -> str:
        return ACK if self.ack else NACK

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CallbackDecision":
        return cls(ack=bool(d.get("ack")), error=d.get("error"))


@dataclass
class AckDecodeResult:
    status_code: Optional[int]
    ack_status: Optional[str]
    raw_error: str = ""
    error: Optional[Dict[str, Any]] = None
