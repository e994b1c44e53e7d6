# ondc_relay/services/buyer.py
#
# BAP side: validates, deduplicates and reconciles on_confirm / on_cancel /
# on_status callbacks and returns the synchronous ACK/NACK decision.

from typing import Any, Dict, Iterable, Optional, Tuple

from config import RECONCILE_AXES
from db import OrderRepository
from exceptions import (
    ContextError,
    DomainError,
    ProtocolError,
    MISSING_FIELDS,
    MISSING_ORDER_ID,
    MISSING_ORDER_STATE,
    ORDER_NOT_FOUND,
    ORDER_MISMATCH,
    UNEXPECTED_ORDER_STATE,
    ALREADY_CANCELLED_BY_BUYER,
)
from models import (
    ACK, NACK, ON_CONFIRM, ON_CANCEL, ON_STATUS,
    BapOrderRecord, BapStatus, CallbackDecision, OrderState, Snapshot,
)
from services.reconcile import mismatched_axes
from logger import get_logger

log = get_logger("buyer")

STATUS_TERMINAL = BapStatus.STATUS_TERMINAL | {
    BapStatus.CANCELLED, BapStatus.CANCELLED_BY_SELLER, BapStatus.CANCELLED_BY_BUYER,
}


class CallbackProcessor:

    def __init__(self, repository: OrderRepository, reconcile_axes: Iterable[str] = RECONCILE_AXES):
        self.repo = repository
        self.reconcile_axes = list(reconcile_axes)

    # ------------------------------------------------------------
    # Outbound bookkeeping
    # ------------------------------------------------------------
    def register_order(self, order_id: str, context: Dict[str, Any], order: Dict[str, Any]) -> BapOrderRecord:
        """Store the originals when this BAP dispatches /confirm for an order."""
        record = BapOrderRecord(
            order_id=str(order_id),
            original_order_details=Snapshot.of(order),
            original_context=Snapshot.of(context),
        )
        stored, created = self.repo.create_if_absent(record)
        if created:
            log.info(f"Storing initiated order: {order_id}")
        else:
            log.warning(f"Attempted to add duplicate OrderID: {order_id}")
        return stored

    def cancel_locally(self, order_id: str) -> Optional[BapOrderRecord]:
        """Buyer cancelled before the seller's on_confirm arrived."""
        return self.repo.update(str(order_id), status=BapStatus.CANCELLED_BY_BUYER)

    # ------------------------------------------------------------
    # Inbound callbacks
    # ------------------------------------------------------------
    def handle_on_confirm(self, body: Dict[str, Any]) -> CallbackDecision:
        try:
            context, message, error, order_id, state = self._validate(ON_CONFIRM, body)
            rec = self._lookup(order_id, context)
        except ProtocolError as e:
            return self._nack(ON_CONFIRM, body, e)

        prior = rec.callback_decisions.get(ON_CONFIRM)
        if prior:
            log.info(f"[{rec.order_id}] Idempotency: /on_confirm already processed. Resending previous {_ack_label(prior)}.")
            return CallbackDecision.from_dict(prior)

        if error:
            log.warning(f"[{rec.order_id}] /on_confirm received with explicit error from BPP: {error}")
            self._on_cancelled(rec.order_id, f"Error from Seller: {error.get('message') or error.get('code')}")
            return self._record(rec, ON_CONFIRM, BapStatus.FAILED, body, CallbackDecision(True))

        if rec.status == BapStatus.CANCELLED_BY_BUYER:
            e = DomainError("Order already cancelled by buyer", ALREADY_CANCELLED_BY_BUYER)
            return self._record(rec, ON_CONFIRM, BapStatus.FAILED, body, CallbackDecision(False, e.to_dict()))

        if state == OrderState.CANCELLED:
            log.info(f"[{rec.order_id}] Order was cancelled by the seller in /on_confirm.")
            self._on_cancelled(rec.order_id, "Cancelled by Seller")
            return self._record(rec, ON_CONFIRM, BapStatus.CANCELLED_BY_SELLER, body, CallbackDecision(True))

        mismatches = mismatched_axes(rec.original_order_details.data(), message["order"], self.reconcile_axes)
        if mismatches:
            log.error(f"[{rec.order_id}] Order object changed significantly: {', '.join(mismatches)}")
            e = DomainError(f"Order details mismatch ({', '.join(mismatches)} differs)", ORDER_MISMATCH)
            return self._record(rec, ON_CONFIRM, BapStatus.FAILED, body, CallbackDecision(False, e.to_dict()))

        log.info(f"[{rec.order_id}] /on_confirm validated successfully. Final state from BPP: {state}")
        self._on_confirmed(message["order"])
        return self._record(rec, ON_CONFIRM, BapStatus.CONFIRMED, body, CallbackDecision(True))

    def handle_on_cancel(self, body: Dict[str, Any]) -> CallbackDecision:
        try:
            context, message, error, order_id, state = self._validate(ON_CANCEL, body)
            rec = self._lookup(order_id, context)
        except ProtocolError as e:
            return self._nack(ON_CANCEL, body, e)

        prior = rec.callback_decisions.get(ON_CANCEL)
        if prior:
            log.info(f"[{rec.order_id}] Idempotency: /on_cancel already processed (status {rec.status}). "
                     f"Resending previous {_ack_label(prior)}.")
            return CallbackDecision.from_dict(prior)

        if error:
            log.warning(f"[{rec.order_id}] /on_cancel received with explicit error from BPP: {error}")
            self._on_cancelled(rec.order_id, f"Cancellation failed by Seller: {error.get('message') or error.get('code')}")
            return self._record(rec, ON_CANCEL, BapStatus.CANCEL_ERROR, body, CallbackDecision(True))

        if state == OrderState.CANCELLED:
            log.info(f"[{rec.order_id}] Order cancellation confirmed by BPP.")
            self._on_cancelled(rec.order_id, "Cancelled successfully by Seller")
            return self._record(rec, ON_CANCEL, BapStatus.CANCELLED, body, CallbackDecision(True))

        e = DomainError(f"Received /on_cancel with unexpected order state: {state}", UNEXPECTED_ORDER_STATE)
        log.error(f"[{rec.order_id}] {e.message}. Expecting '{OrderState.CANCELLED}'.")
        return self._record(rec, ON_CANCEL, BapStatus.FAILED, body, CallbackDecision(False, e.to_dict()))

    def handle_on_status(self, body: Dict[str, Any]) -> CallbackDecision:
        try:
            context, message, error, order_id, state = self._validate(ON_STATUS, body)
            rec = self._lookup(order_id, context)
        except ProtocolError as e:
            return self._nack(ON_STATUS, body, e)

        if rec.status in STATUS_TERMINAL:
            log.info(f"[{rec.order_id}] /on_status for order already in terminal state {rec.status}. ACK, not processed.")
            return CallbackDecision(True)

        if error:
            log.warning(f"[{rec.order_id}] /on_status received with explicit error from BPP: {error}")
            return self._record(rec, None, BapStatus.FAILED, body, CallbackDecision(True))

        if not state:
            log.warning(f"[{rec.order_id}] /on_status without order.state. Keeping status {rec.status}.")
        log.info(f"[{rec.order_id}] Status update received. New state: {state}.")
        self._on_status_update(message["order"])
        return self._record(rec, None, state or rec.status, body, CallbackDecision(True))

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    def _validate(self, action: str, body: Dict[str, Any]) -> Tuple[Dict, Optional[Dict], Optional[Dict], Optional[str], Optional[str]]:
        context = body.get("context") if isinstance(body, dict) else None
        if not isinstance(context, dict) or not context.get("transaction_id"):
            raise ContextError("Missing context or transaction_id", MISSING_FIELDS)

        message = body.get("message")
        error = body.get("error")
        if not message and not error:
            raise ContextError("Request must have either a message or an error object", MISSING_FIELDS)

        order = (message or {}).get("order") if isinstance(message, dict) else None
        if message and (not isinstance(order, dict) or not order.get("id")):
            raise DomainError("Missing order.id in message", MISSING_ORDER_ID)

        order_id = str(order["id"]) if order else None
        state = order.get("state") if order else None

        if message and not error and not state and action in (ON_CONFIRM, ON_CANCEL):
            raise DomainError("Missing order.state in message.order", MISSING_ORDER_STATE)

        if error is not None and not isinstance(error, dict):
            error = {"message": str(error)}
        return context, message, error, order_id, state

    def _lookup(self, order_id: Optional[str], context: Dict[str, Any]) -> BapOrderRecord:
        # error-only callbacks carry no order id; the transaction id is the shared key
        if order_id:
            rec = self.repo.get(order_id)
        else:
            rec = self.repo.find_by_transaction(context.get("transaction_id"))
        if rec is None:
            ref = order_id or f"for transaction {context.get('transaction_id')}"
            raise DomainError(f"Order ID {ref} not found or doesn't match original request", ORDER_NOT_FOUND)
        return rec

    def _record(self, rec: BapOrderRecord, action: Optional[str], status: str,
                body: Dict[str, Any], decision: CallbackDecision) -> CallbackDecision:
        decisions = dict(rec.callback_decisions)
        if action is not None:
            decisions[action] = decision.to_dict()
        changes = {
            "status": status,
            "last_received_callback": Snapshot.of(body),
            "ack_nack_sent": decision.status,
            "callback_decisions": decisions,
        }
        if decision.status == NACK:
            changes["nack_reason"] = decision.error
        else:
            changes["nack_reason"] = None
        self.repo.update(rec.order_id, **changes)
        log.info(f"Updated OrderID {rec.order_id}: Status={status}, AckNackSent={decision.status}")
        return decision

    @staticmethod
    def _nack(action: str, body: Dict[str, Any], error: ProtocolError) -> CallbackDecision:
        txn = ((body or {}).get("context") or {}).get("transaction_id") if isinstance(body, dict) else None
        log.error(f"[{txn}] Invalid /{action}: {error.error_type} {error.code} {error.message}")
        return CallbackDecision(False, error.to_dict())

    # buyer-facing notifications (logged; the buyer app UI is not part of this service)
    def _on_confirmed(self, order: Dict[str, Any]) -> None:
        log.info(f"Notifying buyer about confirmation for Order ID: {order.get('id')}. State: {order.get('state')}")

    def _on_cancelled(self, order_id: str, reason: str) -> None:
        log.info(f"Notifying buyer about cancellation for Order ID: {order_id}. Reason: {reason}")

    def _on_status_update(self, order: Dict[str, Any]) -> None:
        log.info(f"Notifying buyer about status update for Order ID: {order.get('id')}. New State: {order.get('state')}")


def _ack_label(decision: Dict[str, Any]) -> str:
    return ACK if decision.get("ack") else NACK
