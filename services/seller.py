# ondc_relay/services/seller.py
#
# BPP side: /confirm, /cancel and /status intake plus the asynchronous
# decide -> build -> deliver pipeline that ends in an on_* callback.

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional

from config import (
    BPP_ID,
    BPP_URI,
    SERVICEABLE_PINCODES,
    FORCE_REJECT_ITEM_ID,
    NON_CANCELLABLE_STATES,
)
from db import OrderRepository
from emailer import notify_order_failure
from exceptions import CoreError, DomainError, ProtocolError, ORDER_NOT_FOUND
from models import (
    CONFIRM, CANCEL, STATUS, ON_CONFIRM, ON_CANCEL, ON_STATUS,
    CallbackDecision, CatalogSnapshot, OrderRecord, OrderState, OrderStatus, Snapshot,
)
from services.decision import decide_confirm, decide_cancel, needs_refund
from services.delivery import DeliveryEngine
from services.response_builder import (
    build_context,
    build_accepted_order,
    build_rejected_order,
    build_cancelled_order,
    build_status_order,
    build_callback,
    build_error_payload,
)
from services.tasks import TaskRunner
from services.validator import validate_request
from logger import get_logger

log = get_logger("seller")


class SellerWorkflow:

    def __init__(
        self,
        repository: OrderRepository,
        delivery: DeliveryEngine,
        runner: TaskRunner,
        identity: Optional[Dict[str, str]] = None,
        serviceable_area_codes: Iterable[str] = SERVICEABLE_PINCODES,
        force_reject_item_id: str = FORCE_REJECT_ITEM_ID,
        non_cancellable_states: Iterable[str] = NON_CANCELLABLE_STATES,
        alert: Callable[..., None] = notify_order_failure,
    ):
        self.repo = repository
        self.delivery = delivery
        self.runner = runner
        self.identity = identity or {"bpp_id": BPP_ID, "bpp_uri": BPP_URI}
        self.serviceable_area_codes = frozenset(serviceable_area_codes)
        self.force_reject_item_id = force_reject_item_id
        self.non_cancellable_states = frozenset(non_cancellable_states)
        self.alert = alert

    # ------------------------------------------------------------
    # Synchronous intake (returns the ACK/NACK for the transport)
    # ------------------------------------------------------------
    def handle_confirm(self, body: Dict[str, Any], now: Optional[datetime] = None) -> CallbackDecision:
        result = validate_request(CONFIRM, body, now=now)
        if not result.ok:
            log.error(f"Invalid /confirm payload: {result.error.message}")
            return CallbackDecision(False, result.error.to_dict())

        context = body["context"]
        order = body["message"]["order"]
        order_id = str(order["id"])

        record = OrderRecord(
            order_id=order_id,
            status=OrderStatus.RECEIVED,
            original_request=Snapshot.of(body),
            order_state=order.get("state") or OrderState.CREATED,
            catalog_snapshot=CatalogSnapshot.from_items(order.get("items")),
        )
        stored, created = self.repo.create_if_absent(record)

        if not created:
            log.info(f"[{order_id}] Idempotency: /confirm already received (status={stored.status}).")
            if stored.status == OrderStatus.ON_CONFIRM_SENT and stored.response_payload is not None:
                log.info(f"[{order_id}] Idempotency: resending previous /on_confirm.")
                self._resend_async(order_id, context.get("bap_uri"), ON_CONFIRM, stored.response_payload)
            return CallbackDecision(True)

        log.info(f"[{order_id}] Stored initial confirm request. Async processing triggered.")
        self.runner.spawn(f"confirm:{order_id}", self._process_confirm, order_id)
        return CallbackDecision(True)

    def handle_cancel(self, body: Dict[str, Any], now: Optional[datetime] = None) -> CallbackDecision:
        result = validate_request(CANCEL, body, now=now)
        if not result.ok:
            log.error(f"Invalid /cancel payload: {result.error.message}")
            return CallbackDecision(False, result.error.to_dict())

        context = body["context"]
        order_id = str(body["message"]["order_id"])
        snap = Snapshot.of(body)

        stored, created = self.repo.create_if_absent(
            OrderRecord(order_id=order_id, status=OrderStatus.CANCEL_REQUESTED, cancel_request=snap)
        )
        if not created:
            stored, claimed = self.repo.update_unless(
                order_id, OrderStatus.CANCEL_REPLAY,
                status=OrderStatus.CANCEL_REQUESTED, cancel_request=snap,
            )
            if not claimed:
                log.info(f"[{order_id}] Idempotency: /cancel already handled (status={stored.status}).")
                if stored.status in OrderStatus.CANCEL_RESEND and stored.cancel_response_payload is not None:
                    log.info(f"[{order_id}] Idempotency: resending previous /on_cancel.")
                    self._resend_async(order_id, context.get("bap_uri"), ON_CANCEL, stored.cancel_response_payload,
                                       promote_from=stored.status)
                return CallbackDecision(True)

        log.info(f"[{order_id}] Cancel request recorded. Async processing triggered.")
        self.runner.spawn(f"cancel:{order_id}", self._process_cancel, order_id)
        return CallbackDecision(True)

    def handle_status(self, body: Dict[str, Any], now: Optional[datetime] = None) -> CallbackDecision:
        result = validate_request(STATUS, body, now=now)
        if not result.ok:
            log.error(f"Invalid /status payload: {result.error.message}")
            return CallbackDecision(False, result.error.to_dict())

        order_id = str(body["message"]["order_id"])
        log.info(f"[{order_id}] Status request received. Triggering async response.")
        self.runner.spawn(f"status:{order_id}", self._process_status, order_id, Snapshot.of(body))
        return CallbackDecision(True)

    # ------------------------------------------------------------
    # Asynchronous pipelines
    # ------------------------------------------------------------
    def _process_confirm(self, order_id: str) -> None:
        rec = self.repo.get(order_id)
        request = rec.original_request.data()
        context = request["context"]
        order = request["message"]["order"]
        bap_uri = context.get("bap_uri")

        try:
            _, started = self.repo.update_unless(order_id, OrderStatus.CANCEL_FAMILY, status=OrderStatus.PROCESSING)
            if not started:
                log.info(f"[{order_id}] Cancellation arrived before confirm processing; skipping /on_confirm.")
                return

            verdict = decide_confirm(order, self.serviceable_area_codes, self.force_reject_item_id)
            callback_ctx = build_context(context, ON_CONFIRM, self.identity)

            if verdict.accepted:
                payload = build_callback(callback_ctx, build_accepted_order(order))
                status, state = OrderStatus.ACCEPTED, OrderState.ACCEPTED
            else:
                rejected = build_rejected_order(order, verdict.reason_code, self.identity.get("bpp_id"))
                payload = build_callback(callback_ctx, rejected)
                status, state = OrderStatus.REJECTED, OrderState.CANCELLED
            log.info(f"[{order_id}] Decision: {status}. Sending /on_confirm to {bap_uri}")

            _, kept = self.repo.update_unless(
                order_id, OrderStatus.CANCEL_FAMILY,
                status=status, order_state=state, response_payload=Snapshot.of(payload),
            )
            if not kept:
                log.info(f"[{order_id}] Cancellation superseded confirm processing; /on_confirm not sent.")
                return

            sent = self.delivery.deliver(bap_uri, ON_CONFIRM, payload)
            final = OrderStatus.ON_CONFIRM_SENT if sent else OrderStatus.ON_CONFIRM_FAILED
            self.repo.update_unless(order_id, OrderStatus.CANCEL_FAMILY, status=final)
            if not sent:
                self._alert(order_id, ON_CONFIRM, final, "Callback not acknowledged by counterparty")

        except Exception as e:
            self._fail(order_id, ON_CONFIRM, context, bap_uri, e, OrderStatus.ERROR, "response_payload",
                       "BPP error processing order")

    def _process_cancel(self, order_id: str) -> None:
        rec = self.repo.get(order_id)
        cancel_request = rec.cancel_request.data()
        context = cancel_request["context"]
        reason_id = str(cancel_request["message"]["cancellation_reason_id"])
        bap_uri = context.get("bap_uri")

        try:
            order = rec.original_order()
            if order is None:
                raise DomainError(f"Order {order_id} not found for cancellation processing.", ORDER_NOT_FOUND)

            verdict = decide_cancel(rec.order_state, order.get("items"), rec.catalog_snapshot,
                                    self.non_cancellable_states)
            callback_ctx = build_context(context, ON_CANCEL, self.identity)

            if verdict.accepted:
                cancelled = build_cancelled_order(order, order_id, reason_id, context.get("bap_id"))
                payload = build_callback(callback_ctx, cancelled)
                self.repo.update(order_id, status=OrderStatus.CANCELLED, order_state=OrderState.CANCELLED,
                                 cancel_response_payload=Snapshot.of(payload))
                if needs_refund(order):
                    log.info(f"[{order_id}] Initiating refund for prepaid order.")
                sent_status, failed_status = OrderStatus.ON_CANCEL_SENT, OrderStatus.CANCELLED_SEND_FAILED
            else:
                log.info(f"[{order_id}] Cancellation rejected ({verdict.cause}): {verdict.reason_message}")
                payload = build_error_payload(callback_ctx, DomainError(verdict.reason_message, verdict.reason_code))
                self.repo.update(order_id, status=OrderStatus.CANCEL_REJECTING,
                                 cancel_response_payload=Snapshot.of(payload))
                sent_status, failed_status = OrderStatus.CANCEL_REJECTED, OrderStatus.CANCEL_REJECTED_SEND_FAILED

            sent = self.delivery.deliver(bap_uri, ON_CANCEL, payload)
            final = sent_status if sent else failed_status
            self.repo.update(order_id, status=final)
            if not sent:
                self._alert(order_id, ON_CANCEL, final, "Callback not acknowledged by counterparty")

        except Exception as e:
            self._fail(order_id, ON_CANCEL, context, bap_uri, e, OrderStatus.CANCEL_ERROR, "cancel_response_payload",
                       "BPP error processing cancellation")

    def _process_status(self, order_id: str, request: Snapshot) -> None:
        body = request.data()
        context = body["context"]
        bap_uri = context.get("bap_uri")
        rec = self.repo.get(order_id)
        callback_ctx = build_context(context, ON_STATUS, self.identity)

        try:
            order = current_order(rec) if rec is not None else None
            if order is None:
                log.error(f"[{order_id}] Cannot process status request: order details not found.")
                payload = build_error_payload(
                    callback_ctx, DomainError(f"Order with ID {order_id} not found.", ORDER_NOT_FOUND)
                )
            else:
                payload = build_callback(callback_ctx, build_status_order(order, rec.order_state, rec.last_updated_at))

            sent = self.delivery.deliver(bap_uri, ON_STATUS, payload)
            if rec is not None:
                self.repo.update(order_id, status_callback=OrderStatus.ON_STATUS_SENT if sent
                                 else OrderStatus.ON_STATUS_FAILED)

        except Exception as e:
            log.exception(f"[{order_id}] Error during async status processing")
            if rec is not None:
                self.repo.update(order_id, status_callback=OrderStatus.STATUS_ERROR)
            err = CoreError(f"Internal BPP error processing status request: {e}")
            self.delivery.deliver(bap_uri, ON_STATUS, build_error_payload(callback_ctx, err))

    # ------------------------------------------------------------
    # Failure boundary / resend
    # ------------------------------------------------------------
    def _fail(self, order_id, action, context, bap_uri, exc, status, payload_field, prefix) -> None:
        if isinstance(exc, ProtocolError):
            log.error(f"[{order_id}] {action} pipeline failed: {exc.error_type} {exc.code} {exc.message}")
            error = exc
        else:
            log.exception(f"[{order_id}] Error during async {action} processing")
            error = CoreError(str(exc))

        payload = build_error_payload(build_context(context, action, self.identity), error, prefix)
        self.repo.update(order_id, status=status, **{payload_field: Snapshot.of(payload)})

        log.error(f"[{order_id}] Attempting to send error /{action} to {bap_uri}")
        if not self.delivery.deliver(bap_uri, action, payload):
            log.error(f"[{order_id}] Failed even to send the error /{action} notification.")
        self._alert(order_id, action, status, error.message)

    def _alert(self, order_id, action, status, message) -> None:
        try:
            self.alert(order_id, action, status, message)
        except Exception as e:
            log.error(f"[{order_id}] Admin alert failed: {e}")

    def _resend_async(self, order_id: str, bap_uri: Optional[str], action: str, payload: Snapshot,
                      promote_from: Optional[str] = None) -> None:
        def _resend():
            if not self.delivery.deliver(bap_uri, action, payload.data()):
                log.error(f"[{order_id}] Idempotency: error resending /{action}")
                return
            # a send-failed record moves to its sent status once the resend is acknowledged
            if promote_from in OrderStatus.SEND_FAILED:
                self.repo.update_if(order_id, {promote_from}, status=OrderStatus.SEND_FAILED[promote_from])

        self.runner.spawn(f"resend:{action}:{order_id}", _resend)

    def resend_failed(self, order_id: str) -> bool:
        """Re-deliver the cached callback of an order left in a send-failed status."""
        rec = self.repo.get(order_id)
        if rec is None:
            raise DomainError(f"Order with ID {order_id} not found.", ORDER_NOT_FOUND)
        if rec.status not in OrderStatus.SEND_FAILED:
            raise DomainError(f"Order {order_id} is not in a send-failed status ({rec.status}).")

        if rec.status == OrderStatus.ON_CONFIRM_FAILED:
            action, cached = ON_CONFIRM, rec.response_payload
        else:
            action, cached = ON_CANCEL, rec.cancel_response_payload
        if cached is None:
            raise DomainError(f"Order {order_id} has no cached /{action} payload.")

        payload = cached.data()
        bap_uri = (payload.get("context") or {}).get("bap_uri")
        log.info(f"[{order_id}] Resending /{action} (status={rec.status}).")
        if not self.delivery.deliver(bap_uri, action, payload):
            return False

        _, moved = self.repo.update_if(order_id, {rec.status}, status=OrderStatus.SEND_FAILED[rec.status])
        return moved


def current_order(rec: OrderRecord) -> Optional[Dict[str, Any]]:
    """Most complete order view we hold: the accepted on_confirm order, else the original."""
    if rec.response_payload is not None:
        built = (rec.response_payload.data().get("message") or {}).get("order")
        if built and built.get("items") and built.get("fulfillments"):
            return built
    return rec.original_order()
