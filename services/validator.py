# ondc_relay/services/validator.py
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import ALLOWED_CANCELLATION_REASONS, STALE_REQUEST_SECONDS
from exceptions import (
    ContextError,
    DomainError,
    ProtocolError,
    MISSING_FIELDS,
    STALE_REQUEST,
    INVALID_CANCELLATION_REASON,
)
from models import CONFIRM, CANCEL, STATUS


@dataclass
class ValidationResult:
    ok: bool
    error: Optional[ProtocolError] = None


def parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _require_context(body: Dict[str, Any]) -> Dict[str, Any]:
    context = body.get("context") if isinstance(body, dict) else None
    if not isinstance(context, dict) or not context.get("bap_uri") or not context.get("transaction_id"):
        raise ContextError(
            "Invalid request payload: missing context, BAP URI, or transaction ID", MISSING_FIELDS
        )
    return context


def _require_message(action: str, body: Dict[str, Any], context: Dict[str, Any]) -> Dict[str, Any]:
    message = body.get("message")
    if not isinstance(message, dict):
        raise ContextError(f"Invalid /{action} payload: missing message", MISSING_FIELDS)

    if action == CONFIRM:
        order = message.get("order")
        if not isinstance(order, dict) or not order.get("id"):
            raise ContextError("Invalid /confirm payload: missing order or order ID", MISSING_FIELDS)
    elif action == CANCEL:
        if not message.get("order_id") or not message.get("cancellation_reason_id") or not context.get("timestamp"):
            raise ContextError(
                "Invalid /cancel payload: missing order_id, cancellation_reason_id or timestamp",
                MISSING_FIELDS,
            )
    elif action == STATUS:
        if not message.get("order_id"):
            raise ContextError("Invalid /status payload: missing order_id", MISSING_FIELDS)
    else:
        raise ValueError(f"Unsupported action {action!r}")
    return message


def _check_fresh(context: Dict[str, Any], now: datetime, max_age_seconds: int) -> None:
    if not context.get("ttl"):
        return
    ts = parse_timestamp(context.get("timestamp"))
    if ts is None or (now - ts).total_seconds() > max_age_seconds:
        raise ContextError("Request timestamp is too old or invalid.", STALE_REQUEST)


def validate_request(
    action: str,
    body: Dict[str, Any],
    now: Optional[datetime] = None,
    allowed_reasons=ALLOWED_CANCELLATION_REASONS,
    max_age_seconds: int = STALE_REQUEST_SECONDS,
) -> ValidationResult:
    """
    Structural and temporal check of a confirm/cancel/status request.
    Pure: never touches order state.
    """
    now = now or datetime.now(timezone.utc)
    try:
        context = _require_context(body)
        message = _require_message(action, body, context)

        if action == CANCEL:
            reason = str(message.get("cancellation_reason_id"))
            if reason not in allowed_reasons:
                raise DomainError(f"Invalid cancellation_reason_id: {reason}", INVALID_CANCELLATION_REASON)

        _check_fresh(context, now, max_age_seconds)
    except ProtocolError as e:
        return ValidationResult(False, e)

    return ValidationResult(True)
