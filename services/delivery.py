# ondc_relay/services/delivery.py
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from api import send_post_request, decode_ack, callback_url, is_http_success
from config import (
    SESSION,
    CALLBACK_MAX_ATTEMPTS,
    CALLBACK_INITIAL_DELAY_MS,
    CALLBACK_TIMEOUT_SECONDS,
)
from models import ACK, NACK
from logger import get_logger

log = get_logger("delivery")

# Attempt outcomes
DELIVERED = "DELIVERED"
REJECTED = "REJECTED"      # explicit NACK, never retried
RETRY = "RETRY"


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = CALLBACK_MAX_ATTEMPTS
    initial_delay_ms: int = CALLBACK_INITIAL_DELAY_MS

    def delay_seconds(self, attempt: int) -> float:
        """Wait after a failed attempt (1-based) before the next one."""
        return self.initial_delay_ms * (2 ** (attempt - 1)) / 1000.0


def attempt_until(
    attempt: Callable[[int], str],
    policy: BackoffPolicy,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "",
) -> str:
    """
    Call attempt(n) until it returns something other than RETRY or the policy runs out.
    Returns the last outcome (RETRY means attempts were exhausted).
    """
    outcome = RETRY
    for n in range(1, policy.max_attempts + 1):
        outcome = attempt(n)
        if outcome != RETRY:
            return outcome
        if n < policy.max_attempts:
            delay = policy.delay_seconds(n)
            log.info(f"{label} retrying in {int(delay * 1000)}ms")
            sleep(delay)
    return outcome


def classify(resp: requests.Response) -> str:
    decoded = decode_ack(resp)
    if is_http_success(decoded.status_code) and decoded.ack_status == ACK:
        return DELIVERED
    if is_http_success(decoded.status_code) and decoded.ack_status == NACK:
        return REJECTED
    return RETRY


class DeliveryEngine:
    """Pushes on_* callbacks to the counterparty. deliver() reports success as a bool and never raises."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        policy: Optional[BackoffPolicy] = None,
        timeout: float = CALLBACK_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or SESSION
        self.policy = policy or BackoffPolicy()
        self.timeout = timeout
        self.sleep = sleep

    def deliver(
        self,
        target_address: str,
        action: str,
        payload: Dict[str, Any],
        max_attempts: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
    ) -> bool:
        policy = BackoffPolicy(
            max_attempts if max_attempts is not None else self.policy.max_attempts,
            initial_delay_ms if initial_delay_ms is not None else self.policy.initial_delay_ms,
        )
        url = callback_url(target_address, action)
        ref = _payload_ref(payload)
        label = f"[{ref}] /{action}"

        def one_attempt(n: int) -> str:
            log.info(f"{label} attempt {n}/{policy.max_attempts} -> {url}")
            try:
                resp = send_post_request(url, payload, log, session=self.session, timeout=self.timeout)
            except requests.Timeout:
                log.error(f"{label} request timed out (attempt {n}/{policy.max_attempts})")
                return RETRY
            except requests.RequestException as e:
                log.error(f"{label} error sending (attempt {n}/{policy.max_attempts}): {e}")
                return RETRY

            outcome = classify(resp)
            if outcome == DELIVERED:
                log.info(f"{label} sent successfully and ACK received.")
            elif outcome == REJECTED:
                decoded = decode_ack(resp)
                log.error(f"{label} NACK received, stopping retries. Reason: {decoded.error or 'No error details provided'}")
            else:
                log.warning(f"{label} unexpected reply (status {resp.status_code}): {resp.text}")
            return outcome

        if not target_address:
            log.error(f"{label} no callback address; nothing sent.")
            return False

        try:
            outcome = attempt_until(one_attempt, policy, self.sleep, label)
        except Exception:
            log.exception(f"{label} delivery aborted by unexpected error")
            return False

        if outcome == RETRY:
            log.error(f"{label} failed to send or get ACK after {policy.max_attempts} attempts.")
        return outcome == DELIVERED


def _payload_ref(payload: Dict[str, Any]) -> str:
    order = ((payload or {}).get("message") or {}).get("order") or {}
    return str(order.get("id") or ((payload or {}).get("context") or {}).get("transaction_id") or "?")
