#api.py
import json
from typing import Any, Dict, Optional

import requests

from config import SESSION, CALLBACK_TIMEOUT_SECONDS
from models import AckDecodeResult, ACK, NACK
from logger import get_logger

log = get_logger("api")


def callback_url(base_uri: str, action: str) -> str:
    return f"{(base_uri or '').rstrip('/')}/{action}"


def send_post_request(
    url: str,
    payload: Dict[str, Any],
    logger,
    session: Optional[requests.Session] = None,
    timeout: float = CALLBACK_TIMEOUT_SECONDS,
) -> requests.Response:
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    logger.debug(f"POST {url} payload: {json.dumps(payload)}")

    resp = (session or SESSION).post(url, json=payload, headers=headers, timeout=timeout)
    logger.debug(f"Callback Response: {resp.status_code} {resp.text}")
    return resp


def decode_ack(resp: requests.Response) -> AckDecodeResult:
    """Pull message.ack.status (and any error object) out of a counterparty reply."""
    status = getattr(resp, "status_code", None)
    ack_status = None
    raw_err = ""
    error = None

    try:
        body = resp.json()
        if not isinstance(body, dict):
            raise ValueError(f"expected JSON object, got {type(body).__name__}")
        ack_status = ((body.get("message") or {}).get("ack") or {}).get("status")
        error = body.get("error")
        if error:
            raw_err = str(error.get("message") or error.get("code") or error) if isinstance(error, dict) else str(error)
    except Exception as e:
        raw_err = f"Exception parsing callback reply JSON: {e}"

    if ack_status not in (ACK, NACK):
        ack_status = None

    return AckDecodeResult(status, ack_status, raw_err, error)


def is_http_success(status_code: Optional[int]) -> bool:
    return status_code is not None and 200 <= status_code < 300
