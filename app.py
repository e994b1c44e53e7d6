# ondc_relay/app.py
#
# HTTP surface: maps /confirm, /cancel, /status (seller role) and
# /on_confirm, /on_cancel, /on_status (buyer role) onto the workflows and
# wraps every outcome in the ACK/NACK envelope.

from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from config import ENV, BPP_ID, BPP_URI
from db import make_repositories
from exceptions import CoreError
from models import CONFIRM, CANCEL, STATUS, ON_CONFIRM, ON_CANCEL, ON_STATUS, CallbackDecision
from services.buyer import CallbackProcessor
from services.delivery import DeliveryEngine
from services.seller import SellerWorkflow
from services.tasks import TaskRunner
from admin import admin_bp
from logger import get_logger

log = get_logger("app")


def ack_envelope(decision: CallbackDecision, context: Optional[Dict[str, Any]] = None,
                 identity: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {}
    if identity is not None:
        context = context or {}
        body["context"] = {
            "transaction_id": context.get("transaction_id") or "N/A",
            "message_id": context.get("message_id") or "N/A",
            **identity,
        }
    body["message"] = {"ack": {"status": decision.status}}
    if not decision.ack:
        error = decision.error or CoreError("Failed to process the request").to_dict()
        body["error"] = {
            "type": error.get("type") or "CORE-ERROR",
            "code": error.get("code") or "50000",
            "message": error.get("message") or "Failed to process the request",
        }
    return body


def _reply(action: str, handler, identity: Optional[Dict[str, str]]):
    body = request.get_json(silent=True)
    body = body if isinstance(body, dict) else {}
    context = body.get("context") if isinstance(body.get("context"), dict) else {}
    ref = context.get("transaction_id") or "Unknown"
    log.info(f"[{ref}] Received POST /{action}")

    try:
        decision = handler(body)
    except Exception as e:
        log.exception(f"[{ref}] Unexpected error processing /{action}")
        decision = CallbackDecision(False, CoreError(f"Internal error: {e}").to_dict())
        return jsonify(ack_envelope(decision, context, identity)), 500

    if not decision.ack:
        log.warning(f"[{ref}] Sending NACK for /{action}: {decision.error}")
        return jsonify(ack_envelope(decision, context, identity)), 400
    return jsonify(ack_envelope(decision, context, identity)), 200


def create_app(
    seller: Optional[SellerWorkflow] = None,
    buyer: Optional[CallbackProcessor] = None,
    runner: Optional[TaskRunner] = None,
) -> Flask:
    app = Flask(__name__)

    if seller is None or buyer is None:
        bpp_repo, bap_repo = make_repositories()
        if seller is None:
            seller = SellerWorkflow(bpp_repo, DeliveryEngine(), runner or TaskRunner())
        if buyer is None:
            buyer = CallbackProcessor(bap_repo)

    app.extensions["relay"] = {"seller": seller, "buyer": buyer}
    seller_identity = seller.identity or {"bpp_id": BPP_ID, "bpp_uri": BPP_URI}

    routes = {
        CONFIRM: (seller.handle_confirm, seller_identity),
        CANCEL: (seller.handle_cancel, seller_identity),
        STATUS: (seller.handle_status, seller_identity),
        ON_CONFIRM: (buyer.handle_on_confirm, None),
        ON_CANCEL: (buyer.handle_on_cancel, None),
        ON_STATUS: (buyer.handle_on_status, None),
    }

    for action, (handler, identity) in routes.items():
        def view(action=action, handler=handler, identity=identity):
            return _reply(action, handler, identity)
        app.add_url_rule(f"/{action}", endpoint=action, view_func=view, methods=["POST"])

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "env": ENV})

    app.register_blueprint(admin_bp, url_prefix="/admin")
    return app


app = create_app()


if __name__ == "__main__":
    # For local dev only
    app.run(host="0.0.0.0", port=5002, debug=False)
