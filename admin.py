from flask import Blueprint, abort, current_app, jsonify, request

from exceptions import DomainError, ORDER_NOT_FOUND
from models import OrderStatus
from logger import get_logger

log = get_logger("admin")

admin_bp = Blueprint("admin", __name__)


def _relay():
    return current_app.extensions["relay"]


def _summary(rec) -> dict:
    return {
        "order_id": rec.order_id,
        "status": rec.status,
        "order_state": getattr(rec, "order_state", None),
        "last_updated_at": rec.last_updated_at,
    }


@admin_bp.route("/orders")
def list_orders():
    repo = _relay()["seller"].repo
    status = (request.args.get("status") or "").strip().upper()
    if status == "SEND_FAILED":
        rows = repo.list_by_status(OrderStatus.SEND_FAILED)
    elif status:
        rows = repo.list_by_status([status])
    else:
        rows = repo.all()
    return jsonify({"count": len(rows), "orders": [_summary(r) for r in rows]})


@admin_bp.route("/orders/<order_id>")
def order_detail(order_id):
    rec = _relay()["seller"].repo.get(order_id)
    if rec is None:
        abort(404)
    return jsonify(rec.to_dict())


@admin_bp.route("/bap/orders/<order_id>")
def bap_order_detail(order_id):
    rec = _relay()["buyer"].repo.get(order_id)
    if rec is None:
        abort(404)
    return jsonify(rec.to_dict())


@admin_bp.route("/orders/<order_id>/resend", methods=["POST"])
def order_resend(order_id):
    try:
        resent = _relay()["seller"].resend_failed(order_id)
    except DomainError as e:
        log.warning(f"Manual resend refused for {order_id}: {e.message}")
        code = 404 if e.code == ORDER_NOT_FOUND else 409
        return jsonify({"resent": False, "error": e.to_dict()}), code

    rec = _relay()["seller"].repo.get(order_id)
    log.info(f"Manual resend for {order_id}: resent={resent} status={rec.status}")
    return jsonify({"resent": resent, "status": rec.status})
