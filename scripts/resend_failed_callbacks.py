# ondc_relay/scripts/resend_failed_callbacks.py
#
# One-shot job: re-deliver the cached on_confirm / on_cancel of every order
# that was left in a send-failed status. Needs the sqlite backend, since the
# in-memory repository does not outlive the server process.

import os, sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)

from config import STATE_DB_PATH
from db import make_repositories
from exceptions import DomainError
from models import OrderStatus
from services.delivery import DeliveryEngine
from services.seller import SellerWorkflow
from services.tasks import TaskRunner
from logger import get_logger

log = get_logger("resend_failed_callbacks")


def resend_all(seller: SellerWorkflow) -> dict:
    summary = {"resent": [], "failed": [], "skipped": []}

    for rec in seller.repo.list_by_status(OrderStatus.SEND_FAILED):
        try:
            ok = seller.resend_failed(rec.order_id)
        except DomainError as e:
            log.warning(f"[{rec.order_id}] Skipped: {e.message}")
            summary["skipped"].append(rec.order_id)
            continue
        (summary["resent"] if ok else summary["failed"]).append(rec.order_id)

    return summary


def main():
    bpp_repo, _ = make_repositories("sqlite", STATE_DB_PATH)
    runner = TaskRunner(max_workers=1)
    seller = SellerWorkflow(bpp_repo, DeliveryEngine(), runner)

    try:
        summary = resend_all(seller)
    finally:
        runner.shutdown()

    log.info(f"Resend finished: {summary}")
    print(f"Resent: {len(summary['resent'])} | Still failing: {len(summary['failed'])} "
          f"| Skipped: {len(summary['skipped'])}")
    for order_id in summary["failed"]:
        print(f"  still failing: {order_id}")


if __name__ == "__main__":
    main()
