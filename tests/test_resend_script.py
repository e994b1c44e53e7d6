import importlib.util
import os

import pytest

from models import OrderStatus

from fakes import server_error
from payloads import confirm_body, make_order

SCRIPT = os.path.join(os.path.dirname(__file__), "..", "scripts", "resend_failed_callbacks.py")


@pytest.fixture(scope="module")
def script():
    spec = importlib.util.spec_from_file_location("resend_failed_callbacks", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_resend_all_sweeps_send_failed_orders(script, seller, runner, session, bpp_repo):
    session.queue(server_error(), server_error(), server_error())
    seller.handle_confirm(confirm_body())
    assert runner.join(timeout=5)
    seller.handle_confirm(confirm_body(make_order("O2"), txn="T2"))
    assert runner.join(timeout=5)
    assert [r.order_id for r in bpp_repo.list_by_status(OrderStatus.SEND_FAILED)] == ["O1"]

    summary = script.resend_all(seller)

    assert len(summary["resent"]) == 1
    assert summary["failed"] == []
    assert bpp_repo.list_by_status(OrderStatus.SEND_FAILED) == []
