import os
import tempfile

import pytest

os.environ.setdefault("ENV", "TEST")
os.environ.setdefault("REPOSITORY_BACKEND", "memory")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "ondc_relay_test_logs"))
os.environ.setdefault("ADMIN_EMAILS", "")

from db import MemoryOrderRepository
from models import OrderRecord, BapOrderRecord
from services.buyer import CallbackProcessor
from services.delivery import BackoffPolicy, DeliveryEngine
from services.seller import SellerWorkflow
from services.tasks import TaskRunner

from fakes import FakeSession
from payloads import BPP_IDENTITY


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def delivery(session, sleeps):
    return DeliveryEngine(session=session, policy=BackoffPolicy(3, 1000), timeout=8, sleep=sleeps.append)


@pytest.fixture
def runner():
    r = TaskRunner(max_workers=2)
    yield r
    r.shutdown()


@pytest.fixture
def alerts():
    return []


@pytest.fixture
def bpp_repo():
    return MemoryOrderRepository(OrderRecord)


@pytest.fixture
def bap_repo():
    return MemoryOrderRepository(BapOrderRecord)


@pytest.fixture
def seller(bpp_repo, delivery, runner, alerts):
    return SellerWorkflow(
        bpp_repo,
        delivery,
        runner,
        identity=dict(BPP_IDENTITY),
        serviceable_area_codes=["700016", "700017"],
        force_reject_item_id="REJECT_ME",
        non_cancellable_states=["Cancelled", "Delivered", "Completed"],
        alert=lambda *args: alerts.append(args),
    )


@pytest.fixture
def buyer(bap_repo):
    return CallbackProcessor(bap_repo, ["items", "quote", "fulfillment"])
