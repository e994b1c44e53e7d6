import pytest

from db import MemoryOrderRepository, SqliteOrderRepository, make_repositories, BPP_TABLE, BAP_TABLE
from models import BapOrderRecord, CatalogSnapshot, OrderRecord, OrderStatus, Snapshot

from payloads import make_context, make_order


@pytest.fixture(params=["memory", "sqlite"])
def repos(request, tmp_path):
    if request.param == "memory":
        return MemoryOrderRepository(OrderRecord), MemoryOrderRepository(BapOrderRecord)
    db_path = str(tmp_path / "state.db")
    return (
        SqliteOrderRepository(BPP_TABLE, OrderRecord, db_path),
        SqliteOrderRepository(BAP_TABLE, BapOrderRecord, db_path),
    )


def record(order_id="O1", status=OrderStatus.RECEIVED):
    return OrderRecord(
        order_id=order_id,
        status=status,
        original_request=Snapshot.of({"message": {"order": make_order(order_id)}}),
        catalog_snapshot=CatalogSnapshot.from_items([{"id": "I1", "@ondc/org/cancellable": False}]),
    )


def test_create_if_absent_is_compare_and_create(repos):
    repo, _ = repos
    stored, created = repo.create_if_absent(record())
    assert created
    assert stored.status == OrderStatus.RECEIVED

    again, created = repo.create_if_absent(record(status=OrderStatus.CANCEL_REQUESTED))
    assert not created
    assert again.status == OrderStatus.RECEIVED


def test_record_round_trips(repos):
    repo, _ = repos
    repo.create_if_absent(record())

    rec = repo.get("O1")
    assert rec.original_order()["id"] == "O1"
    assert rec.catalog_snapshot.is_cancellable("I1") is False
    assert rec.catalog_snapshot.is_cancellable("unknown") is True
    assert repo.get("missing") is None


def test_update_stamps_and_unknown_returns_none(repos):
    repo, _ = repos
    repo.create_if_absent(record())

    updated = repo.update("O1", status=OrderStatus.ACCEPTED, order_state="Accepted")
    assert updated.status == OrderStatus.ACCEPTED
    assert repo.get("O1").order_state == "Accepted"
    assert repo.update("nope", status=OrderStatus.ACCEPTED) is None


def test_update_unless_respects_blocked_statuses(repos):
    repo, _ = repos
    repo.create_if_absent(record(status=OrderStatus.CANCEL_REQUESTED))

    rec, applied = repo.update_unless("O1", OrderStatus.CANCEL_FAMILY, status=OrderStatus.PROCESSING)
    assert not applied
    assert rec.status == OrderStatus.CANCEL_REQUESTED

    repo.update("O1", status=OrderStatus.RECEIVED)
    rec, applied = repo.update_unless("O1", OrderStatus.CANCEL_FAMILY, status=OrderStatus.PROCESSING)
    assert applied
    assert rec.status == OrderStatus.PROCESSING


def test_update_if_requires_expected_status(repos):
    repo, _ = repos
    repo.create_if_absent(record(status=OrderStatus.ON_CONFIRM_FAILED))

    _, applied = repo.update_if("O1", {OrderStatus.CANCELLED_SEND_FAILED}, status=OrderStatus.ON_CANCEL_SENT)
    assert not applied
    _, applied = repo.update_if("O1", {OrderStatus.ON_CONFIRM_FAILED}, status=OrderStatus.ON_CONFIRM_SENT)
    assert applied
    assert repo.get("O1").status == OrderStatus.ON_CONFIRM_SENT


def test_unknown_field_is_rejected(repos):
    repo, _ = repos
    repo.create_if_absent(record())
    with pytest.raises(AttributeError):
        repo.update("O1", not_a_field=1)


def test_list_by_status(repos):
    repo, _ = repos
    repo.create_if_absent(record("O1", OrderStatus.ON_CONFIRM_FAILED))
    repo.create_if_absent(record("O2", OrderStatus.ON_CONFIRM_SENT))
    repo.create_if_absent(record("O3", OrderStatus.CANCEL_REJECTED_SEND_FAILED))

    failed = {r.order_id for r in repo.list_by_status(OrderStatus.SEND_FAILED)}
    assert failed == {"O1", "O3"}
    assert len(repo.all()) == 3


def test_bap_find_by_transaction(repos):
    _, bap = repos
    bap.create_if_absent(BapOrderRecord(
        order_id="O1",
        original_order_details=Snapshot.of(make_order()),
        original_context=Snapshot.of(make_context("confirm", txn="T-42")),
    ))

    assert bap.find_by_transaction("T-42").order_id == "O1"
    assert bap.find_by_transaction("T-other") is None

    bap.update("O1", callback_decisions={"on_confirm": {"ack": True, "error": None}})
    assert bap.get("O1").callback_decisions["on_confirm"]["ack"] is True


def test_memory_copies_are_isolated():
    repo = MemoryOrderRepository(OrderRecord)
    repo.create_if_absent(record())

    rec = repo.get("O1")
    rec.status = OrderStatus.ERROR
    assert repo.get("O1").status == OrderStatus.RECEIVED


def test_snapshot_hands_out_fresh_copies():
    snap = Snapshot.of({"a": {"b": 1}})
    first = snap.data()
    first["a"]["b"] = 2
    assert snap.data() == {"a": {"b": 1}}


def test_make_repositories_rejects_unknown_backend():
    with pytest.raises(ValueError):
        make_repositories("redis")
