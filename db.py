# db.py

import json
import sqlite3
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

from config import STATE_DB_PATH, REPOSITORY_BACKEND, utc_now_iso
from models import OrderRecord, BapOrderRecord
from logger import get_logger


log = get_logger("db")

BPP_TABLE = "bpp_orders"
BAP_TABLE = "bap_orders"


class OrderRepository:
    """
    Order state keyed by order id. Every method is atomic; records handed out are copies,
    so callers must write changes back through update() / update_unless().
    """
    record_cls: Type = OrderRecord

    def get(self, order_id: str):
        raise NotImplementedError

    def create_if_absent(self, record) -> Tuple[Any, bool]:
        """Compare-and-create. Returns (stored record, created)."""
        raise NotImplementedError

    def update(self, order_id: str, **changes):
        """Apply changes to an existing record. Returns the updated copy, or None if unknown."""
        return self._apply(order_id, None, changes)

    def update_unless(self, order_id: str, blocked_statuses: Iterable[str], **changes) -> Tuple[Any, bool]:
        """
        Guarded update: leaves the record untouched when its status is in blocked_statuses.
        Returns (record as stored afterwards, applied).
        """
        blocked = frozenset(blocked_statuses)
        applied = []

        def guard(rec):
            if rec.status in blocked:
                return False
            applied.append(True)
            return True

        rec = self._apply(order_id, guard, changes)
        return rec, bool(applied)

    def update_if(self, order_id: str, expected_statuses: Iterable[str], **changes) -> Tuple[Any, bool]:
        """Guarded update that only applies while the status is one of expected_statuses."""
        expected = frozenset(expected_statuses)
        applied = []

        def guard(rec):
            if rec.status not in expected:
                return False
            applied.append(True)
            return True

        rec = self._apply(order_id, guard, changes)
        return rec, bool(applied)

    def find_by_transaction(self, transaction_id: str):
        for rec in self.all():
            if getattr(rec, "transaction_id", None) == transaction_id:
                return rec
        return None

    def all(self) -> List[Any]:
        raise NotImplementedError

    def list_by_status(self, statuses: Iterable[str]) -> List[Any]:
        wanted = set(statuses)
        return [r for r in self.all() if r.status in wanted]

    def _apply(self, order_id: str, guard: Optional[Callable], changes: Dict[str, Any]):
        raise NotImplementedError

    # -------- helpers --------
    def _copy(self, record):
        return self.record_cls.from_dict(record.to_dict())

    @staticmethod
    def _mutate(record, changes: Dict[str, Any]) -> None:
        for k, v in changes.items():
            if not hasattr(record, k):
                raise AttributeError(f"{type(record).__name__} has no field {k!r}")
            setattr(record, k, v)
        record.last_updated_at = utc_now_iso()


# ---------- In-memory (process lifetime) ----------
class MemoryOrderRepository(OrderRepository):

    def __init__(self, record_cls: Type = OrderRecord):
        self.record_cls = record_cls
        self._rows: Dict[str, Any] = {}
        self._lock = threading.RLock()

    def get(self, order_id: str):
        with self._lock:
            rec = self._rows.get(order_id)
            return self._copy(rec) if rec is not None else None

    def create_if_absent(self, record):
        with self._lock:
            existing = self._rows.get(record.order_id)
            if existing is not None:
                return self._copy(existing), False
            self._rows[record.order_id] = self._copy(record)
            return self._copy(record), True

    def all(self):
        with self._lock:
            return [self._copy(r) for r in self._rows.values()]

    def _apply(self, order_id, guard, changes):
        with self._lock:
            rec = self._rows.get(order_id)
            if rec is None:
                log.error(f"Cannot update non-existent order {order_id}")
                return None
            working = self._copy(rec)
            if guard is None or guard(working):
                self._mutate(working, changes)
                self._rows[order_id] = working
            return self._copy(working)


# ---------- SQLite (durable) ----------
def state_conn(db_path: str = STATE_DB_PATH) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn


def init_state_db(db_path: str = STATE_DB_PATH) -> None:
    conn = state_conn(db_path)
    try:
        for table in (BPP_TABLE, BAP_TABLE):
            conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                order_id TEXT PRIMARY KEY,
                status TEXT,
                transaction_id TEXT,
                record_json TEXT NOT NULL,
                created_ts TEXT,
                updated_ts TEXT
            )
            """)
        conn.executescript(f"""
        CREATE INDEX IF NOT EXISTS idx_{BPP_TABLE}_status ON {BPP_TABLE}(status);
        CREATE INDEX IF NOT EXISTS idx_{BAP_TABLE}_status ON {BAP_TABLE}(status);
        CREATE INDEX IF NOT EXISTS idx_{BAP_TABLE}_transaction_id ON {BAP_TABLE}(transaction_id);
        """)
    finally:
        conn.close()


class SqliteOrderRepository(OrderRepository):

    def __init__(self, table: str, record_cls: Type, db_path: str = STATE_DB_PATH):
        self.table = table
        self.record_cls = record_cls
        self.db_path = db_path
        init_state_db(db_path)

    def _load(self, row) -> Any:
        return self.record_cls.from_dict(json.loads(row["record_json"]))

    def _row_values(self, record) -> Tuple:
        return (
            record.status,
            getattr(record, "transaction_id", None),
            json.dumps(record.to_dict()),
            record.last_updated_at,
        )

    def get(self, order_id):
        conn = state_conn(self.db_path)
        try:
            row = conn.execute(
                f"SELECT record_json FROM {self.table} WHERE order_id=?", (order_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._load(row) if row else None

    def create_if_absent(self, record):
        status, txn, body, ts = self._row_values(record)
        conn = state_conn(self.db_path)
        try:
            cur = conn.execute(f"""
            INSERT INTO {self.table} (order_id, status, transaction_id, record_json, created_ts, updated_ts)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(order_id) DO NOTHING
            """, (record.order_id, status, txn, body, ts, ts))
            created = cur.rowcount == 1
            row = conn.execute(
                f"SELECT record_json FROM {self.table} WHERE order_id=?", (record.order_id,)
            ).fetchone()
        finally:
            conn.close()
        return self._load(row), created

    def find_by_transaction(self, transaction_id):
        conn = state_conn(self.db_path)
        try:
            row = conn.execute(
                f"SELECT record_json FROM {self.table} WHERE transaction_id=? ORDER BY created_ts DESC LIMIT 1",
                (transaction_id,),
            ).fetchone()
        finally:
            conn.close()
        return self._load(row) if row else None

    def all(self):
        conn = state_conn(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT record_json FROM {self.table} ORDER BY updated_ts DESC"
            ).fetchall()
        finally:
            conn.close()
        return [self._load(r) for r in rows]

    def list_by_status(self, statuses):
        statuses = list(statuses)
        if not statuses:
            return []
        placeholders = ",".join("?" for _ in statuses)
        conn = state_conn(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT record_json FROM {self.table} WHERE status IN ({placeholders}) ORDER BY updated_ts",
                statuses,
            ).fetchall()
        finally:
            conn.close()
        return [self._load(r) for r in rows]

    def _apply(self, order_id, guard, changes):
        conn = state_conn(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                f"SELECT record_json FROM {self.table} WHERE order_id=?", (order_id,)
            ).fetchone()
            if row is None:
                conn.execute("ROLLBACK")
                log.error(f"Cannot update non-existent order {order_id} in {self.table}")
                return None
            rec = self._load(row)
            if guard is not None and not guard(rec):
                conn.execute("ROLLBACK")
                return rec
            self._mutate(rec, changes)
            status, txn, body, ts = self._row_values(rec)
            conn.execute(f"""
            UPDATE {self.table}
            SET status=?, transaction_id=COALESCE(?, transaction_id), record_json=?, updated_ts=?
            WHERE order_id=?
            """, (status, txn, body, ts, order_id))
            conn.execute("COMMIT")
            return rec
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()


def make_repositories(backend: str = REPOSITORY_BACKEND, db_path: str = STATE_DB_PATH):
    """Returns (bpp_repository, bap_repository) for the configured backend."""
    if backend == "sqlite":
        log.info(f"Using sqlite order repositories at {db_path}")
        return (
            SqliteOrderRepository(BPP_TABLE, OrderRecord, db_path),
            SqliteOrderRepository(BAP_TABLE, BapOrderRecord, db_path),
        )
    if backend != "memory":
        raise ValueError(f"Unknown REPOSITORY_BACKEND {backend!r} (expected memory or sqlite)")
    return MemoryOrderRepository(OrderRecord), MemoryOrderRepository(BapOrderRecord)
