"""
In-memory stand-ins for the Postgres store, connection and supplier notifier.

`FakeStore` exposes the same functions as `backend.receiving.receipts_store`
(each taking a cursor first). Mutations are journaled on the cursor's
transaction so an exception inside `FakeConn.transaction()` undoes them,
and `lock_receipt` holds a per-receipt lock until the transaction ends.
"""
from __future__ import annotations

import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Optional

from psycopg import errors as pg_errors

from backend.receiving.errors import StaleVersionError, StockUpdateError
from backend.receiving.models import GoodsReceipt, LineItem
from backend.receiving.statuses import ReceiptStatus


SUPPLIER_ID = "55555555-5555-5555-5555-555555555555"
PRODUCT_1 = "11111111-1111-1111-1111-111111111111"
PRODUCT_2 = "22222222-2222-2222-2222-222222222222"


class _FakeTx:
    def __init__(self):
        self.undo: list = []
        self.locks: list = []

    def rollback(self):
        while self.undo:
            self.undo.pop()()

    def release_locks(self):
        while self.locks:
            self.locks.pop().release()


class FakeCursor:
    def __init__(self, tx: Optional[_FakeTx]):
        self.tx = tx
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=()):
        self.executed.append((sql, tuple(params)))


class FakeConn:
    def __init__(self, store: "FakeStore"):
        self.store = store
        self._stack: list[_FakeTx] = []
        self.commits = 0
        self.rollbacks = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    @contextmanager
    def transaction(self):
        tx = _FakeTx()
        outer = self._stack[-1] if self._stack else None
        self._stack.append(tx)
        try:
            yield tx
        except BaseException:
            self._stack.pop()
            tx.rollback()
            tx.release_locks()
            self.rollbacks += 1
            raise
        self._stack.pop()
        if outer is not None:
            # Savepoint released: its work now belongs to the enclosing transaction.
            outer.undo.extend(tx.undo)
            outer.locks.extend(tx.locks)
            return
        tx.release_locks()
        self.commits += 1

    def cursor(self):
        return FakeCursor(self._stack[-1] if self._stack else None)


class FakeNotifier:
    def __init__(self, fail: Optional[Exception] = None):
        self.fail = fail
        self.sent: list[tuple[str, dict]] = []

    def send_supplier_email(self, receipt_id: str, payload: dict) -> None:
        if self.fail is not None:
            raise self.fail
        self.sent.append((receipt_id, dict(payload)))


class FakeStore:
    def __init__(self, *, suppliers=(), products=None, lock_timeout_s: float = 2.0):
        self.receipts: dict[str, GoodsReceipt] = {}
        self.suppliers = set(suppliers)
        self.products: dict[str, Decimal] = {k: Decimal(str(v)) for k, v in (products or {}).items()}
        self.audit: list = []
        self.outbox: dict[str, dict] = {}
        self.stock_moves: list[dict] = []
        self.sequences: dict[tuple, int] = {}
        # product_id -> exception raised by increase_stock
        self.stock_failures: dict[str, Exception] = {}
        self.stock_delay_s = 0.0
        self.lock_timeout_s = lock_timeout_s
        self.lock_timeout_calls: list[int] = []
        self._locks: dict[str, threading.Lock] = {}
        self._mutex = threading.Lock()

    # -- helpers ----------------------------------------------------------

    def _journal(self, cur, undo):
        if cur is not None and cur.tx is not None:
            cur.tx.undo.append(undo)

    def put(self, receipt: GoodsReceipt) -> GoodsReceipt:
        self.receipts[receipt.id] = receipt
        return receipt

    # -- receipts_store surface ------------------------------------------

    def set_lock_timeout(self, cur, timeout_ms: int):
        self.lock_timeout_calls.append(timeout_ms)

    def lock_receipt(self, cur, receipt_id: str):
        with self._mutex:
            lock = self._locks.setdefault(receipt_id, threading.Lock())
        if not lock.acquire(timeout=self.lock_timeout_s):
            raise pg_errors.LockNotAvailable("canceling statement due to lock timeout")
        cur.tx.locks.append(lock)
        return self.receipts.get(receipt_id)

    def fetch_receipt(self, cur, receipt_id: str):
        return self.receipts.get(receipt_id)

    def find_receipt_id_by_number(self, cur, receipt_no: str):
        for r in self.receipts.values():
            if (r.receipt_no or "").upper() == (receipt_no or "").strip().upper():
                return r.id
        return None

    def supplier_exists(self, cur, supplier_id) -> bool:
        return bool(supplier_id) and supplier_id in self.suppliers

    def missing_products(self, cur, product_ids):
        return sorted({str(p) for p in product_ids if str(p) not in self.products})

    def next_receipt_no(self, cur, prefix: str, on_date) -> str:
        key = (prefix, on_date)
        prev = self.sequences.get(key)
        self.sequences[key] = (prev or 0) + 1
        self._journal(cur, lambda: self.sequences.pop(key) if prev is None else self.sequences.__setitem__(key, prev))
        return f"{prefix}{on_date.strftime('%Y%m%d')}-{self.sequences[key]:04d}"

    def insert_receipt(self, cur, receipt: GoodsReceipt):
        self.receipts[receipt.id] = receipt
        self._journal(cur, lambda: self.receipts.pop(receipt.id, None))

    def save_receipt(self, cur, receipt: GoodsReceipt, expected_version: int):
        current = self.receipts.get(receipt.id)
        if current is None or current.version != expected_version:
            raise StaleVersionError(receipt.id, expected_version)
        # Lines are persisted separately by replace_lines, as in Postgres.
        self.receipts[receipt.id] = replace(receipt, line_items=current.line_items)
        self._journal(cur, lambda: self.receipts.__setitem__(receipt.id, current))

    def replace_lines(self, cur, receipt: GoodsReceipt):
        current = self.receipts[receipt.id]
        self.receipts[receipt.id] = replace(current, line_items=receipt.line_items)
        self._journal(cur, lambda: self.receipts.__setitem__(receipt.id, current))

    def delete_receipt(self, cur, receipt_id: str, expected_version: int):
        current = self.receipts.get(receipt_id)
        if current is None or current.version != expected_version:
            raise StaleVersionError(receipt_id, expected_version)
        del self.receipts[receipt_id]
        self._journal(cur, lambda: self.receipts.__setitem__(receipt_id, current))

    def increase_stock(self, cur, product_id: str, qty: Decimal, *, receipt_id: str, user_id) -> Decimal:
        if self.stock_delay_s:
            time.sleep(self.stock_delay_s)
        if product_id in self.stock_failures:
            raise self.stock_failures[product_id]
        if product_id not in self.products:
            raise StockUpdateError(product_id)
        before = self.products[product_id]
        self.products[product_id] = before + qty
        move = {"product_id": product_id, "qty_in": qty, "source_id": receipt_id, "user_id": user_id}
        self.stock_moves.append(move)

        def _undo():
            self.products[product_id] = before
            self.stock_moves.remove(move)

        self._journal(cur, _undo)
        return self.products[product_id]

    def insert_audit(self, cur, record):
        self.audit.append(record)
        self._journal(cur, lambda: self.audit.remove(record))

    def enqueue_notification(self, cur, receipt_id: str, kind: str, payload: dict) -> str:
        oid = str(uuid.uuid4())
        self.outbox[oid] = {"id": oid, "goods_receipt_id": receipt_id, "kind": kind, "payload": payload, "status": "pending"}
        self._journal(cur, lambda: self.outbox.pop(oid, None))
        return oid

    def mark_notification_sent(self, cur, outbox_id: str, receipt_id: str, sent_at):
        row = self.outbox[outbox_id]
        prev_status = row["status"]
        row["status"] = "sent"
        current = self.receipts.get(receipt_id)
        if current is not None:
            self.receipts[receipt_id] = replace(current, supplier_notified_at=sent_at)

        def _undo():
            row["status"] = prev_status
            if current is not None:
                self.receipts[receipt_id] = current

        self._journal(cur, _undo)

    def list_receipts(self, cur, filters: dict, limit: int, offset: int):
        rows = [
            {"id": r.id, "receipt_no": r.receipt_no, "supplier_id": r.supplier_id, "status": r.status.value, "total_amount": r.total_amount}
            for r in self.receipts.values()
            if (not filters.get("supplier_id") or r.supplier_id == filters["supplier_id"])
            and (not filters.get("status") or r.status.value == filters["status"])
        ]
        return rows[offset : offset + limit], len(rows)

    def list_audit(self, cur, receipt_id: str, limit: int = 200):
        entries = [a for a in self.audit if a.document_id == receipt_id]
        return list(reversed(entries))[:limit]


def make_receipt(**overrides) -> GoodsReceipt:
    fields = {
        "id": str(uuid.uuid4()),
        "supplier_id": SUPPLIER_ID,
        "created_by_user_id": "7",
        "status": ReceiptStatus.DRAFT,
        "line_items": (LineItem(PRODUCT_1, Decimal("5"), Decimal("1000")),),
    }
    fields.update(overrides)
    return GoodsReceipt(**fields)
