from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from backend.receiving import receipts_store
from backend.receiving.errors import StaleVersionError, StockUpdateError
from backend.receiving.models import AuditRecord
from backend.receiving.statuses import ReceiptStatus
from backend.tests.fakes import make_receipt


class _ScriptedCursor:
    """Returns queued results in order; records every statement."""

    def __init__(self, *, fetchone=(), fetchall=(), rowcount=1):
        self._one = list(fetchone)
        self._all = list(fetchall)
        self.rowcount = rowcount
        self.executed: list[tuple[str, tuple]] = []

    def execute(self, sql, params=()):
        self.executed.append((sql, tuple(params)))

    def fetchone(self):
        return self._one.pop(0) if self._one else None

    def fetchall(self):
        return self._all.pop(0) if self._all else []


def test_lock_receipt_uses_row_lock_and_loads_lines():
    cur = _ScriptedCursor(
        fetchone=[{"id": "r1", "status": "Pending", "created_by_user_id": "7", "supplier_id": "s1", "version": 2}],
        fetchall=[[{"product_id": "p1", "quantity": "2", "unit_price": "5"}]],
    )
    rec = receipts_store.lock_receipt(cur, "r1")
    assert "FOR UPDATE" in cur.executed[0][0]
    assert rec.status == ReceiptStatus.PENDING
    assert rec.total_amount == Decimal("10")


def test_lock_receipt_missing_returns_none():
    cur = _ScriptedCursor()
    assert receipts_store.lock_receipt(cur, "r1") is None
    assert len(cur.executed) == 1


def test_set_lock_timeout_is_transaction_local():
    cur = _ScriptedCursor()
    receipts_store.set_lock_timeout(cur, 2500)
    sql, params = cur.executed[0]
    assert "set_config('lock_timeout'" in sql
    assert params == ("2500ms",)


def test_save_receipt_checks_version():
    rec = make_receipt(version=3)
    cur = _ScriptedCursor(rowcount=1)
    receipts_store.save_receipt(cur, rec, 2)
    sql, params = cur.executed[0]
    assert "WHERE id = %s AND version = %s" in sql
    assert params[-2:] == (rec.id, 2)
    assert Decimal("5000") in params

    with pytest.raises(StaleVersionError):
        receipts_store.save_receipt(_ScriptedCursor(rowcount=0), rec, 2)


def test_increase_stock_raises_for_missing_product():
    with pytest.raises(StockUpdateError):
        receipts_store.increase_stock(_ScriptedCursor(), "p1", Decimal("1"), receipt_id="r1", user_id="u1")


def test_increase_stock_records_stock_move():
    cur = _ScriptedCursor(fetchone=[{"stock_quantity": Decimal("13")}])
    out = receipts_store.increase_stock(cur, "p1", Decimal("3"), receipt_id="r1", user_id="u1")
    assert out == Decimal("13")
    assert "stock_quantity = stock_quantity + %s" in cur.executed[0][0]
    assert "INSERT INTO stock_moves" in cur.executed[1][0]


def test_missing_products_reports_unknown_ids_sorted():
    cur = _ScriptedCursor(fetchall=[[{"id": "b"}]])
    assert receipts_store.missing_products(cur, ["c", "b", "a", "c"]) == ["a", "c"]
    assert receipts_store.missing_products(_ScriptedCursor(), []) == []


def test_next_receipt_no_formats_daily_sequence():
    cur = _ScriptedCursor(fetchone=[{"last_value": 7}])
    assert receipts_store.next_receipt_no(cur, "GR", date(2026, 1, 17)) == "GR20260117-0007"
    assert "ON CONFLICT (doc_type, seq_date)" in cur.executed[0][0]


def test_insert_audit_carries_status_transition():
    cur = _ScriptedCursor()
    receipts_store.insert_audit(
        cur,
        AuditRecord(
            document_id="r1",
            actor_user_id="u1",
            action="Approve",
            from_status=ReceiptStatus.AWAITING_APPROVAL,
            to_status=ReceiptStatus.PENDING,
            timestamp=datetime(2026, 1, 17, tzinfo=timezone.utc),
            details={"notes": "ok"},
        ),
    )
    _sql, params = cur.executed[0]
    assert params[1] == "Approve"
    assert '"from_status": "AwaitingApproval"' in params[3]
    assert '"to_status": "Pending"' in params[3]


def test_list_receipts_builds_filters():
    cur = _ScriptedCursor(fetchone=[{"n": 1}], fetchall=[[{"id": "r1"}]])
    rows, total = receipts_store.list_receipts(
        cur,
        {"receipt_number": "GR2026", "status": "Pending", "min_amount": Decimal("5")},
        20,
        40,
    )
    assert total == 1
    assert rows == [{"id": "r1"}]
    count_sql, count_params = cur.executed[0]
    assert "r.receipt_no ILIKE %s" in count_sql
    assert count_params == ("%GR2026%", "Pending", Decimal("5"))
    assert cur.executed[1][1][-2:] == (20, 40)
