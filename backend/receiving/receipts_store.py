"""
Postgres access for goods receipts.

Every function takes an open cursor so callers decide the transaction boundary;
the workflow engine runs all of them inside one `conn.transaction()`.
"""
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from .errors import StaleVersionError, StockUpdateError
from .models import AuditRecord, GoodsReceipt, receipt_from_row


_RECEIPT_COLUMNS = """
    r.id, r.receipt_no, r.supplier_id, r.created_by_user_id, r.status, r.notes,
    r.total_amount, r.version, r.approved_by_user_id, r.approved_at, r.approval_notes,
    r.cancel_reason, r.supplier_token_nonce, r.supplier_notified_at, r.supplier_confirmed_at,
    r.supplier_notes, r.completed_by_user_id, r.completed_at, r.created_at, r.updated_at
"""


def set_lock_timeout(cur, timeout_ms: int):
    # SET LOCAL can't take bind parameters; set_config() can (is_local=true).
    cur.execute("SELECT set_config('lock_timeout', %s, true)", (f"{int(timeout_ms)}ms",))


def _fetch_lines(cur, receipt_id: str) -> list[dict]:
    cur.execute(
        """
        SELECT product_id, quantity, unit_price
        FROM goods_receipt_lines
        WHERE goods_receipt_id = %s
        ORDER BY line_no
        """,
        (receipt_id,),
    )
    return cur.fetchall() or []


def lock_receipt(cur, receipt_id: str) -> Optional[GoodsReceipt]:
    cur.execute(
        f"""
        SELECT {_RECEIPT_COLUMNS}
        FROM goods_receipts r
        WHERE r.id = %s
        FOR UPDATE
        """,
        (receipt_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    return receipt_from_row(row, _fetch_lines(cur, receipt_id))


def fetch_receipt(cur, receipt_id: str) -> Optional[GoodsReceipt]:
    cur.execute(
        f"""
        SELECT {_RECEIPT_COLUMNS}
        FROM goods_receipts r
        WHERE r.id = %s
        """,
        (receipt_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    return receipt_from_row(row, _fetch_lines(cur, receipt_id))


def find_receipt_id_by_number(cur, receipt_no: str) -> Optional[str]:
    cur.execute(
        "SELECT id FROM goods_receipts WHERE upper(receipt_no) = upper(%s)",
        ((receipt_no or "").strip(),),
    )
    row = cur.fetchone()
    return str(row["id"]) if row else None


def supplier_exists(cur, supplier_id: Optional[str]) -> bool:
    if not supplier_id:
        return False
    cur.execute("SELECT 1 FROM suppliers WHERE id = %s AND is_active = true", (supplier_id,))
    return cur.fetchone() is not None


def missing_products(cur, product_ids: Iterable[str]) -> list[str]:
    ids = sorted({str(p) for p in product_ids if str(p).strip()})
    if not ids:
        return []
    cur.execute("SELECT id FROM products WHERE id = ANY(%s::uuid[])", (ids,))
    found = {str(r["id"]) for r in (cur.fetchall() or [])}
    return [p for p in ids if p not in found]


def next_receipt_no(cur, prefix: str, on_date: date) -> str:
    cur.execute(
        """
        INSERT INTO document_sequences (doc_type, seq_date, last_value)
        VALUES (%s, %s, 1)
        ON CONFLICT (doc_type, seq_date)
        DO UPDATE SET last_value = document_sequences.last_value + 1
        RETURNING last_value
        """,
        (prefix, on_date),
    )
    seq = int(cur.fetchone()["last_value"])
    return f"{prefix}{on_date.strftime('%Y%m%d')}-{seq:04d}"


def insert_receipt(cur, receipt: GoodsReceipt):
    cur.execute(
        """
        INSERT INTO goods_receipts
          (id, receipt_no, supplier_id, created_by_user_id, status, notes, total_amount, version,
           created_at, updated_at)
        VALUES
          (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            receipt.id,
            receipt.receipt_no,
            receipt.supplier_id,
            receipt.created_by_user_id,
            receipt.status.value,
            receipt.notes,
            receipt.total_amount,
            receipt.version,
            receipt.created_at,
            receipt.updated_at,
        ),
    )
    replace_lines(cur, receipt)


def save_receipt(cur, receipt: GoodsReceipt, expected_version: int):
    """
    Writes header fields and the derived total. `receipt.version` must already be
    the bumped value; the row is only updated if it is still at `expected_version`.
    """
    cur.execute(
        """
        UPDATE goods_receipts
        SET receipt_no = %s,
            supplier_id = %s,
            status = %s,
            notes = %s,
            total_amount = %s,
            version = %s,
            approved_by_user_id = %s,
            approved_at = %s,
            approval_notes = %s,
            cancel_reason = %s,
            supplier_token_nonce = %s,
            supplier_confirmed_at = %s,
            supplier_notes = %s,
            completed_by_user_id = %s,
            completed_at = %s,
            updated_at = %s
        WHERE id = %s AND version = %s
        """,
        (
            receipt.receipt_no,
            receipt.supplier_id,
            receipt.status.value,
            receipt.notes,
            receipt.total_amount,
            receipt.version,
            receipt.approved_by_user_id,
            receipt.approved_at,
            receipt.approval_notes,
            receipt.cancel_reason,
            receipt.supplier_token_nonce,
            receipt.supplier_confirmed_at,
            receipt.supplier_notes,
            receipt.completed_by_user_id,
            receipt.completed_at,
            receipt.updated_at,
            receipt.id,
            expected_version,
        ),
    )
    if cur.rowcount != 1:
        raise StaleVersionError(receipt.id, expected_version)


def replace_lines(cur, receipt: GoodsReceipt):
    cur.execute("DELETE FROM goods_receipt_lines WHERE goods_receipt_id = %s", (receipt.id,))
    for idx, li in enumerate(receipt.line_items, start=1):
        cur.execute(
            """
            INSERT INTO goods_receipt_lines (goods_receipt_id, line_no, product_id, quantity, unit_price)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (receipt.id, idx, li.product_id, li.quantity, li.unit_price),
        )


def delete_receipt(cur, receipt_id: str, expected_version: int):
    cur.execute(
        "DELETE FROM goods_receipts WHERE id = %s AND version = %s",
        (receipt_id, expected_version),
    )
    if cur.rowcount != 1:
        raise StaleVersionError(receipt_id, expected_version)


def increase_stock(cur, product_id: str, qty: Decimal, *, receipt_id: str, user_id: Optional[str]) -> Decimal:
    cur.execute(
        """
        UPDATE products
        SET stock_quantity = stock_quantity + %s,
            updated_at = now()
        WHERE id = %s
        RETURNING stock_quantity
        """,
        (qty, product_id),
    )
    row = cur.fetchone()
    if not row:
        raise StockUpdateError(product_id)
    cur.execute(
        """
        INSERT INTO stock_moves (id, product_id, qty_in, source_type, source_id, created_by_user_id)
        VALUES (gen_random_uuid(), %s, %s, 'goods_receipt', %s, %s)
        """,
        (product_id, qty, receipt_id, user_id),
    )
    return Decimal(str(row["stock_quantity"]))


def insert_audit(cur, record: AuditRecord):
    details = {
        "from_status": (record.from_status.value if record.from_status else None),
        "to_status": (record.to_status.value if record.to_status else None),
        **(record.details or {}),
    }
    cur.execute(
        """
        INSERT INTO audit_logs (id, user_id, action, entity_type, entity_id, details, created_at)
        VALUES (gen_random_uuid(), %s, %s, 'goods_receipt', %s, %s::jsonb, %s)
        """,
        (record.actor_user_id, record.action, record.document_id, json.dumps(details, default=str), record.timestamp),
    )


def enqueue_notification(cur, receipt_id: str, kind: str, payload: dict) -> str:
    cur.execute(
        """
        INSERT INTO notification_outbox (id, goods_receipt_id, kind, payload_json, status)
        VALUES (gen_random_uuid(), %s, %s, %s::jsonb, 'pending')
        RETURNING id
        """,
        (receipt_id, kind, json.dumps(payload, default=str)),
    )
    return str(cur.fetchone()["id"])


def mark_notification_sent(cur, outbox_id: str, receipt_id: str, sent_at: datetime):
    cur.execute(
        """
        UPDATE notification_outbox
        SET status = 'sent', sent_at = %s, error_message = NULL, next_attempt_at = NULL
        WHERE id = %s AND status <> 'sent'
        """,
        (sent_at, outbox_id),
    )
    # Not a workflow mutation: no version bump, so in-flight edits don't conflict.
    cur.execute(
        "UPDATE goods_receipts SET supplier_notified_at = %s WHERE id = %s",
        (sent_at, receipt_id),
    )


def list_receipts(cur, filters: dict, limit: int, offset: int) -> tuple[list[dict], int]:
    where = "WHERE 1=1"
    params: list = []
    if filters.get("receipt_number"):
        where += " AND r.receipt_no ILIKE %s"
        params.append(f"%{filters['receipt_number'].strip()}%")
    if filters.get("supplier_id"):
        where += " AND r.supplier_id = %s"
        params.append(filters["supplier_id"])
    if filters.get("supplier_name"):
        where += " AND s.name ILIKE %s"
        params.append(f"%{filters['supplier_name'].strip()}%")
    if filters.get("status"):
        where += " AND r.status = %s"
        params.append(filters["status"])
    if filters.get("from_date"):
        where += " AND r.created_at >= %s"
        params.append(filters["from_date"])
    if filters.get("to_date"):
        where += " AND r.created_at < (%s::date + 1)"
        params.append(filters["to_date"])
    if filters.get("min_amount") is not None:
        where += " AND r.total_amount >= %s"
        params.append(filters["min_amount"])
    if filters.get("max_amount") is not None:
        where += " AND r.total_amount <= %s"
        params.append(filters["max_amount"])

    cur.execute(
        f"""
        SELECT count(*) AS n
        FROM goods_receipts r
        LEFT JOIN suppliers s ON s.id = r.supplier_id
        {where}
        """,
        params,
    )
    total = int(cur.fetchone()["n"])
    cur.execute(
        f"""
        SELECT r.id, r.receipt_no, r.supplier_id, s.name AS supplier_name, r.created_by_user_id,
               r.status, r.total_amount, r.notes, r.created_at, r.updated_at
        FROM goods_receipts r
        LEFT JOIN suppliers s ON s.id = r.supplier_id
        {where}
        ORDER BY r.created_at DESC, r.id DESC
        LIMIT %s OFFSET %s
        """,
        [*params, limit, offset],
    )
    return cur.fetchall() or [], total


def list_audit(cur, receipt_id: str, limit: int = 200) -> list[dict]:
    cur.execute(
        """
        SELECT l.id, l.user_id, u.email AS user_email, l.action, l.details, l.created_at
        FROM audit_logs l
        LEFT JOIN users u ON u.id = l.user_id
        WHERE l.entity_type = 'goods_receipt' AND l.entity_id = %s
        ORDER BY l.created_at DESC, l.id DESC
        LIMIT %s
        """,
        (receipt_id, limit),
    )
    return cur.fetchall() or []
