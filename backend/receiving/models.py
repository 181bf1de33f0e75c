from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from .statuses import ReceiptStatus, Role, parse_role, parse_status


QTY_MAX = Decimal("999999")
UNIT_PRICE_MAX = Decimal("999999999.99")


@dataclass(frozen=True)
class LineItem:
    product_id: str
    quantity: Decimal
    unit_price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class Actor:
    user_id: Optional[str]
    role: Role

    @classmethod
    def supplier_channel(cls) -> "Actor":
        return cls(user_id=None, role=Role.SUPPLIER)


@dataclass(frozen=True)
class GoodsReceipt:
    id: str
    supplier_id: Optional[str]
    created_by_user_id: str
    status: ReceiptStatus = ReceiptStatus.DRAFT
    line_items: tuple[LineItem, ...] = ()
    receipt_no: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1
    approved_by_user_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    supplier_token_nonce: Optional[str] = None
    supplier_notified_at: Optional[datetime] = None
    supplier_confirmed_at: Optional[datetime] = None
    supplier_notes: Optional[str] = None
    completed_by_user_id: Optional[str] = None
    completed_at: Optional[datetime] = None

    @property
    def total_amount(self) -> Decimal:
        return compute_total(self.line_items)

    def is_created_by(self, actor: Actor) -> bool:
        return actor.user_id is not None and str(actor.user_id) == str(self.created_by_user_id)

    def product_ids(self) -> list[str]:
        return [li.product_id for li in self.line_items]


@dataclass(frozen=True)
class AuditRecord:
    document_id: str
    actor_user_id: Optional[str]
    action: str
    from_status: Optional[ReceiptStatus]
    to_status: Optional[ReceiptStatus]
    timestamp: datetime
    details: dict = field(default_factory=dict)


def compute_total(line_items: Iterable[LineItem]) -> Decimal:
    return sum((li.subtotal for li in line_items), Decimal("0"))


def validate_line_items(line_items: Iterable[LineItem]) -> list[str]:
    """
    Returns human-readable problems with a set of lines (empty list means valid).
    An empty set is valid here; Submit enforces non-emptiness separately.
    """
    errors: list[str] = []
    seen: set[str] = set()
    for idx, li in enumerate(line_items, start=1):
        pid = str(li.product_id or "").strip()
        if not pid:
            errors.append(f"line {idx}: product_id is required")
        elif pid in seen:
            errors.append(f"line {idx}: duplicate product {pid}")
        seen.add(pid)
        if li.quantity is None or li.quantity <= 0:
            errors.append(f"line {idx}: quantity must be > 0")
        elif li.quantity > QTY_MAX:
            errors.append(f"line {idx}: quantity must be <= {QTY_MAX}")
        if li.unit_price is None or li.unit_price < 0:
            errors.append(f"line {idx}: unit_price must be >= 0")
        elif li.unit_price > UNIT_PRICE_MAX:
            errors.append(f"line {idx}: unit_price must be <= {UNIT_PRICE_MAX}")
    return errors


def line_item_from_row(row: dict) -> LineItem:
    return LineItem(
        product_id=str(row["product_id"]),
        quantity=Decimal(str(row["quantity"])),
        unit_price=Decimal(str(row["unit_price"])),
    )


def receipt_from_row(row: dict, lines: Iterable[dict]) -> GoodsReceipt:
    status = parse_status(row["status"])
    if status is None:
        raise ValueError(f"unknown goods receipt status: {row['status']!r}")
    return GoodsReceipt(
        id=str(row["id"]),
        receipt_no=row.get("receipt_no"),
        supplier_id=(str(row["supplier_id"]) if row.get("supplier_id") is not None else None),
        created_by_user_id=str(row["created_by_user_id"]),
        status=status,
        line_items=tuple(line_item_from_row(r) for r in lines),
        notes=row.get("notes"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        version=int(row.get("version") or 1),
        approved_by_user_id=(str(row["approved_by_user_id"]) if row.get("approved_by_user_id") else None),
        approved_at=row.get("approved_at"),
        approval_notes=row.get("approval_notes"),
        cancel_reason=row.get("cancel_reason"),
        supplier_token_nonce=row.get("supplier_token_nonce"),
        supplier_notified_at=row.get("supplier_notified_at"),
        supplier_confirmed_at=row.get("supplier_confirmed_at"),
        supplier_notes=row.get("supplier_notes"),
        completed_by_user_id=(str(row["completed_by_user_id"]) if row.get("completed_by_user_id") else None),
        completed_at=row.get("completed_at"),
    )


def actor_from_row(row: dict) -> Optional[Actor]:
    role = parse_role(row.get("role"))
    if role is None or role == Role.SUPPLIER:
        return None
    return Actor(user_id=str(row["user_id"]), role=role)


def receipt_to_dict(receipt: GoodsReceipt) -> dict:
    return {
        "id": receipt.id,
        "receipt_no": receipt.receipt_no,
        "supplier_id": receipt.supplier_id,
        "created_by_user_id": receipt.created_by_user_id,
        "status": receipt.status.value,
        "total_amount": receipt.total_amount,
        "notes": receipt.notes,
        "version": receipt.version,
        "created_at": receipt.created_at,
        "updated_at": receipt.updated_at,
        "approval_notes": receipt.approval_notes,
        "cancel_reason": receipt.cancel_reason,
        "supplier_notes": receipt.supplier_notes,
        "lines": [
            {
                "product_id": li.product_id,
                "quantity": li.quantity,
                "unit_price": li.unit_price,
                "subtotal": li.subtotal,
            }
            for li in receipt.line_items
        ],
    }
