from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field

from .models import QTY_MAX, UNIT_PRICE_MAX


def _to_title_str(v):
    if v is None:
        return v
    s = str(v).strip()
    return s[:1].upper() + s[1:].lower() if s else s


def _to_status_str(v):
    if v is None:
        return v
    s = str(v).strip()
    # Accept "awaiting_approval" / "awaitingapproval" style input from query strings.
    lookup = {
        "draft": "Draft",
        "awaitingapproval": "AwaitingApproval",
        "pending": "Pending",
        "supplierconfirmed": "SupplierConfirmed",
        "completed": "Completed",
        "rejected": "Rejected",
        "cancelled": "Cancelled",
        "canceled": "Cancelled",
    }
    return lookup.get(s.replace("_", "").replace("-", "").lower(), s)


# Canonical codes mirror the Postgres types in `backend/db/migrations/001_goods_receipts.sql`.
RoleCode = Annotated[Literal["Admin", "Manager", "Employee"], BeforeValidator(_to_title_str)]
ReceiptStatusCode = Annotated[
    Literal["Draft", "AwaitingApproval", "Pending", "SupplierConfirmed", "Completed", "Rejected", "Cancelled"],
    BeforeValidator(_to_status_str),
]
ApprovalDecision = Annotated[Literal["Approve", "Reject"], BeforeValidator(_to_title_str)]


Quantity = Annotated[Decimal, Field(gt=0, le=QTY_MAX)]
UnitPrice = Annotated[Decimal, Field(ge=0, le=UNIT_PRICE_MAX, decimal_places=2)]
