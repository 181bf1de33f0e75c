from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from .. import receipts_store, workflow
from ..db import get_conn
from ..deps import get_current_actor, workflow_response
from ..models import Actor, LineItem, receipt_to_dict
from ..permissions import actions_for, workflow_view
from ..statuses import Action
from ..validation import ApprovalDecision, Quantity, ReceiptStatusCode, UnitPrice

router = APIRouter(prefix="/goods-receipts", tags=["goods-receipts"])

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class GoodsReceiptLineIn(BaseModel):
    product_id: str
    quantity: Quantity
    unit_price: UnitPrice


class GoodsReceiptCreateIn(BaseModel):
    supplier_id: Optional[str] = None
    notes: Optional[str] = None
    lines: List[GoodsReceiptLineIn] = []


class GoodsReceiptEditIn(BaseModel):
    # Omitted fields are left as they are.
    supplier_id: Optional[str] = None
    notes: Optional[str] = None
    lines: Optional[List[GoodsReceiptLineIn]] = None
    expected_version: Optional[int] = None


class ApproveRejectIn(BaseModel):
    action: ApprovalDecision
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class CancelIn(BaseModel):
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class VersionIn(BaseModel):
    expected_version: Optional[int] = None


def _parse_uuid(value: Optional[str], field_name: str) -> str:
    raw = (value or "").strip()
    try:
        return str(UUID(raw))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{field_name} must be a valid UUID")


def _parse_uuid_optional(value: Optional[str], field_name: str) -> Optional[str]:
    if not (value or "").strip():
        return None
    return _parse_uuid(value, field_name)


def _lines(lines: Optional[List[GoodsReceiptLineIn]]) -> list[LineItem]:
    return [
        LineItem(product_id=_parse_uuid(l.product_id, "product_id"), quantity=l.quantity, unit_price=l.unit_price)
        for l in (lines or [])
    ]


def _apply(receipt_id: str, actor: Actor, action: Action, payload: Optional[dict] = None) -> dict:
    rid = _parse_uuid(receipt_id, "receipt_id")
    with get_conn() as conn:
        return workflow_response(workflow.apply_action(conn, rid, actor, action, payload or {}))


def _load(cur, receipt_id: str):
    rec = receipts_store.fetch_receipt(cur, _parse_uuid(receipt_id, "receipt_id"))
    if rec is None:
        raise HTTPException(status_code=404, detail="goods receipt not found")
    return rec


def _page(rows: list, total: int, page: int, page_size: int) -> dict:
    total_pages = (total + page_size - 1) // page_size if total else 0
    return {
        "items": rows,
        "total_count": total,
        "page_number": page,
        "page_size": page_size,
        "total_pages": total_pages,
        "has_previous_page": page > 1,
        "has_next_page": page < total_pages,
    }


@router.post("")
def create_goods_receipt(data: GoodsReceiptCreateIn, actor: Actor = Depends(get_current_actor)):
    supplier_id = _parse_uuid_optional(data.supplier_id, "supplier_id")
    with get_conn() as conn:
        return workflow_response(workflow.create_receipt(conn, actor, supplier_id, _lines(data.lines), data.notes))


@router.get("")
def list_goods_receipts(
    receipt_number: str = Query("", description="Partial receipt number match"),
    supplier_id: str = Query("", description="Optional supplier id filter"),
    supplier_name: str = Query("", description="Partial supplier name match"),
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    status: Optional[ReceiptStatusCode] = None,
    min_amount: Optional[Decimal] = Query(None, ge=0),
    max_amount: Optional[Decimal] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _actor: Actor = Depends(get_current_actor),
):
    if from_date and to_date and from_date > to_date:
        raise HTTPException(status_code=400, detail="from_date must be on or before to_date")
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise HTTPException(status_code=400, detail="min_amount must be <= max_amount")
    filters = {
        "receipt_number": (receipt_number or "").strip() or None,
        "supplier_id": _parse_uuid_optional(supplier_id, "supplier_id"),
        "supplier_name": (supplier_name or "").strip() or None,
        "from_date": from_date,
        "to_date": to_date,
        "status": status,
        "min_amount": min_amount,
        "max_amount": max_amount,
    }
    with get_conn() as conn:
        with conn.cursor() as cur:
            rows, total = receipts_store.list_receipts(cur, filters, page_size, (page - 1) * page_size)
    return _page(rows, total, page, page_size)


@router.get("/by-number/{receipt_no}")
def get_goods_receipt_by_number(receipt_no: str, _actor: Actor = Depends(get_current_actor)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            rid = receipts_store.find_receipt_id_by_number(cur, receipt_no)
            if not rid:
                raise HTTPException(status_code=404, detail="goods receipt not found")
            return {"receipt": receipt_to_dict(_load(cur, rid))}


@router.get("/by-supplier/{supplier_id}")
def list_goods_receipts_by_supplier(
    supplier_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    _actor: Actor = Depends(get_current_actor),
):
    filters = {"supplier_id": _parse_uuid(supplier_id, "supplier_id")}
    with get_conn() as conn:
        with conn.cursor() as cur:
            rows, total = receipts_store.list_receipts(cur, filters, page_size, (page - 1) * page_size)
    return _page(rows, total, page, page_size)


@router.get("/{receipt_id}")
def get_goods_receipt(receipt_id: str, _actor: Actor = Depends(get_current_actor)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            return {"receipt": receipt_to_dict(_load(cur, receipt_id))}


@router.get("/{receipt_id}/can-delete")
def can_delete_goods_receipt(receipt_id: str, actor: Actor = Depends(get_current_actor)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            rec = _load(cur, receipt_id)
    return {"can_delete": Action.DELETE in actions_for(rec, actor)}


@router.get("/{receipt_id}/workflow")
def get_goods_receipt_workflow(receipt_id: str, actor: Actor = Depends(get_current_actor)):
    with get_conn() as conn:
        with conn.cursor() as cur:
            rec = _load(cur, receipt_id)
    return workflow_view(rec, actor)


@router.get("/{receipt_id}/audit")
def get_goods_receipt_audit(
    receipt_id: str,
    limit: int = Query(200, ge=1, le=500),
    _actor: Actor = Depends(get_current_actor),
):
    with get_conn() as conn:
        with conn.cursor() as cur:
            rec = _load(cur, receipt_id)
            return {"goods_receipt_id": rec.id, "entries": receipts_store.list_audit(cur, rec.id, limit)}


@router.post("/{receipt_id}/submit")
def submit_goods_receipt(receipt_id: str, data: Optional[VersionIn] = None, actor: Actor = Depends(get_current_actor)):
    return _apply(receipt_id, actor, Action.SUBMIT, (data.model_dump() if data else None))


@router.post("/{receipt_id}/approve-reject")
def approve_or_reject_goods_receipt(receipt_id: str, data: ApproveRejectIn, actor: Actor = Depends(get_current_actor)):
    action = Action.APPROVE if data.action == "Approve" else Action.REJECT
    return _apply(receipt_id, actor, action, {"notes": data.notes, "expected_version": data.expected_version})


@router.post("/{receipt_id}/complete")
def complete_goods_receipt(receipt_id: str, data: Optional[VersionIn] = None, actor: Actor = Depends(get_current_actor)):
    return _apply(receipt_id, actor, Action.COMPLETE, (data.model_dump() if data else None))


@router.post("/{receipt_id}/cancel")
def cancel_goods_receipt(receipt_id: str, data: Optional[CancelIn] = None, actor: Actor = Depends(get_current_actor)):
    return _apply(receipt_id, actor, Action.CANCEL, (data.model_dump() if data else None))


@router.post("/{receipt_id}/resubmit")
def resubmit_goods_receipt(receipt_id: str, data: Optional[VersionIn] = None, actor: Actor = Depends(get_current_actor)):
    return _apply(receipt_id, actor, Action.RESUBMIT, (data.model_dump() if data else None))


@router.post("/{receipt_id}/resend-supplier-email")
def resend_supplier_email(receipt_id: str, actor: Actor = Depends(get_current_actor)):
    return _apply(receipt_id, actor, Action.RESEND_NOTIFICATION)


@router.put("/{receipt_id}")
def edit_goods_receipt(receipt_id: str, data: GoodsReceiptEditIn, actor: Actor = Depends(get_current_actor)):
    payload: dict = {"expected_version": data.expected_version}
    fields = data.model_fields_set
    if "lines" in fields and data.lines is not None:
        payload["lines"] = _lines(data.lines)
    if "supplier_id" in fields:
        payload["supplier_id"] = _parse_uuid_optional(data.supplier_id, "supplier_id")
    if "notes" in fields:
        payload["notes"] = data.notes
    return _apply(receipt_id, actor, Action.EDIT, payload)


@router.delete("/{receipt_id}")
def delete_goods_receipt(receipt_id: str, expected_version: Optional[int] = None, actor: Actor = Depends(get_current_actor)):
    return _apply(receipt_id, actor, Action.DELETE, {"expected_version": expected_version})
