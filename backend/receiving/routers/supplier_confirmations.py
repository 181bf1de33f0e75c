from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from .. import workflow
from ..db import get_conn
from ..deps import workflow_response

# Suppliers are not users: the signed confirmation token is the only credential.
router = APIRouter(prefix="/goods-receipts", tags=["supplier-confirmations"])


class SupplierConfirmationIn(BaseModel):
    confirmation_token: str
    confirmed: bool = True
    notes: Optional[str] = None


@router.post("/supplier-confirmations")
def confirm_goods_receipt(data: SupplierConfirmationIn):
    with get_conn() as conn:
        result = workflow.confirm_by_supplier(conn, data.confirmation_token, data.confirmed, data.notes)
    out = workflow_response(result)
    # Suppliers only need the outcome, not internal document fields.
    receipt = out.get("receipt") or {}
    return {"ok": True, "receipt_no": receipt.get("receipt_no"), "status": receipt.get("status")}
