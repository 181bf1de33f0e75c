from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .errors import ErrorCode
from .models import Actor, GoodsReceipt
from .permissions import actions_for, permitted_in_any_status
from .statuses import Action, Role


@dataclass(frozen=True)
class Decision:
    ok: bool
    reason: Optional[ErrorCode] = None
    detail: str = ""

    @classmethod
    def denied(cls, reason: ErrorCode, detail: str) -> "Decision":
        return cls(ok=False, reason=reason, detail=detail)


ALLOW = Decision(ok=True)


def authorize(
    receipt: GoodsReceipt,
    actor: Actor,
    action: Action,
    *,
    supplier_exists: bool = True,
    missing_product_ids: Iterable[str] = (),
    confirmation_nonce: Optional[str] = None,
) -> Decision:
    """
    Pure precondition check for `action` on `receipt` by `actor`.

    Facts that need I/O (does the supplier exist, which products are gone) are
    looked up by the caller while holding the document lock and passed in.
    """
    is_creator = receipt.is_created_by(actor)
    if actor.role == Role.SUPPLIER:
        # The supplier channel only ever acts through the token issued at approval.
        if not confirmation_nonce or confirmation_nonce != receipt.supplier_token_nonce:
            return Decision.denied(ErrorCode.FORBIDDEN, "confirmation token does not match this receipt")

    if action not in actions_for(receipt, actor):
        if permitted_in_any_status(action, actor.role, is_creator):
            return Decision.denied(
                ErrorCode.INVALID_STATE,
                f"{action.value} is not possible while the receipt is {receipt.status.value}",
            )
        return Decision.denied(
            ErrorCode.FORBIDDEN,
            f"{actor.role.value} may not {action.value} this receipt",
        )

    # A receipt leaving Draft or Rejected needs lines and a known supplier.
    if action in (Action.SUBMIT, Action.RESUBMIT):
        if not receipt.line_items:
            return Decision.denied(ErrorCode.INVALID_STATE, "receipt has no line items")
        if not receipt.supplier_id:
            return Decision.denied(ErrorCode.INVALID_STATE, "supplier is required before submission")
        if not supplier_exists:
            return Decision.denied(ErrorCode.INVALID_STATE, f"supplier {receipt.supplier_id} not found")

    if action == Action.COMPLETE:
        missing = sorted({str(p) for p in missing_product_ids})
        if missing:
            return Decision.denied(
                ErrorCode.INVALID_STATE,
                "line items reference missing products: " + ", ".join(missing),
            )

    return ALLOW
