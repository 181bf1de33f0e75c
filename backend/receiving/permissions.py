from __future__ import annotations

from .models import Actor, GoodsReceipt
from .statuses import (
    APPROVER_ROLES,
    Action,
    ReceiptStatus,
    Role,
    parse_role,
    parse_status,
)


_EMPTY: frozenset = frozenset()


def _draft_actions(role: Role, is_creator: bool) -> frozenset:
    if role == Role.SUPPLIER:
        return _EMPTY
    if is_creator:
        return frozenset({Action.EDIT, Action.SUBMIT, Action.DELETE})
    if role in APPROVER_ROLES:
        return frozenset({Action.EDIT})
    return _EMPTY


def _awaiting_approval_actions(role: Role, is_creator: bool) -> frozenset:
    if role in APPROVER_ROLES:
        return frozenset({Action.APPROVE, Action.REJECT})
    if role == Role.EMPLOYEE and is_creator:
        return frozenset({Action.CANCEL})
    return _EMPTY


def _pending_actions(role: Role, is_creator: bool) -> frozenset:
    if role in APPROVER_ROLES:
        return frozenset({Action.EDIT, Action.RESEND_NOTIFICATION})
    if role == Role.SUPPLIER:
        return frozenset({Action.SUPPLIER_CONFIRM, Action.SUPPLIER_DECLINE})
    return _EMPTY


def _supplier_confirmed_actions(role: Role, is_creator: bool) -> frozenset:
    if role in APPROVER_ROLES:
        return frozenset({Action.COMPLETE})
    return _EMPTY


def _rejected_actions(role: Role, is_creator: bool) -> frozenset:
    if role == Role.EMPLOYEE and is_creator:
        return frozenset({Action.EDIT, Action.RESUBMIT, Action.DELETE})
    return _EMPTY


def _cancelled_actions(role: Role, is_creator: bool) -> frozenset:
    if role == Role.EMPLOYEE and is_creator:
        return frozenset({Action.DELETE})
    return _EMPTY


def _completed_actions(role: Role, is_creator: bool) -> frozenset:
    return _EMPTY


_RULES = {
    ReceiptStatus.DRAFT: _draft_actions,
    ReceiptStatus.AWAITING_APPROVAL: _awaiting_approval_actions,
    ReceiptStatus.PENDING: _pending_actions,
    ReceiptStatus.SUPPLIER_CONFIRMED: _supplier_confirmed_actions,
    ReceiptStatus.REJECTED: _rejected_actions,
    ReceiptStatus.CANCELLED: _cancelled_actions,
    ReceiptStatus.COMPLETED: _completed_actions,
}


def allowed_actions(status, role, is_creator) -> frozenset:
    """
    Actions an actor may take on a receipt in `status`.

    Total over its inputs: unknown statuses or roles (including raw strings that
    don't parse) yield an empty set instead of raising.
    """
    st = parse_status(status)
    rl = parse_role(role)
    if st is None or rl is None:
        return _EMPTY
    # The supplier channel is never the creator of a receipt.
    creator = bool(is_creator) and rl != Role.SUPPLIER
    return _RULES[st](rl, creator)


def actions_for(receipt: GoodsReceipt, actor: Actor) -> frozenset:
    return allowed_actions(receipt.status, actor.role, receipt.is_created_by(actor))


def permitted_in_any_status(action: Action, role, is_creator) -> bool:
    return any(action in allowed_actions(st, role, is_creator) for st in ReceiptStatus)


def workflow_view(receipt: GoodsReceipt, actor: Actor) -> dict:
    """
    Per-actor summary used by clients to decide which action buttons to render.
    Everything here is derived from `allowed_actions`; nothing is decided locally.
    """
    actions = actions_for(receipt, actor)
    return {
        "current_status": receipt.status.value,
        "available_actions": sorted(a.value for a in actions),
        "can_edit": Action.EDIT in actions,
        "can_approve": Action.APPROVE in actions,
        "can_complete": Action.COMPLETE in actions,
        "can_delete": Action.DELETE in actions,
        "requires_supplier_confirmation": receipt.status == ReceiptStatus.PENDING,
        "approval_info": {
            "approved_by_user_id": receipt.approved_by_user_id,
            "approved_at": receipt.approved_at,
            "approval_notes": receipt.approval_notes,
        },
        "supplier_confirmation_info": {
            "confirmed": receipt.supplier_confirmed_at is not None,
            "confirmed_at": receipt.supplier_confirmed_at,
            "email_sent": receipt.supplier_notified_at is not None,
            "supplier_notes": receipt.supplier_notes,
        },
        "completion_info": {
            "completed_by_user_id": receipt.completed_by_user_id,
            "completed_at": receipt.completed_at,
        },
    }
