from __future__ import annotations

from enum import Enum
from typing import Optional


class ReceiptStatus(str, Enum):
    DRAFT = "Draft"
    AWAITING_APPROVAL = "AwaitingApproval"
    PENDING = "Pending"
    SUPPLIER_CONFIRMED = "SupplierConfirmed"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class Role(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    EMPLOYEE = "Employee"
    # Inbound supplier-confirmation channel; never a logged-in user.
    SUPPLIER = "Supplier"


class Action(str, Enum):
    SUBMIT = "Submit"
    APPROVE = "Approve"
    REJECT = "Reject"
    CANCEL = "Cancel"
    SUPPLIER_CONFIRM = "SupplierConfirm"
    SUPPLIER_DECLINE = "SupplierDecline"
    COMPLETE = "Complete"
    RESUBMIT = "Resubmit"
    EDIT = "Edit"
    RESEND_NOTIFICATION = "ResendNotification"
    DELETE = "Delete"


APPROVER_ROLES = frozenset({Role.ADMIN, Role.MANAGER})
INTERNAL_ROLES = frozenset({Role.ADMIN, Role.MANAGER, Role.EMPLOYEE})

# Line items (and supplier) may only change while the receipt is in one of these.
EDITABLE_STATUSES = frozenset({ReceiptStatus.DRAFT, ReceiptStatus.REJECTED})
TERMINAL_STATUSES = frozenset({ReceiptStatus.COMPLETED, ReceiptStatus.CANCELLED})

# Sentinel target for actions that remove the document.
REMOVED = None

TRANSITIONS: dict[tuple[ReceiptStatus, Action], Optional[ReceiptStatus]] = {
    (ReceiptStatus.DRAFT, Action.EDIT): ReceiptStatus.DRAFT,
    (ReceiptStatus.DRAFT, Action.SUBMIT): ReceiptStatus.AWAITING_APPROVAL,
    (ReceiptStatus.DRAFT, Action.DELETE): REMOVED,
    (ReceiptStatus.AWAITING_APPROVAL, Action.APPROVE): ReceiptStatus.PENDING,
    (ReceiptStatus.AWAITING_APPROVAL, Action.REJECT): ReceiptStatus.REJECTED,
    (ReceiptStatus.AWAITING_APPROVAL, Action.CANCEL): ReceiptStatus.CANCELLED,
    (ReceiptStatus.PENDING, Action.SUPPLIER_CONFIRM): ReceiptStatus.SUPPLIER_CONFIRMED,
    (ReceiptStatus.PENDING, Action.SUPPLIER_DECLINE): ReceiptStatus.PENDING,
    (ReceiptStatus.PENDING, Action.EDIT): ReceiptStatus.PENDING,
    (ReceiptStatus.PENDING, Action.RESEND_NOTIFICATION): ReceiptStatus.PENDING,
    (ReceiptStatus.SUPPLIER_CONFIRMED, Action.COMPLETE): ReceiptStatus.COMPLETED,
    (ReceiptStatus.REJECTED, Action.EDIT): ReceiptStatus.REJECTED,
    (ReceiptStatus.REJECTED, Action.RESUBMIT): ReceiptStatus.AWAITING_APPROVAL,
    (ReceiptStatus.REJECTED, Action.DELETE): REMOVED,
    (ReceiptStatus.CANCELLED, Action.DELETE): REMOVED,
}


def has_transition(status: ReceiptStatus, action: Action) -> bool:
    return (status, action) in TRANSITIONS


def next_status(status: ReceiptStatus, action: Action) -> Optional[ReceiptStatus]:
    """
    Target status for `action` taken in `status` (None means the document is removed).
    Raises KeyError for pairs outside the table; callers authorize first.
    """
    return TRANSITIONS[(status, action)]


def parse_status(value) -> Optional[ReceiptStatus]:
    if isinstance(value, ReceiptStatus):
        return value
    try:
        return ReceiptStatus(str(value or "").strip())
    except ValueError:
        return None


def parse_role(value) -> Optional[Role]:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value or "").strip())
    except ValueError:
        return None


def parse_action(value) -> Optional[Action]:
    if isinstance(value, Action):
        return value
    try:
        return Action(str(value or "").strip())
    except ValueError:
        return None
