import itertools

from backend.receiving.errors import ErrorCode
from backend.receiving.guards import authorize
from backend.receiving.models import Actor
from backend.receiving.permissions import allowed_actions
from backend.receiving.statuses import Action, ReceiptStatus, Role
from backend.tests.fakes import make_receipt


CREATOR = "7"
OTHER = "8"


def _actor(role: Role, is_creator: bool) -> Actor:
    if role == Role.SUPPLIER:
        return Actor.supplier_channel()
    return Actor(user_id=(CREATOR if is_creator else OTHER), role=role)


def test_guard_agrees_with_matrix_for_every_combination():
    for status, role, creator, action in itertools.product(ReceiptStatus, Role, [True, False], Action):
        rec = make_receipt(status=status, created_by_user_id=CREATOR, supplier_token_nonce="n1")
        actor = _actor(role, creator)
        decision = authorize(rec, actor, action, confirmation_nonce="n1")
        allowed = action in allowed_actions(status, role, creator and role != Role.SUPPLIER)
        if allowed:
            assert decision.ok, (status, role, creator, action, decision)
        else:
            assert not decision.ok
            assert decision.reason in (ErrorCode.FORBIDDEN, ErrorCode.INVALID_STATE)


def test_complete_on_completed_is_invalid_state():
    rec = make_receipt(status=ReceiptStatus.COMPLETED)
    decision = authorize(rec, Actor(user_id="1", role=Role.ADMIN), Action.COMPLETE)
    assert decision.reason == ErrorCode.INVALID_STATE


def test_non_creator_employee_cancel_is_forbidden():
    rec = make_receipt(status=ReceiptStatus.AWAITING_APPROVAL, created_by_user_id=CREATOR)
    decision = authorize(rec, Actor(user_id=OTHER, role=Role.EMPLOYEE), Action.CANCEL)
    assert decision.reason == ErrorCode.FORBIDDEN


def test_employee_approve_is_forbidden():
    rec = make_receipt(status=ReceiptStatus.AWAITING_APPROVAL)
    decision = authorize(rec, Actor(user_id=CREATOR, role=Role.EMPLOYEE), Action.APPROVE)
    assert decision.reason == ErrorCode.FORBIDDEN


def test_submit_requires_lines_and_supplier():
    creator = Actor(user_id=CREATOR, role=Role.EMPLOYEE)

    empty = make_receipt(line_items=())
    assert authorize(empty, creator, Action.SUBMIT).reason == ErrorCode.INVALID_STATE

    no_supplier = make_receipt(supplier_id=None)
    assert authorize(no_supplier, creator, Action.SUBMIT).reason == ErrorCode.INVALID_STATE

    unknown_supplier = make_receipt()
    decision = authorize(unknown_supplier, creator, Action.SUBMIT, supplier_exists=False)
    assert decision.reason == ErrorCode.INVALID_STATE
    assert "not found" in decision.detail

    assert authorize(make_receipt(), creator, Action.SUBMIT).ok


def test_resubmit_requires_lines_and_supplier():
    creator = Actor(user_id=CREATOR, role=Role.EMPLOYEE)

    empty = make_receipt(status=ReceiptStatus.REJECTED, line_items=())
    assert authorize(empty, creator, Action.RESUBMIT).reason == ErrorCode.INVALID_STATE

    no_supplier = make_receipt(status=ReceiptStatus.REJECTED, supplier_id=None)
    assert authorize(no_supplier, creator, Action.RESUBMIT).reason == ErrorCode.INVALID_STATE

    rec = make_receipt(status=ReceiptStatus.REJECTED)
    assert authorize(rec, creator, Action.RESUBMIT, supplier_exists=False).reason == ErrorCode.INVALID_STATE
    assert authorize(rec, creator, Action.RESUBMIT).ok


def test_complete_requires_products_to_exist():
    rec = make_receipt(status=ReceiptStatus.SUPPLIER_CONFIRMED)
    admin = Actor(user_id="1", role=Role.ADMIN)
    decision = authorize(rec, admin, Action.COMPLETE, missing_product_ids=["b", "a"])
    assert decision.reason == ErrorCode.INVALID_STATE
    assert decision.detail.endswith("a, b")


def test_supplier_needs_matching_nonce():
    rec = make_receipt(status=ReceiptStatus.PENDING, supplier_token_nonce="current")
    supplier = Actor.supplier_channel()

    assert authorize(rec, supplier, Action.SUPPLIER_CONFIRM, confirmation_nonce="current").ok
    assert authorize(rec, supplier, Action.SUPPLIER_CONFIRM, confirmation_nonce="stale").reason == ErrorCode.FORBIDDEN
    assert authorize(rec, supplier, Action.SUPPLIER_CONFIRM).reason == ErrorCode.FORBIDDEN


def test_supplier_confirm_after_confirmation_is_invalid_state():
    rec = make_receipt(status=ReceiptStatus.SUPPLIER_CONFIRMED, supplier_token_nonce="current")
    decision = authorize(rec, Actor.supplier_channel(), Action.SUPPLIER_CONFIRM, confirmation_nonce="current")
    assert decision.reason == ErrorCode.INVALID_STATE
