"""
Goods receipt workflow engine.

Every state change goes through `apply_action`: lock the receipt row, authorize,
mutate, apply stock (on completion), write the audit entry and queue supplier
notifications, all in one transaction. Notifications are delivered after commit
and never undo a committed transition.
"""
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import psycopg
from psycopg import errors as pg_errors

from . import receipts_store
from .config import settings
from .errors import ErrorCode, StaleVersionError, StockUpdateError, WorkflowResult
from .guards import authorize
from .logs import json_log
from .models import Actor, AuditRecord, GoodsReceipt, LineItem, validate_line_items
from .notifications import SUPPLIER_EMAIL, default_notifier
from .security import make_confirmation_token, new_confirmation_nonce, parse_confirmation_token
from .statuses import (
    EDITABLE_STATUSES,
    INTERNAL_ROLES,
    Action,
    ReceiptStatus,
    next_status,
    parse_action,
)


# Lock waits, serialization failures and deadlocks are safe to retry after a re-fetch.
_CONFLICT_ERRORS = (
    pg_errors.LockNotAvailable,
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
    StaleVersionError,
)

_SUPPLIER_ACTIONS = frozenset({Action.SUPPLIER_CONFIRM, Action.SUPPLIER_DECLINE})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean_text(v) -> Optional[str]:
    s = (str(v) if v is not None else "").strip()
    return s or None


def _notifies_supplier(action: Action, from_status: ReceiptStatus) -> bool:
    if action in (Action.APPROVE, Action.RESEND_NOTIFICATION):
        return True
    return action == Action.EDIT and from_status == ReceiptStatus.PENDING


def _edit(receipt: GoodsReceipt, payload: dict) -> tuple[Optional[GoodsReceipt], Optional[str]]:
    lines = tuple(payload["lines"]) if "lines" in payload else receipt.line_items
    supplier_id = _clean_text(payload["supplier_id"]) if "supplier_id" in payload else receipt.supplier_id
    notes = _clean_text(payload["notes"]) if "notes" in payload else receipt.notes

    if receipt.status not in EDITABLE_STATUSES:
        if lines != receipt.line_items or supplier_id != receipt.supplier_id:
            return None, f"line items and supplier cannot change while the receipt is {receipt.status.value}"
    problems = validate_line_items(lines)
    if problems:
        return None, "; ".join(problems)
    return replace(receipt, line_items=lines, supplier_id=supplier_id, notes=notes), None


def _reference_problem(cur, store, receipt: GoodsReceipt, previous: Optional[GoodsReceipt] = None) -> Optional[str]:
    # Only references that changed are looked up.
    if receipt.supplier_id and (previous is None or receipt.supplier_id != previous.supplier_id):
        if not store.supplier_exists(cur, receipt.supplier_id):
            return f"supplier {receipt.supplier_id} not found"
    if previous is None or receipt.line_items != previous.line_items:
        missing = store.missing_products(cur, receipt.product_ids())
        if missing:
            return "line items reference missing products: " + ", ".join(sorted(str(p) for p in missing))
    return None


def _transform(
    receipt: GoodsReceipt,
    actor: Actor,
    action: Action,
    target: ReceiptStatus,
    payload: dict,
    ts: datetime,
) -> tuple[Optional[GoodsReceipt], Optional[str]]:
    """
    Returns the receipt as it should look after `action`, or an InvalidState detail
    when the payload can't be applied. Pure; persistence happens in the caller.
    """
    notes = _clean_text(payload.get("notes"))
    updated = receipt

    if action == Action.EDIT:
        updated, problem = _edit(receipt, payload)
        if problem:
            return None, problem
    elif action == Action.APPROVE:
        updated = replace(
            receipt,
            approved_by_user_id=actor.user_id,
            approved_at=ts,
            approval_notes=notes,
            supplier_token_nonce=new_confirmation_nonce(),
        )
    elif action == Action.REJECT:
        updated = replace(
            receipt,
            approved_by_user_id=actor.user_id,
            approved_at=ts,
            approval_notes=_clean_text(payload.get("reason")) or notes,
        )
    elif action == Action.CANCEL:
        updated = replace(receipt, cancel_reason=_clean_text(payload.get("reason")) or notes)
    elif action in _SUPPLIER_ACTIONS:
        updated = replace(
            receipt,
            supplier_notes=notes or receipt.supplier_notes,
            supplier_confirmed_at=(ts if action == Action.SUPPLIER_CONFIRM else receipt.supplier_confirmed_at),
        )
    elif action == Action.COMPLETE:
        updated = replace(receipt, completed_by_user_id=actor.user_id, completed_at=ts)
    # Submit, Resubmit and ResendNotification only move status; rejection notes are kept.

    return replace(updated, status=target, version=receipt.version + 1, updated_at=ts), None


def _complete_stock(cur, store, receipt: GoodsReceipt, actor: Actor):
    # Fixed product order so concurrent completions touching the same products can't deadlock.
    for li in sorted(receipt.line_items, key=lambda x: str(x.product_id)):
        store.increase_stock(cur, li.product_id, li.quantity, receipt_id=receipt.id, user_id=actor.user_id)


def _dispatch_notifications(conn, store, notifier, receipt: GoodsReceipt, queued: list[tuple[str, dict]]) -> GoodsReceipt:
    notifier = notifier or default_notifier
    for outbox_id, payload in queued:
        try:
            notifier.send_supplier_email(receipt.id, payload)
        except Exception as ex:
            # The outbox row stays pending; the dispatcher worker retries it.
            json_log("warning", "notification.failed", goods_receipt_id=receipt.id, outbox_id=outbox_id, error=str(ex))
            continue
        sent_at = _utcnow()
        try:
            with conn.transaction():
                with conn.cursor() as cur:
                    store.mark_notification_sent(cur, outbox_id, receipt.id, sent_at)
        except psycopg.Error as ex:
            json_log("warning", "notification.mark_sent_failed", goods_receipt_id=receipt.id, outbox_id=outbox_id, error=str(ex))
            continue
        receipt = replace(receipt, supplier_notified_at=sent_at)
    return receipt


def apply_action(
    conn,
    receipt_id: str,
    actor: Actor,
    action,
    payload: Optional[dict] = None,
    *,
    store=receipts_store,
    notifier=None,
    now: Optional[datetime] = None,
) -> WorkflowResult:
    """
    Apply `action` to a receipt on behalf of `actor`.

    Payload keys (all optional): notes, reason, lines (list of LineItem),
    supplier_id, expected_version, confirmation_nonce.

    Always returns a WorkflowResult; Forbidden/InvalidState/NotFound come back
    without side effects, Conflict/DependencyError after a full rollback.
    """
    payload = payload or {}
    act = parse_action(action)
    if act is None:
        return WorkflowResult.failure(ErrorCode.INVALID_STATE, f"unknown action {action!r}")

    queued: list[tuple[str, dict]] = []
    updated: Optional[GoodsReceipt] = None
    try:
        with conn.transaction():
            with conn.cursor() as cur:
                store.set_lock_timeout(cur, settings.lock_timeout_ms)
                receipt = store.lock_receipt(cur, receipt_id)
                if receipt is None:
                    return WorkflowResult.failure(ErrorCode.NOT_FOUND, "goods receipt not found")

                expected_version = payload.get("expected_version")
                if expected_version is not None and int(expected_version) != receipt.version:
                    json_log("info", "workflow.conflict", goods_receipt_id=receipt.id, action=act.value,
                             expected_version=expected_version, version=receipt.version)
                    return WorkflowResult.failure(
                        ErrorCode.CONFLICT,
                        f"receipt was modified (version {receipt.version}, expected {expected_version})",
                    )

                supplier_ok = True
                if act in (Action.SUBMIT, Action.RESUBMIT) and receipt.supplier_id:
                    supplier_ok = store.supplier_exists(cur, receipt.supplier_id)
                missing = store.missing_products(cur, receipt.product_ids()) if act == Action.COMPLETE else []

                decision = authorize(
                    receipt,
                    actor,
                    act,
                    supplier_exists=supplier_ok,
                    missing_product_ids=missing,
                    confirmation_nonce=payload.get("confirmation_nonce"),
                )
                if not decision.ok:
                    json_log("info", "workflow.denied", goods_receipt_id=receipt.id, action=act.value,
                             user_id=actor.user_id, role=actor.role.value, reason=decision.reason.value,
                             detail=decision.detail)
                    return WorkflowResult.failure(decision.reason, decision.detail)

                ts = now or _utcnow()
                target = next_status(receipt.status, act)
                if target is None:
                    store.delete_receipt(cur, receipt.id, receipt.version)
                else:
                    updated, problem = _transform(receipt, actor, act, target, payload, ts)
                    if problem:
                        return WorkflowResult.failure(ErrorCode.INVALID_STATE, problem)
                    if act == Action.EDIT:
                        problem = _reference_problem(cur, store, updated, receipt)
                        if problem:
                            return WorkflowResult.failure(ErrorCode.INVALID_STATE, problem)
                    if act == Action.SUBMIT and not updated.receipt_no:
                        updated = replace(updated, receipt_no=store.next_receipt_no(cur, settings.receipt_no_prefix, ts.date()))
                    store.save_receipt(cur, updated, receipt.version)
                    if updated.line_items != receipt.line_items:
                        store.replace_lines(cur, updated)
                    if act == Action.COMPLETE:
                        _complete_stock(cur, store, updated, actor)

                audit = AuditRecord(
                    document_id=receipt.id,
                    actor_user_id=actor.user_id,
                    action=act.value,
                    from_status=receipt.status,
                    to_status=target,
                    timestamp=ts,
                    details={k: v for k, v in (("notes", _clean_text(payload.get("notes"))), ("reason", _clean_text(payload.get("reason")))) if v},
                )
                store.insert_audit(cur, audit)

                if updated is not None and _notifies_supplier(act, receipt.status):
                    note_payload = {
                        "receipt_no": updated.receipt_no,
                        "supplier_id": updated.supplier_id,
                        "confirmation_token": make_confirmation_token(
                            updated.id, updated.supplier_token_nonce or "", settings.supplier_confirmation_secret
                        ),
                        "reason": act.value,
                    }
                    outbox_id = store.enqueue_notification(cur, updated.id, SUPPLIER_EMAIL, note_payload)
                    queued.append((outbox_id, note_payload))
    except _CONFLICT_ERRORS as ex:
        json_log("warning", "workflow.conflict", goods_receipt_id=receipt_id, action=act.value, error=str(ex))
        return WorkflowResult.failure(ErrorCode.CONFLICT, "receipt is being modified concurrently; reload and retry")
    except (StockUpdateError, psycopg.Error) as ex:
        json_log("error", "workflow.rollback", goods_receipt_id=receipt_id, action=act.value, error=str(ex))
        return WorkflowResult.failure(ErrorCode.DEPENDENCY, f"{act.value} was rolled back: {ex}")

    json_log(
        "info",
        "workflow.transition",
        goods_receipt_id=audit.document_id,
        action=act.value,
        user_id=actor.user_id,
        from_status=audit.from_status.value,
        to_status=(audit.to_status.value if audit.to_status else None),
    )
    if updated is not None and queued and settings.notify_inline:
        updated = _dispatch_notifications(conn, store, notifier, updated, queued)
    return WorkflowResult(receipt=updated, audit=audit)


def create_receipt(
    conn,
    actor: Actor,
    supplier_id: Optional[str],
    line_items: list[LineItem],
    notes: Optional[str] = None,
    *,
    store=receipts_store,
    now: Optional[datetime] = None,
) -> WorkflowResult:
    if actor.role not in INTERNAL_ROLES or not actor.user_id:
        return WorkflowResult.failure(ErrorCode.FORBIDDEN, f"{actor.role.value} may not create goods receipts")
    lines = tuple(line_items or ())
    problems = validate_line_items(lines)
    if problems:
        return WorkflowResult.failure(ErrorCode.INVALID_STATE, "; ".join(problems))

    ts = now or _utcnow()
    receipt = GoodsReceipt(
        id=str(uuid.uuid4()),
        supplier_id=_clean_text(supplier_id),
        created_by_user_id=str(actor.user_id),
        status=ReceiptStatus.DRAFT,
        line_items=lines,
        notes=_clean_text(notes),
        created_at=ts,
        updated_at=ts,
    )
    audit = AuditRecord(
        document_id=receipt.id,
        actor_user_id=actor.user_id,
        action="Create",
        from_status=None,
        to_status=ReceiptStatus.DRAFT,
        timestamp=ts,
    )
    try:
        with conn.transaction():
            with conn.cursor() as cur:
                problem = _reference_problem(cur, store, receipt)
                if problem:
                    return WorkflowResult.failure(ErrorCode.INVALID_STATE, problem)
                store.insert_receipt(cur, receipt)
                store.insert_audit(cur, audit)
    except psycopg.Error as ex:
        json_log("error", "workflow.rollback", action="Create", user_id=actor.user_id, error=str(ex))
        return WorkflowResult.failure(ErrorCode.DEPENDENCY, f"Create was rolled back: {ex}")

    json_log("info", "workflow.transition", goods_receipt_id=receipt.id, action="Create",
             user_id=actor.user_id, from_status=None, to_status=ReceiptStatus.DRAFT.value)
    return WorkflowResult(receipt=receipt, audit=audit)


def confirm_by_supplier(
    conn,
    token: str,
    confirmed: bool,
    notes: Optional[str] = None,
    *,
    store=receipts_store,
    notifier=None,
    now: Optional[datetime] = None,
) -> WorkflowResult:
    """
    Entry point for the supplier's answer to a confirmation email. The token is
    only a capability; the guard still decides whether the receipt accepts it.
    """
    parsed = parse_confirmation_token(token, settings.supplier_confirmation_secret)
    if parsed is None:
        return WorkflowResult.failure(ErrorCode.FORBIDDEN, "invalid confirmation token")
    receipt_id, nonce = parsed
    action = Action.SUPPLIER_CONFIRM if confirmed else Action.SUPPLIER_DECLINE
    return apply_action(
        conn,
        receipt_id,
        Actor.supplier_channel(),
        action,
        {"notes": notes, "confirmation_nonce": nonce},
        store=store,
        notifier=notifier,
        now=now,
    )
