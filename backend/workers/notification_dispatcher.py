#!/usr/bin/env python3
import argparse
import hashlib
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import psycopg
from psycopg.rows import dict_row

from backend.receiving import receipts_store
from backend.receiving.config import settings
from backend.receiving.logs import json_log
from backend.receiving.notifications import SUPPLIER_EMAIL, SupplierEmailNotifier

MAX_ATTEMPTS_DEFAULT = 8
MAX_DELAY_SECONDS = 3600


def get_conn(db_url):
    return psycopg.connect(db_url, row_factory=dict_row)


def next_retry_at_for_attempt(attempt_count: int, outbox_id: Optional[str] = None, now: Optional[datetime] = None) -> datetime:
    delay_seconds = min(MAX_DELAY_SECONDS, 30 * 2 ** max(attempt_count - 1, 0))
    if outbox_id:
        # Deterministic per-row jitter so a relay outage doesn't retry everything in lockstep.
        digest = hashlib.sha1(f"{outbox_id}:{attempt_count}".encode("utf-8")).hexdigest()
        jitter_window = max(1, delay_seconds // 5)
        delay_seconds = min(MAX_DELAY_SECONDS, delay_seconds + (int(digest[:8], 16) % (jitter_window + 1)))
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=delay_seconds)


def _fetch_next_notification(cur, max_attempts: int):
    cur.execute(
        """
        SELECT o.id, o.goods_receipt_id, o.kind, o.payload_json, o.attempt_count
        FROM notification_outbox o
        WHERE (
              o.status = 'pending'
              OR (
                  o.status = 'failed'
                  AND (o.next_attempt_at IS NULL OR o.next_attempt_at <= now())
              )
          )
          AND o.attempt_count < %s
        ORDER BY
          CASE WHEN o.status = 'pending' THEN 0 ELSE 1 END,
          COALESCE(o.next_attempt_at, o.created_at) ASC,
          o.created_at ASC
        LIMIT 1
        FOR UPDATE OF o SKIP LOCKED
        """,
        (max_attempts,),
    )
    return cur.fetchone()


def _record_failure(cur, row, error: Exception, max_attempts: int):
    next_attempt = int(row.get("attempt_count") or 0) + 1
    next_status = "dead" if next_attempt >= max_attempts else "failed"
    cur.execute(
        """
        UPDATE notification_outbox
        SET status = %s,
            attempt_count = %s,
            error_message = %s,
            next_attempt_at = %s
        WHERE id = %s
        """,
        (
            next_status,
            next_attempt,
            str(error),
            (next_retry_at_for_attempt(next_attempt, str(row["id"])) if next_status == "failed" else None),
            row["id"],
        ),
    )
    json_log(
        "warning" if next_status == "failed" else "error",
        "notification.failed",
        outbox_id=str(row["id"]),
        goods_receipt_id=str(row["goods_receipt_id"]),
        attempt=next_attempt,
        status=next_status,
        error=str(error),
    )


def _process_one(conn, notifier, max_attempts: int) -> bool:
    with conn.transaction():
        with conn.cursor() as cur:
            row = _fetch_next_notification(cur, max_attempts)
            if not row:
                return False

            receipt_id = str(row["goods_receipt_id"])
            payload = row["payload_json"]
            if isinstance(payload, str):
                payload = json.loads(payload)
            try:
                if row["kind"] != SUPPLIER_EMAIL:
                    raise ValueError(f"Unsupported notification kind {row['kind']}")
                notifier.send_supplier_email(receipt_id, payload or {})
            except Exception as ex:
                _record_failure(cur, row, ex, max_attempts)
                return True

            receipts_store.mark_notification_sent(cur, str(row["id"]), receipt_id, datetime.now(timezone.utc))
            json_log("info", "notification.sent", outbox_id=str(row["id"]), goods_receipt_id=receipt_id)
    return True


def dispatch_notifications(db_url: str, limit: int, max_attempts: int = MAX_ATTEMPTS_DEFAULT, notifier=None) -> int:
    notifier = notifier or SupplierEmailNotifier()
    processed = 0
    with get_conn(db_url) as conn:
        while processed < limit:
            did_one = _process_one(conn, notifier, max_attempts)
            if not did_one:
                break
            processed += 1
    return processed


def main():
    parser = argparse.ArgumentParser(description="Deliver queued supplier notifications")
    parser.add_argument("--db", default=settings.db_url)
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--max-attempts", type=int, default=MAX_ATTEMPTS_DEFAULT)
    parser.add_argument("--loop", action="store_true", help="Run continuously as a service")
    parser.add_argument("--sleep", type=float, default=5.0, help="Seconds to sleep between loops")
    args = parser.parse_args()
    if args.loop:
        while True:
            try:
                dispatch_notifications(args.db, args.limit, max_attempts=args.max_attempts)
            except psycopg.Error as ex:
                json_log("error", "notification.dispatch_error", error=str(ex))
            time.sleep(args.sleep)
    else:
        n = dispatch_notifications(args.db, args.limit, max_attempts=args.max_attempts)
        json_log("info", "notification.dispatch_done", processed=n)


if __name__ == "__main__":
    main()
