#!/usr/bin/env python3
"""
Create (or reuse) a user with a goods receipt role and print a fresh API session token.

    DATABASE_URL=... python -m backend.scripts.issue_session --email clerk@example.com --role Employee
"""
import argparse
import os
import secrets
import sys
from datetime import datetime, timedelta, timezone

import psycopg
from psycopg.rows import dict_row

from backend.receiving.security import hash_session_token
from backend.receiving.statuses import INTERNAL_ROLES, parse_role


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=os.getenv("DATABASE_URL"))
    parser.add_argument("--email", required=True)
    parser.add_argument("--role", default="Employee", help="Admin | Manager | Employee")
    parser.add_argument("--days", type=int, default=30, help="Session lifetime")
    args = parser.parse_args()

    if not args.db:
        print("issue_session: missing DATABASE_URL", file=sys.stderr)
        return 2
    email = (args.email or "").strip().lower()
    role = parse_role((args.role or "").strip().title())
    if not email or role not in INTERNAL_ROLES:
        print("issue_session: need --email and a role of Admin, Manager or Employee", file=sys.stderr)
        return 2

    # URL-safe and copy/paste friendly.
    token = secrets.token_urlsafe(32)
    expires_at = datetime.now(timezone.utc) + timedelta(days=max(args.days, 1))

    with psycopg.connect(args.db, row_factory=dict_row) as conn:
        with conn.transaction():
            with conn.cursor() as cur:
                cur.execute("SELECT id, role FROM users WHERE email = %s", (email,))
                row = cur.fetchone()
                if row:
                    user_id = row["id"]
                    if row["role"] != role.value:
                        cur.execute("UPDATE users SET role = %s WHERE id = %s", (role.value, user_id))
                else:
                    cur.execute(
                        """
                        INSERT INTO users (id, email, role, is_active)
                        VALUES (gen_random_uuid(), %s, %s, true)
                        RETURNING id
                        """,
                        (email, role.value),
                    )
                    user_id = cur.fetchone()["id"]

                cur.execute(
                    """
                    INSERT INTO auth_sessions (id, user_id, token_hash, is_active, expires_at)
                    VALUES (gen_random_uuid(), %s, %s, true, %s)
                    """,
                    (user_id, hash_session_token(token), expires_at),
                )

    print("SESSION_ISSUED")
    print(f"email: {email}")
    print(f"role: {role.value}")
    print(f"token: {token}")
    print(f"expires_at: {expires_at.isoformat()}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
