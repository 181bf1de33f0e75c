from datetime import datetime, timezone
from typing import Optional

from fastapi import Cookie, Depends, Header, HTTPException

from .db import get_conn
from .errors import HTTP_STATUS_BY_CODE, WorkflowResult
from .models import Actor, actor_from_row, receipt_to_dict
from .security import hash_session_token


SESSION_COOKIE_NAME = "receiving_session"


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_session(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id AS session_id, s.user_id, u.email, u.role, u.is_active AS user_active,
                       s.expires_at, s.is_active
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token_hash = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
            now = datetime.now(timezone.utc)
            if not row or not row["is_active"] or not row["user_active"] or row["expires_at"] < now:
                raise HTTPException(status_code=401, detail="invalid token")
            return {
                "session_id": row["session_id"],
                "user_id": row["user_id"],
                "email": row["email"],
                "role": row["role"],
            }


def get_current_actor(session=Depends(get_session)) -> Actor:
    actor = actor_from_row(session)
    if actor is None:
        raise HTTPException(status_code=403, detail="user has no goods receipt role")
    return actor


def workflow_response(result: WorkflowResult) -> dict:
    if not result.ok:
        err = result.error
        raise HTTPException(
            status_code=HTTP_STATUS_BY_CODE[err.code],
            detail={"error": err.code.value, "message": err.detail, "retryable": err.retryable},
        )
    if result.receipt is None:
        return {"ok": True}
    return {"ok": True, "receipt": receipt_to_dict(result.receipt)}
