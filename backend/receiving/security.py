import hashlib
import hmac
import secrets
from typing import Optional


def hash_session_token(token: str) -> str:
    # Store sessions as a one-way hash so a DB leak doesn't immediately grant access.
    return "sha256:" + hashlib.sha256(token.encode("utf-8")).hexdigest()


def new_confirmation_nonce() -> str:
    return secrets.token_urlsafe(12)


def _confirmation_signature(receipt_id: str, nonce: str, secret: str) -> str:
    msg = f"{receipt_id}:{nonce}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def make_confirmation_token(receipt_id: str, nonce: str, secret: str) -> str:
    # Self-verifying token sent to suppliers; only the nonce is stored on the receipt.
    return f"{receipt_id}.{nonce}.{_confirmation_signature(receipt_id, nonce, secret)}"


def parse_confirmation_token(token: str, secret: str) -> Optional[tuple[str, str]]:
    """
    Returns (receipt_id, nonce) when the signature checks out, otherwise None.
    The caller must still compare the nonce with the one stored on the receipt.
    """
    parts = (token or "").strip().split(".")
    if len(parts) != 3 or not all(parts):
        return None
    receipt_id, nonce, signature = parts
    expected = _confirmation_signature(receipt_id, nonce, secret)
    if not hmac.compare_digest(expected, signature):
        return None
    return receipt_id, nonce
