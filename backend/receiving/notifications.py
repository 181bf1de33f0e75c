import json
import urllib.error
import urllib.request
from typing import Any, Optional

from .config import settings


SUPPLIER_EMAIL = "supplier_email"


class NotificationError(RuntimeError):
    pass


def _http_post_json(url: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
    body = json.dumps(payload, default=str).encode("utf-8")
    req = urllib.request.Request(url, data=body, method="POST", headers={"Content-Type": "application/json"})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8") or "{}"
            return json.loads(raw)
    except urllib.error.HTTPError as e:
        text = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else str(e)
        raise NotificationError(f"supplier email HTTP {getattr(e, 'code', '?')}: {text}") from e
    except (urllib.error.URLError, TimeoutError) as e:
        raise NotificationError(f"supplier email delivery failed: {e}") from e


class SupplierEmailNotifier:
    """
    Hands supplier emails to the mail relay webhook.

    The relay owns templating and the actual SMTP delivery; we only send the
    receipt reference and the confirmation token the supplier will click through with.
    """

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        self.webhook_url = (webhook_url if webhook_url is not None else settings.supplier_email_webhook_url).strip()
        self.timeout = timeout if timeout is not None else settings.supplier_email_timeout_seconds

    def send_supplier_email(self, receipt_id: str, payload: dict) -> None:
        if not self.webhook_url:
            raise NotificationError("SUPPLIER_EMAIL_WEBHOOK_URL is not configured")
        _http_post_json(self.webhook_url, {"goods_receipt_id": receipt_id, **(payload or {})}, self.timeout)


default_notifier = SupplierEmailNotifier()
