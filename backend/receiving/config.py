import os
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        return int(raw) if raw else default

    def _float(self, name: str, default: float) -> float:
        raw = (os.getenv(name) or "").strip()
        return float(raw) if raw else default

    def _truthy(self, name: str, default: bool) -> bool:
        raw = (os.getenv(name) or "").strip().lower()
        if not raw:
            return default
        return raw in {"1", "true", "yes", "on"}

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/receiving')
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Receipt numbers look like GR20260117-0001.
        self.receipt_no_prefix = os.getenv("RECEIPT_NO_PREFIX", "GR").strip() or "GR"

        # How long a request waits for another request's lock on the same receipt
        # before giving up with a retryable conflict.
        self.lock_timeout_ms = self._int("LOCK_TIMEOUT_MS", 5000)

        # Supplier notification delivery. Empty webhook URL means "not configured":
        # notifications stay queued in the outbox until the dispatcher can send them.
        self.supplier_email_webhook_url = os.getenv("SUPPLIER_EMAIL_WEBHOOK_URL", "").strip()
        self.supplier_email_timeout_seconds = self._float("SUPPLIER_EMAIL_TIMEOUT_SECONDS", 10.0)
        self.notify_inline = self._truthy("NOTIFY_INLINE", True)
        self.supplier_confirmation_secret = os.getenv("SUPPLIER_CONFIRMATION_SECRET", "dev-only-secret")

settings = Settings()
