from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import AuditRecord, GoodsReceipt


class ErrorCode(str, Enum):
    FORBIDDEN = "Forbidden"
    INVALID_STATE = "InvalidState"
    CONFLICT = "Conflict"
    DEPENDENCY = "DependencyError"
    NOT_FOUND = "NotFound"


# Transport mapping used by the HTTP layer; one status per code, no reinterpretation.
HTTP_STATUS_BY_CODE = {
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.DEPENDENCY: 503,
    ErrorCode.NOT_FOUND: 404,
}

RETRYABLE_CODES = frozenset({ErrorCode.CONFLICT, ErrorCode.DEPENDENCY})


@dataclass(frozen=True)
class WorkflowError:
    code: ErrorCode
    detail: str

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


@dataclass(frozen=True)
class WorkflowResult:
    receipt: Optional[GoodsReceipt] = None
    error: Optional[WorkflowError] = None
    audit: Optional[AuditRecord] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, code: ErrorCode, detail: str) -> "WorkflowResult":
        return cls(error=WorkflowError(code=code, detail=detail))


class StockUpdateError(Exception):
    """A product's on-hand quantity could not be increased."""

    def __init__(self, product_id: str, reason: str = "product not found") -> None:
        self.product_id = product_id
        super().__init__(f"stock update failed for product {product_id}: {reason}")


class StaleVersionError(Exception):
    """The receipt row changed underneath us (version check failed on write)."""

    def __init__(self, receipt_id: str, expected_version: int) -> None:
        self.receipt_id = receipt_id
        self.expected_version = expected_version
        super().__init__(f"goods receipt {receipt_id} is no longer at version {expected_version}")
