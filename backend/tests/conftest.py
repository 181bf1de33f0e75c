import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from backend.receiving.config import settings  # noqa: E402
from backend.tests.fakes import PRODUCT_1, PRODUCT_2, SUPPLIER_ID, FakeConn, FakeNotifier, FakeStore  # noqa: E402


@pytest.fixture(autouse=True)
def _workflow_settings(monkeypatch):
    monkeypatch.setattr(settings, "notify_inline", True)
    monkeypatch.setattr(settings, "supplier_confirmation_secret", "test-secret")
    monkeypatch.setattr(settings, "receipt_no_prefix", "GR")
    monkeypatch.setattr(settings, "lock_timeout_ms", 5000)


@pytest.fixture
def store():
    return FakeStore(suppliers={SUPPLIER_ID}, products={PRODUCT_1: "10", PRODUCT_2: "0"})


@pytest.fixture
def conn(store):
    return FakeConn(store)


@pytest.fixture
def notifier():
    return FakeNotifier()
