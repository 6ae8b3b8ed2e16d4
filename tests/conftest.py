"""
Shared fixtures for the swap payment test suite.

Every test gets a fresh in-memory SQLite database, a real OrderStore and
StatusReconciler, and AsyncMock stand-ins for the provider and notification hooks.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from typing import Any, Dict

import pytest

from database import build_engine, build_session_factory
from models import Base, PaymentOrder, PaymentStatus
from services.order_store import OrderStore
from services.payment_tolerance_service import DepositToleranceService
from services.poll_worker import PollWorker
from services.sideshift_service import SwapStatusReport
from services.status_reconciler import StatusReconciler
from utils.datetime_helpers import get_naive_utc_now
from utils.helpers import generate_order_id, generate_order_number


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
def completion_hook():
    return AsyncMock(return_value=True)


@pytest.fixture
def reconciler(store, completion_hook):
    return StatusReconciler(
        store,
        on_completed=completion_hook,
        tolerance_service=DepositToleranceService(Decimal("0.5")),
    )


@pytest.fixture
def provider():
    """SideShift adapter double; tests set get_swap_status behaviour as needed"""
    fake = MagicMock()
    fake.affiliate_id = "test-affiliate"
    fake.get_swap_status = AsyncMock(return_value=SwapStatusReport(id="swap", status="waiting"))
    fake.request_quote = AsyncMock()
    fake.create_fixed_swap = AsyncMock()
    fake.list_supported_assets = AsyncMock(return_value=[])
    fake.close = AsyncMock()
    return fake


@pytest.fixture
def poll_worker(store, provider, reconciler):
    return PollWorker(store, provider, reconciler, timeout_seconds=1)


@pytest.fixture
def make_order(store):
    """Persist an order; keyword overrides map straight onto PaymentOrder columns"""
    counter = {"n": 0}

    def _make(**overrides: Any) -> PaymentOrder:
        counter["n"] += 1
        now = get_naive_utc_now()
        fields: Dict[str, Any] = {
            "order_id": generate_order_id(),
            "order_number": generate_order_number(),
            "items": [{"product_id": "sku-1", "name": "T-shirt", "quantity": 1, "price_usd": "25.00"}],
            "total_usd": Decimal("25.00"),
            "customer_email": "buyer@example.com",
            "quote_id": f"quote-{counter['n']}",
            "swap_id": f"swap-{counter['n']}",
            "deposit_coin": "eth",
            "deposit_network": "ethereum",
            "deposit_address": "0xdeposit",
            "deposit_amount": Decimal("0.01"),
            "settle_coin": "usdc",
            "settle_network": "arbitrum",
            "settle_address": "0xmerchant",
            "settle_amount": Decimal("25.00"),
            "status": PaymentStatus.PENDING.value,
            "version": 1,
            "expiry_reminder_sent": False,
            "created_at": now,
            "quote_expires_at": now + timedelta(minutes=15),
        }
        fields.update(overrides)
        order = PaymentOrder(**fields)
        return store.create_order(order, note="Payment created, waiting for deposit")

    return _make