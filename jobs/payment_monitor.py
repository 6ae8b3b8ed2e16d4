"""
Payment Monitor Job
Periodic sweep for orders no provider event will ever resolve:

1. Expired quotes without a deposit      → expired
2. Quotes about to expire                → one-shot reminder
3. Orders abandoned for 24h              → expired
4. Orders stuck in flight for over 1h    → on-demand provider poll
   (including underpaid/overpaid orders waiting on the provider)

Idempotent and safe to overlap with itself and with webhook ingestion; every
status change goes through the StatusReconciler.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from config import Config
from models import PaymentOrder, PaymentStatus
from services.order_store import OrderStore
from services.poll_worker import PollWorker
from services.status_reconciler import StatusReconciler
from utils.datetime_helpers import ensure_naive_datetime, get_naive_utc_now
from utils.exception_handler import StorageError

logger = logging.getLogger(__name__)

ReminderHook = Callable[[PaymentOrder], Awaitable[Any]]

EXPIRED_NOTE = "quote expired without deposit"
ABANDONED_NOTE = "abandoned: no deposit within 24 hours"
STUCK_STATUSES = (
    PaymentStatus.DETECTING,
    PaymentStatus.UNDERPAID,
    PaymentStatus.OVERPAID,
    PaymentStatus.PROCESSING,
    PaymentStatus.SETTLING,
)


@dataclass
class SweepSummary:
    """Candidate counts per sweep category"""
    expired_pending: int = 0
    expiring_soon: int = 0
    abandoned_orders: int = 0
    stuck_payments: int = 0
    stuck_poll_failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class PaymentMonitor:
    """Expiry / stuck-order sweep"""

    def __init__(
        self,
        store: OrderStore,
        reconciler: StatusReconciler,
        poll_worker: PollWorker,
        on_expiry_reminder: Optional[ReminderHook] = None,
        reminder_window: Optional[timedelta] = None,
        abandoned_after: Optional[timedelta] = None,
        stuck_after: Optional[timedelta] = None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.poll_worker = poll_worker
        self.on_expiry_reminder = on_expiry_reminder
        self.reminder_window = reminder_window or timedelta(minutes=Config.EXPIRY_REMINDER_MINUTES)
        self.abandoned_after = abandoned_after or timedelta(hours=Config.ABANDONED_ORDER_HOURS)
        self.stuck_after = stuck_after or timedelta(minutes=Config.STUCK_ORDER_MINUTES)

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        """
        Run one sweep.

        Per-order failures are logged and isolated; only a failure to enumerate
        candidates (StorageError) aborts the sweep.
        """
        now = ensure_naive_datetime(now) or get_naive_utc_now()
        summary = SweepSummary()
        logger.info(f"🔍 PAYMENT_MONITOR: Sweep started at {now.isoformat()}")

        # 1. Quote expired, nothing deposited
        expired = self.store.find_expired_pending(now)
        summary.expired_pending = len(expired)
        for order in expired:
            await self._expire(order, EXPIRED_NOTE)

        # 2. Quote expiring within the reminder window
        expiring = self.store.find_expiring_soon(now, now + self.reminder_window)
        summary.expiring_soon = len(expiring)
        for order in expiring:
            await self._remind(order)

        # 3. Abandoned checkout
        abandoned = self.store.find_abandoned(now - self.abandoned_after)
        summary.abandoned_orders = len(abandoned)
        for order in abandoned:
            await self._expire(order, ABANDONED_NOTE)

        # 4. In-flight orders with no recent update
        stuck = self.store.find_stuck(STUCK_STATUSES, now - self.stuck_after)
        summary.stuck_payments = len(stuck)
        for order in stuck:
            if not await self._poll(order):
                summary.stuck_poll_failures += 1

        logger.info(f"✅ PAYMENT_MONITOR: Sweep complete {summary.to_dict()}")
        return summary

    async def _expire(self, order: PaymentOrder, note: str) -> None:
        try:
            updated = await self.reconciler.apply(
                order.order_id,
                "expired",
                note=note,
                by_order_id=True,
                expected_status=PaymentStatus.PENDING,
                require_no_deposit=True,
            )
            if updated.status == PaymentStatus.EXPIRED.value:
                logger.info(f"⌛ PAYMENT_EXPIRED: {order.order_id} ({note})")
            else:
                logger.info(f"ℹ️ PAYMENT_MONITOR_SKIP: {order.order_id} moved to {updated.status} before expiry")
        except Exception as e:
            logger.error(f"❌ PAYMENT_MONITOR_EXPIRE: {order.order_id}: {e}", exc_info=True)

    async def _remind(self, order: PaymentOrder) -> None:
        try:
            if not self.store.mark_reminder_sent(order.order_id):
                return  # another sweep got there first
            if self.on_expiry_reminder is not None:
                await self.on_expiry_reminder(order)
            logger.info(f"⏳ EXPIRY_REMINDER_SENT: {order.order_id} expires {order.quote_expires_at}")
        except Exception as e:
            logger.error(f"❌ PAYMENT_MONITOR_REMINDER: {order.order_id}: {e}", exc_info=True)

    async def _poll(self, order: PaymentOrder) -> bool:
        if not order.swap_id:
            logger.warning(f"⚠️ PAYMENT_MONITOR_STUCK: {order.order_id} in {order.status} without swap id")
            return False
        try:
            await self.poll_worker.poll(order.order_id)
            return True
        except Exception as e:
            logger.error(f"❌ PAYMENT_MONITOR_POLL: {order.order_id} swap={order.swap_id}: {e}")
            return False


async def run_payment_monitor(monitor: PaymentMonitor) -> Optional[Dict[str, int]]:
    """Scheduler entry point; enumeration failures are logged so the next tick can retry"""
    try:
        summary = await monitor.run_sweep()
        return summary.to_dict()
    except StorageError as e:
        logger.error(f"❌ PAYMENT_MONITOR: Sweep aborted - {e}")
        return None
