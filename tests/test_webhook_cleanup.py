"""
Webhook audit retention and scheduler registration tests
"""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import update

from jobs.scheduler import PaymentScheduler
from jobs.webhook_cleanup import cleanup_old_webhook_events, schedule_webhook_cleanup
from models import WebhookEvent
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import StorageError


def _record(store, event_id, swap_id="swap-1"):
    store.record_webhook_event(
        event_id=event_id,
        event_type="shift.settled",
        swap_id=swap_id,
        payload={"id": swap_id, "status": "settled"},
    )


def _age(session_factory, event_id, days):
    with session_factory() as session:
        session.execute(
            update(WebhookEvent)
            .where(WebhookEvent.event_id == event_id)
            .values(received_at=get_naive_utc_now() - timedelta(days=days))
        )
        session.commit()


class TestWebhookRetention:

    @pytest.mark.asyncio
    async def test_only_records_past_retention_are_removed(self, store, session_factory):
        _record(store, "evt-old")
        _record(store, "evt-recent")
        _age(session_factory, "evt-old", 91)
        _age(session_factory, "evt-recent", 89)

        deleted = await cleanup_old_webhook_events(store, retention_days=90)

        assert deleted == 1
        assert store.get_webhook_event("evt-old") is None
        assert store.get_webhook_event("evt-recent") is not None

    @pytest.mark.asyncio
    async def test_retention_does_not_touch_orders(self, store, session_factory, make_order):
        order = make_order()
        _record(store, "evt-old", swap_id=order.swap_id)
        _age(session_factory, "evt-old", 120)

        await cleanup_old_webhook_events(store, retention_days=90)

        assert store.count_webhook_events() == 0
        assert store.get_by_order_id(order.order_id) is not None

    @pytest.mark.asyncio
    async def test_storage_failure_is_logged_not_raised(self):
        broken_store = MagicMock()
        broken_store.purge_webhook_events.side_effect = StorageError("database unavailable")

        assert await cleanup_old_webhook_events(broken_store, retention_days=90) == 0


class TestSchedulerJobs:

    def test_cleanup_job_registered_daily(self):
        scheduler = MagicMock()
        store = MagicMock()

        schedule_webhook_cleanup(scheduler, store)

        kwargs = scheduler.add_job.call_args.kwargs
        assert scheduler.add_job.call_args.args[0] is cleanup_old_webhook_events
        assert kwargs["trigger"] == "cron"
        assert kwargs["hour"] == 3
        assert kwargs["kwargs"] == {"store": store}

    def test_payment_scheduler_registers_monitor_and_cleanup(self):
        payment_scheduler = PaymentScheduler(monitor=MagicMock(), store=MagicMock())

        payment_scheduler.setup_jobs()

        job_ids = {job.id for job in payment_scheduler.scheduler.get_jobs()}
        assert job_ids == {"payment_monitor", "webhook_audit_cleanup"}
