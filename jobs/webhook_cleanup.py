"""
Webhook Audit Cleanup Job
Scheduled disposal of webhook audit records past their retention window
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from config import Config
from services.order_store import OrderStore
from utils.datetime_helpers import ensure_naive_datetime, get_naive_utc_now

logger = logging.getLogger(__name__)


async def cleanup_old_webhook_events(
    store: OrderStore,
    retention_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> int:
    """
    Remove webhook audit records older than the retention window.
    Runs daily, independent of ingestion, to keep the audit table bounded.
    """
    retention = retention_days if retention_days is not None else Config.WEBHOOK_RETENTION_DAYS
    cutoff = (ensure_naive_datetime(now) or get_naive_utc_now()) - timedelta(days=retention)

    try:
        logger.info(f"🧹 WEBHOOK_CLEANUP: Removing audit records received before {cutoff.isoformat()}")
        deleted_count = store.purge_webhook_events(cutoff)

        if deleted_count > 0:
            logger.info(f"✅ WEBHOOK_CLEANUP: Cleaned up {deleted_count} old webhook events")
        else:
            logger.info("✅ WEBHOOK_CLEANUP: No old events to clean up")
        return deleted_count

    except Exception as e:
        logger.error(f"❌ WEBHOOK_CLEANUP: Cleanup failed - {e}")
        return 0


def schedule_webhook_cleanup(scheduler, store: OrderStore) -> None:
    """Schedule the retention pass daily (default 3 AM UTC)"""
    try:
        scheduler.add_job(
            cleanup_old_webhook_events,
            trigger='cron',
            hour=Config.WEBHOOK_CLEANUP_HOUR_UTC,
            minute=0,
            kwargs={"store": store},
            id='webhook_audit_cleanup',
            name='🧹 Webhook Audit Cleanup - Remove Expired Records',
            replace_existing=True,
            max_instances=1
        )
        logger.info(f"✅ Scheduled webhook audit cleanup job (daily at {Config.WEBHOOK_CLEANUP_HOUR_UTC}:00 UTC)")
    except Exception as e:
        logger.error(f"❌ Failed to schedule webhook cleanup job: {e}")
