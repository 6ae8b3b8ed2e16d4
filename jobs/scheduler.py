"""Background job scheduler for the swap payment service"""

import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore

from config import Config
from jobs.payment_monitor import PaymentMonitor, run_payment_monitor
from jobs.webhook_cleanup import schedule_webhook_cleanup
from services.order_store import OrderStore

logger = logging.getLogger(__name__)


class PaymentScheduler:
    """
    In-process scheduler for deployments without an external cron trigger

    Jobs:
    - Payment Monitor: every MONITOR_INTERVAL_MINUTES (expiry, reminders, stuck orders)
    - Webhook Audit Cleanup: daily retention pass
    """

    def __init__(self, monitor: PaymentMonitor, store: OrderStore):
        self.monitor = monitor
        self.store = store

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Prevent job pileup
            'max_instances': 1,  # Single instance enforcement
            'misfire_grace_time': 120  # 2-minute grace for missed jobs
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    def setup_jobs(self):
        """Register the monitor sweep and the retention pass"""
        for job in self.scheduler.get_jobs():
            self.scheduler.remove_job(job.id)
            logger.info(f"🧹 Removed existing job: {job.id}")

        self.scheduler.add_job(
            run_payment_monitor,
            trigger=IntervalTrigger(
                minutes=Config.MONITOR_INTERVAL_MINUTES,
                start_date=datetime.now().replace(second=10, microsecond=0),
            ),
            kwargs={"monitor": self.monitor},
            id="payment_monitor",
            name="🔍 Payment Monitor - Expiry, Reminders & Stuck Orders",
            max_instances=1,
            replace_existing=True,
        )

        schedule_webhook_cleanup(self.scheduler, self.store)

    def start(self):
        """Start the scheduler"""
        self.setup_jobs()
        self.scheduler.start()
        job_names = [f"{job.name} ({job.id})" for job in self.scheduler.get_jobs()]
        logger.info(f"📋 Active jobs: {job_names}")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("📴 Payment job scheduler stopped")
