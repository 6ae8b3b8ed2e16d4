"""
Payment Container
Long-lived collaborators built once at startup and handed to every component explicitly.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from handlers.sideshift_webhook import SideShiftWebhookIngestor
from jobs.payment_monitor import PaymentMonitor
from services.notification_service import PaymentNotificationService
from services.order_store import OrderStore
from services.payment_service import PaymentService
from services.payment_tolerance_service import DepositToleranceService
from services.poll_worker import PollWorker
from services.sideshift_service import SideShiftService
from services.status_reconciler import StatusReconciler

logger = logging.getLogger(__name__)


@dataclass
class PaymentContainer:
    store: OrderStore
    provider: SideShiftService
    notifications: PaymentNotificationService
    reconciler: StatusReconciler
    poll_worker: PollWorker
    webhook_ingestor: SideShiftWebhookIngestor
    monitor: PaymentMonitor
    payment_service: PaymentService

    async def close(self) -> None:
        await self.provider.close()


def build_container(
    session_factory: Optional[sessionmaker] = None,
    provider: Optional[SideShiftService] = None,
    notifications: Optional[PaymentNotificationService] = None,
    tolerance_service: Optional[DepositToleranceService] = None,
) -> PaymentContainer:
    """Wire the service graph; any collaborator can be supplied (tests pass fakes)"""
    if session_factory is None:
        from database import SessionLocal
        session_factory = SessionLocal

    store = OrderStore(session_factory)
    provider = provider or SideShiftService()
    notifications = notifications or PaymentNotificationService()

    reconciler = StatusReconciler(
        store,
        on_completed=notifications.notify_order_completed,
        tolerance_service=tolerance_service,
    )
    poll_worker = PollWorker(store, provider, reconciler)
    monitor = PaymentMonitor(
        store,
        reconciler,
        poll_worker,
        on_expiry_reminder=notifications.send_expiry_reminder,
    )

    logger.info("🔧 PAYMENT_CONTAINER: Service graph initialised")
    return PaymentContainer(
        store=store,
        provider=provider,
        notifications=notifications,
        reconciler=reconciler,
        poll_worker=poll_worker,
        webhook_ingestor=SideShiftWebhookIngestor(store, reconciler),
        monitor=monitor,
        payment_service=PaymentService(store, provider),
    )
