"""
Poll Worker
Fetches the provider's current view of a swap on demand and feeds it to the reconciler.
"""

import asyncio
import logging
from typing import Optional

from config import Config
from models import PaymentOrder
from services.order_store import OrderStore
from services.sideshift_service import SideShiftService
from services.status_reconciler import StatusReconciler
from utils.exception_handler import NotFoundError, ProviderTimeoutError, SwapNotCreatedError

logger = logging.getLogger(__name__)


class PollWorker:
    """Time-bounded status poll for one order"""

    def __init__(
        self,
        store: OrderStore,
        provider: SideShiftService,
        reconciler: StatusReconciler,
        timeout_seconds: Optional[float] = None,
    ):
        self.store = store
        self.provider = provider
        self.reconciler = reconciler
        self.timeout_seconds = timeout_seconds or Config.POLL_TIMEOUT_SECONDS

    async def poll(self, order_id: str) -> PaymentOrder:
        """
        Refresh an order from the provider.

        Raises:
            NotFoundError: unknown order id
            SwapNotCreatedError: the order has no swap yet
            ProviderTimeoutError: the provider did not answer within the bound
            ProviderError: the provider answered with an error
        """
        order = self.store.get_by_order_id(order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}")
        if not order.swap_id:
            raise SwapNotCreatedError(f"Order {order_id} has no swap to poll yet")

        try:
            report = await asyncio.wait_for(
                self.provider.get_swap_status(order.swap_id),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"⏰ POLL_TIMEOUT: {order_id} swap={order.swap_id} no answer within {self.timeout_seconds}s"
            )
            raise ProviderTimeoutError(
                f"Status poll for order {order_id} timed out after {self.timeout_seconds}s",
                timeout_seconds=self.timeout_seconds,
            )

        logger.info(f"🔍 POLL_RESULT: {order_id} swap={order.swap_id} provider status={report.status}")
        return await self.reconciler.apply(
            order.swap_id,
            report.status,
            deposit_tx_hash=report.deposit_hash,
            settle_tx_hash=report.settle_hash,
            deposit_amount=report.deposit_amount,
            note=f"SideShift status: {report.status}",
        )
