"""
Payment Notification Service
Completion and expiry-reminder hooks. Delivery to the merchant's fulfillment system
is an optional JSON callback; email and storefront delivery live outside this service.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from config import Config
from models import PaymentOrder

logger = logging.getLogger(__name__)


class PaymentNotificationService:
    """Sends order lifecycle notifications to the merchant fulfillment callback"""

    def __init__(
        self,
        callback_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.callback_url = callback_url if callback_url is not None else Config.FULFILLMENT_WEBHOOK_URL
        self.timeout_seconds = timeout_seconds or Config.FULFILLMENT_TIMEOUT_SECONDS

    async def notify_order_completed(self, order: PaymentOrder) -> bool:
        """Hook fired exactly once when an order reaches COMPLETED"""
        logger.info(
            f"📦 FULFILLMENT_READY: {order.order_id} ({order.order_number}) "
            f"settled {order.settle_amount} {order.settle_coin} tx={order.settle_tx_hash}"
        )
        return await self._deliver("payment.completed", order)

    async def send_expiry_reminder(self, order: PaymentOrder) -> bool:
        """Hook fired once per order shortly before its quote expires"""
        logger.info(
            f"⏳ EXPIRY_REMINDER: {order.order_id} quote expires at {order.quote_expires_at} "
            f"customer={order.customer_email or 'n/a'}"
        )
        return await self._deliver("payment.expiring", order)

    async def _deliver(self, event: str, order: PaymentOrder) -> bool:
        if not self.callback_url:
            logger.debug(f"No fulfillment callback configured - {event} for {order.order_id} logged only")
            return False

        payload: Dict[str, Any] = {"event": event, "order": order.to_dict()}
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.callback_url, json=payload) as response:
                    if response.status >= 400:
                        logger.error(
                            f"❌ FULFILLMENT_CALLBACK: {event} for {order.order_id} → HTTP {response.status}"
                        )
                        return False
            logger.info(f"✅ FULFILLMENT_CALLBACK: {event} delivered for {order.order_id}")
            return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"❌ FULFILLMENT_CALLBACK: {event} for {order.order_id} failed: {e}")
            return False
