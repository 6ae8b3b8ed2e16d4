"""
Payment Service
Creates swap-backed payment orders (quote → fixed shift → pending order) and reads them back.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from config import Config
from models import PaymentOrder, PaymentStatus
from services.order_store import OrderStore
from services.sideshift_service import SideShiftService
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import NotFoundError, ValidationError
from utils.helpers import generate_order_id, generate_order_number

logger = logging.getLogger(__name__)

INITIAL_HISTORY_NOTE = "Payment created, waiting for deposit"


@dataclass
class CreatePaymentRequest:
    total_usd: Decimal
    customer_email: str
    deposit_coin: str
    deposit_network: str
    items: List[Dict[str, Any]] = field(default_factory=list)
    customer_wallet: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class CreatePaymentResult:
    order: PaymentOrder
    expires_in_minutes: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order.order_id,
            "order_number": self.order.order_number,
            "deposit_address": self.order.deposit_address,
            "deposit_amount": format(self.order.deposit_amount, "f") if self.order.deposit_amount is not None else None,
            "deposit_coin": self.order.deposit_coin,
            "deposit_network": self.order.deposit_network,
            "expires_at": self.order.quote_expires_at.isoformat() + "Z" if self.order.quote_expires_at else None,
            "expires_in_minutes": self.expires_in_minutes,
            "status": self.order.status,
        }


class PaymentService:
    """Order creation and lookup on top of the provider adapter and the order store"""

    def __init__(
        self,
        store: OrderStore,
        provider: SideShiftService,
        settle_coin: Optional[str] = None,
        settle_network: Optional[str] = None,
        settle_address: Optional[str] = None,
    ):
        self.store = store
        self.provider = provider
        self.settle_coin = settle_coin or Config.SETTLEMENT_COIN
        self.settle_network = settle_network or Config.SETTLEMENT_NETWORK
        self.settle_address = settle_address if settle_address is not None else Config.SETTLEMENT_ADDRESS

    async def create_payment(self, request: CreatePaymentRequest) -> CreatePaymentResult:
        """
        Quote the cart total in the settlement asset, open a fixed-rate shift and
        persist the pending order.

        Raises:
            ValidationError: bad amount or missing settlement address
            ProviderError: quote or shift creation failed (nothing is persisted)
            StorageError: the order could not be saved
        """
        if not self.settle_address:
            raise ValidationError("SETTLEMENT_ADDRESS not configured")
        total = Decimal(str(request.total_usd))
        if total <= 0:
            raise ValidationError("total_usd must be positive")

        order_id = generate_order_id()
        order_number = generate_order_number()
        logger.info(f"🛒 PAYMENT_CREATE: {order_id} requesting quote for ${total} in {request.deposit_coin}")

        quote = await self.provider.request_quote(
            deposit_coin=request.deposit_coin,
            deposit_network=request.deposit_network,
            settle_coin=self.settle_coin,
            settle_network=self.settle_network,
            settle_amount=total.quantize(Decimal("0.000001")),
        )
        swap = await self.provider.create_fixed_swap(
            quote_id=quote.id,
            settle_address=self.settle_address,
            refund_address=request.customer_wallet,
        )

        now = get_naive_utc_now()
        expires_at = swap.expires_at or quote.expires_at
        order = PaymentOrder(
            order_id=order_id,
            order_number=order_number,
            items=request.items,
            total_usd=total,
            customer_email=request.customer_email,
            customer_wallet=request.customer_wallet,
            quote_id=quote.id,
            swap_id=swap.id,
            deposit_coin=request.deposit_coin,
            deposit_network=request.deposit_network,
            deposit_address=swap.deposit_address,
            deposit_amount=swap.deposit_amount or quote.deposit_amount,
            settle_coin=self.settle_coin,
            settle_network=self.settle_network,
            settle_address=self.settle_address,
            settle_amount=swap.settle_amount or quote.settle_amount,
            exchange_rate=quote.rate,
            quoted_at=quote.created_at or now,
            quote_expires_at=expires_at,
            status=PaymentStatus.PENDING.value,
            version=1,
            expiry_reminder_sent=False,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            affiliate_id=self.provider.affiliate_id or None,
            created_at=now,
            updated_at=now,
        )
        self.store.create_order(order, note=INITIAL_HISTORY_NOTE)

        expires_in = int((expires_at - now).total_seconds() // 60) if expires_at else 0
        logger.info(
            f"✅ PAYMENT_CREATED: {order_id} swap={swap.id} deposit {order.deposit_amount} "
            f"{request.deposit_coin} to {swap.deposit_address} (expires in {expires_in} min)"
        )
        return CreatePaymentResult(order=order, expires_in_minutes=max(expires_in, 0))

    def get_order(self, order_id: str) -> PaymentOrder:
        order = self.store.get_by_order_id(order_id)
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}")
        return order

    async def list_supported_assets(self) -> List[Dict[str, Any]]:
        """Provider assets filtered to the popular deposit coins"""
        assets = await self.provider.list_supported_assets()
        popular = set(Config.POPULAR_DEPOSIT_COINS)
        return [asset.to_dict() for asset in assets if not popular or asset.coin.lower() in popular]

    async def get_asset_networks(self, coin: str) -> Dict[str, Any]:
        assets = await self.provider.list_supported_assets()
        for asset in assets:
            if asset.coin.lower() == coin.lower():
                return asset.to_dict()
        raise NotFoundError(f"Coin not found: {coin}")
