"""
Payment API routes: create, read, on-demand poll, supported assets
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from services.payment_service import CreatePaymentRequest
from utils.exception_handler import (
    NotFoundError, ProviderError, ProviderTimeoutError, StorageError,
    SwapNotCreatedError, ValidationError,
)
from utils.helpers import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter()


class CartItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(gt=0)
    price_usd: Decimal = Field(gt=0)


class CreatePaymentBody(BaseModel):
    items: List[CartItem] = Field(default_factory=list)
    total_usd: Decimal = Field(gt=0)
    customer_email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    customer_wallet: Optional[str] = None
    deposit_coin: str = Field(min_length=1)
    deposit_network: str = Field(min_length=1)


def _container(request: Request):
    return request.app.state.container


@router.post("/payments/create")
async def create_payment(body: CreatePaymentBody, request: Request) -> Dict[str, Any]:
    """Open a fixed-rate swap for the cart and return deposit instructions"""
    payment_service = _container(request).payment_service
    create_request = CreatePaymentRequest(
        total_usd=body.total_usd,
        customer_email=body.customer_email,
        deposit_coin=body.deposit_coin.lower(),
        deposit_network=body.deposit_network.lower(),
        items=[item.model_dump(mode="json") for item in body.items],
        customer_wallet=body.customer_wallet,
        ip_address=get_client_ip(request.headers, request.client.host if request.client else None),
        user_agent=request.headers.get("user-agent", "unknown"),
    )

    try:
        result = await payment_service.create_payment(create_request)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ProviderError as e:
        logger.error(f"❌ PAYMENT_CREATE: Provider error: {e}")
        raise HTTPException(status_code=502, detail=f"Payment provider error: {e.message}")
    except StorageError as e:
        logger.error(f"❌ PAYMENT_CREATE: Storage error: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"success": True, "data": result.to_dict()}


@router.get("/payments/{order_id}")
async def get_payment(order_id: str, request: Request) -> Dict[str, Any]:
    """Current order state including status history"""
    try:
        order = _container(request).payment_service.get_order(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except StorageError:
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"success": True, "data": order.to_dict()}


@router.post("/payments/{order_id}/poll")
async def poll_payment(order_id: str, request: Request) -> Dict[str, Any]:
    """Refresh an order from the provider on demand"""
    try:
        order = await _container(request).poll_worker.poll(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except SwapNotCreatedError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ProviderTimeoutError as e:
        raise HTTPException(status_code=504, detail=e.message)
    except ProviderError as e:
        raise HTTPException(status_code=502, detail=f"Payment provider error: {e.message}")
    except StorageError:
        raise HTTPException(status_code=500, detail="Internal server error")

    return {
        "success": True,
        "data": {
            "order_id": order.order_id,
            "status": order.status,
            "deposit_tx_hash": order.deposit_tx_hash,
            "settle_tx_hash": order.settle_tx_hash,
            "updated_at": order.updated_at.isoformat() + "Z" if order.updated_at else None,
        },
    }


@router.get("/crypto/supported")
async def supported_assets(request: Request) -> Dict[str, Any]:
    """Deposit assets offered at checkout"""
    try:
        assets = await _container(request).payment_service.list_supported_assets()
    except ProviderError as e:
        logger.error(f"❌ SUPPORTED_ASSETS: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch supported coins")
    return {"success": True, "data": assets}


@router.get("/crypto/networks")
async def asset_networks(request: Request, coin: Optional[str] = None) -> Dict[str, Any]:
    """Networks available for one deposit coin"""
    if not coin:
        raise HTTPException(status_code=400, detail="Coin parameter required")
    try:
        data = await _container(request).payment_service.get_asset_networks(coin)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ProviderError as e:
        logger.error(f"❌ ASSET_NETWORKS: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch networks")
    return {"success": True, "data": data}
