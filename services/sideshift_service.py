"""SideShift v2 API Service - quotes, fixed-rate shifts and shift status"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import aiohttp

from config import Config
from utils.datetime_helpers import parse_provider_timestamp
from utils.exception_handler import ProviderError, ProviderTimeoutError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class SupportedAsset:
    coin: str
    name: str
    networks: List[str] = field(default_factory=list)
    has_memo: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"coin": self.coin, "name": self.name, "networks": self.networks}


@dataclass
class Quote:
    id: str
    deposit_coin: str
    deposit_network: str
    settle_coin: str
    settle_network: str
    deposit_amount: Decimal
    settle_amount: Decimal
    rate: Decimal
    created_at: Optional[datetime]
    expires_at: Optional[datetime]


@dataclass
class Swap:
    id: str
    deposit_address: str
    deposit_coin: str
    deposit_network: str
    settle_address: str
    status: str
    deposit_amount: Optional[Decimal] = None
    settle_amount: Optional[Decimal] = None
    deposit_min: Optional[Decimal] = None
    deposit_max: Optional[Decimal] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class SwapStatusReport:
    id: str
    status: str
    deposit_hash: Optional[str] = None
    settle_hash: Optional[str] = None
    deposit_amount: Optional[Decimal] = None
    settle_amount: Optional[Decimal] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _as_dict(data: Any, context: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ProviderError(f"SideShift {context} response is not an object", status_code=200, body=data)
    return data


def _require(data: Dict[str, Any], key: str, context: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ProviderError(f"SideShift {context} response missing '{key}'", status_code=200, body=data)
    return value


def _decimal(value: Any, key: str = "amount", context: str = "") -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ProviderError(f"SideShift {context} returned non-numeric {key}: {value!r}", status_code=200)


class SideShiftService:
    """
    Async client for the SideShift v2 REST API.

    One instance (and one aiohttp session) is created at startup and shared; every
    request is bounded by the configured ClientTimeout.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        affiliate_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.secret = secret if secret is not None else Config.SIDESHIFT_SECRET
        self.affiliate_id = affiliate_id if affiliate_id is not None else Config.SIDESHIFT_AFFILIATE_ID
        self.base_url = (base_url or Config.SIDESHIFT_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or Config.SIDESHIFT_TIMEOUT_SECONDS
        self._session = session
        self._owns_session = session is None

        if not self.secret:
            logger.warning("SIDESHIFT_SECRET not configured - authenticated calls will be rejected")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "x-sideshift-secret": self.secret,
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers=self._get_headers(),
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        session = await self._get_session()
        try:
            async with session.request(method, url, json=json_body, headers=self._get_headers()) as response:
                if response.status >= 400:
                    body: Any = await response.text()
                    message = "SideShift API error"
                    code = None
                    try:
                        parsed = await response.json(content_type=None)
                        body = parsed
                        error = parsed.get("error") if isinstance(parsed, dict) else None
                        if isinstance(error, dict):
                            message = error.get("message") or message
                            code = error.get("code")
                    except ValueError:
                        pass
                    logger.error(f"❌ SIDESHIFT_API: {method} {path} → HTTP {response.status}: {message}")
                    raise ProviderError(message, status_code=response.status, code=code, body=body)

                try:
                    return await response.json(content_type=None)
                except ValueError:
                    raise ProviderError(
                        f"SideShift {method} {path} returned invalid JSON",
                        status_code=response.status,
                        body=await response.text(),
                    )

        except asyncio.TimeoutError:
            logger.warning(f"⏰ SIDESHIFT_TIMEOUT: {method} {path} exceeded {self.timeout_seconds}s")
            raise ProviderTimeoutError(
                f"SideShift {method} {path} timed out after {self.timeout_seconds}s",
                timeout_seconds=self.timeout_seconds,
            )
        except aiohttp.ClientError as e:
            logger.error(f"❌ SIDESHIFT_NETWORK: {method} {path}: {e}")
            raise ProviderError(f"No response from SideShift API: {e}", status_code=0)

    async def list_supported_assets(self) -> List[SupportedAsset]:
        """GET /coins"""
        data = await self._request("GET", "/coins")
        if not isinstance(data, list):
            raise ProviderError("SideShift coins response is not a list", status_code=200, body=data)
        return [
            SupportedAsset(
                coin=str(_require(item, "coin", "coins")),
                name=str(item.get("name") or item.get("coin")),
                networks=list(item.get("networks") or []),
                has_memo=bool(item.get("hasMemo", False)),
            )
            for item in data
            if isinstance(item, dict)
        ]

    async def request_quote(
        self,
        deposit_coin: str,
        deposit_network: str,
        settle_coin: str,
        settle_network: str,
        deposit_amount: Optional[Decimal] = None,
        settle_amount: Optional[Decimal] = None,
    ) -> Quote:
        """
        POST /quotes - fixed-rate quote.

        Exactly one of deposit_amount / settle_amount must be given.
        """
        if (deposit_amount is None) == (settle_amount is None):
            raise ValidationError("Specify exactly one of deposit_amount or settle_amount")

        body: Dict[str, Any] = {
            "depositCoin": deposit_coin,
            "depositNetwork": deposit_network,
            "settleCoin": settle_coin,
            "settleNetwork": settle_network,
            "affiliateId": self.affiliate_id,
        }
        if deposit_amount is not None:
            body["depositAmount"] = format(Decimal(str(deposit_amount)), "f")
        else:
            body["settleAmount"] = format(Decimal(str(settle_amount)), "f")

        data = _as_dict(await self._request("POST", "/quotes", body), "quote")
        quote = Quote(
            id=str(_require(data, "id", "quote")),
            deposit_coin=data.get("depositCoin", deposit_coin),
            deposit_network=data.get("depositNetwork", deposit_network),
            settle_coin=data.get("settleCoin", settle_coin),
            settle_network=data.get("settleNetwork", settle_network),
            deposit_amount=_decimal(_require(data, "depositAmount", "quote"), "depositAmount", "quote"),
            settle_amount=_decimal(_require(data, "settleAmount", "quote"), "settleAmount", "quote"),
            rate=_decimal(_require(data, "rate", "quote"), "rate", "quote"),
            created_at=parse_provider_timestamp(data.get("createdAt")),
            expires_at=parse_provider_timestamp(_require(data, "expiresAt", "quote")),
        )
        logger.info(
            f"💱 SIDESHIFT_QUOTE: {quote.id} {quote.deposit_amount} {deposit_coin} → "
            f"{quote.settle_amount} {settle_coin}"
        )
        return quote

    async def create_fixed_swap(
        self,
        quote_id: str,
        settle_address: str,
        refund_address: Optional[str] = None,
    ) -> Swap:
        """POST /shifts/fixed - creates the deposit address for a quote"""
        body: Dict[str, Any] = {
            "quoteId": quote_id,
            "settleAddress": settle_address,
            "affiliateId": self.affiliate_id,
        }
        if refund_address:
            body["refundAddress"] = refund_address

        data = _as_dict(await self._request("POST", "/shifts/fixed", body), "shift")
        swap = Swap(
            id=str(_require(data, "id", "shift")),
            deposit_address=str(_require(data, "depositAddress", "shift")),
            deposit_coin=data.get("depositCoin", ""),
            deposit_network=data.get("depositNetwork", ""),
            settle_address=data.get("settleAddress", settle_address),
            status=data.get("status", "waiting"),
            deposit_amount=_decimal(data.get("depositAmount"), "depositAmount", "shift"),
            settle_amount=_decimal(data.get("settleAmount"), "settleAmount", "shift"),
            deposit_min=_decimal(data.get("depositMin"), "depositMin", "shift"),
            deposit_max=_decimal(data.get("depositMax"), "depositMax", "shift"),
            expires_at=parse_provider_timestamp(data.get("expiresAt")),
            created_at=parse_provider_timestamp(data.get("createdAt")),
        )
        logger.info(f"🔁 SIDESHIFT_SHIFT: {swap.id} created for quote {quote_id}")
        return swap

    async def get_swap_status(self, swap_id: str) -> SwapStatusReport:
        """GET /shifts/{id}"""
        data = _as_dict(await self._request("GET", f"/shifts/{swap_id}"), "shift status")
        return SwapStatusReport(
            id=str(data.get("id") or swap_id),
            status=str(_require(data, "status", "shift status")),
            deposit_hash=data.get("depositHash") or None,
            settle_hash=data.get("settleHash") or None,
            deposit_amount=_decimal(data.get("depositAmount"), "depositAmount", "shift status"),
            settle_amount=_decimal(data.get("settleAmount"), "settleAmount", "shift status"),
            raw=data,
        )
