"""Helper utilities for the swap payment service"""

import hashlib
import secrets
import string
import time
import logging
from typing import Optional, Mapping, Any

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits + "_-"
_BASE36 = string.digits + string.ascii_uppercase


def _random_token(length: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_order_id() -> str:
    """Opaque 12-character order identifier used in URLs and webhooks"""
    return _random_token(12)


def generate_order_number(now_ms: Optional[int] = None) -> str:
    """
    Human-facing order number: ORD-<base36 millis>-<6 random chars>

    Example:
        >>> generate_order_number(now_ms=36 ** 3).split("-")[1]
        '1000'
    """
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"ORD-{_to_base36(millis)}-{_random_token(6)}"


def fingerprint_webhook_event(swap_id: str, status: str, deposit_hash: Optional[str],
                              settle_hash: Optional[str]) -> str:
    """Deterministic event id for deliveries that carry no provider event id"""
    material = "|".join([swap_id, status, deposit_hash or "", settle_hash or ""])
    return "local-" + hashlib.sha256(material.encode("utf-8")).hexdigest()[:40]


def get_client_ip(headers: Mapping[str, Any], fallback: Optional[str] = None) -> str:
    """Resolve the originating address behind a proxy"""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        return str(forwarded).split(",")[0].strip()
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return str(real_ip).strip()
    return fallback or "unknown"
