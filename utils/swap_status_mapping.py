"""
SideShift shift status mapping
==============================

The provider reports a closed set of shift statuses. Each one maps to exactly one
internal PaymentStatus; any string outside the set is ignored by the caller.
"""

import logging
from enum import Enum
from typing import Dict, Optional

from models import PaymentStatus

logger = logging.getLogger(__name__)


class SwapStatus(Enum):
    """Shift statuses reported by SideShift"""
    WAITING = "waiting"
    PENDING = "pending"
    PROCESSING = "processing"
    SETTLING = "settling"
    SETTLED = "settled"
    REFUND = "refund"
    REFUNDED = "refunded"
    EXPIRED = "expired"


SWAP_TO_PAYMENT_STATUS: Dict[SwapStatus, PaymentStatus] = {
    SwapStatus.WAITING: PaymentStatus.PENDING,
    SwapStatus.PENDING: PaymentStatus.DETECTING,
    SwapStatus.PROCESSING: PaymentStatus.PROCESSING,
    SwapStatus.SETTLING: PaymentStatus.SETTLING,
    SwapStatus.SETTLED: PaymentStatus.COMPLETED,
    SwapStatus.REFUND: PaymentStatus.FAILED,
    SwapStatus.REFUNDED: PaymentStatus.REFUNDED,
    SwapStatus.EXPIRED: PaymentStatus.EXPIRED,
}

# A new provider status added to SwapStatus without a mapping fails at import
_unmapped = set(SwapStatus) - set(SWAP_TO_PAYMENT_STATUS)
if _unmapped:
    raise RuntimeError(f"SwapStatus values without a payment mapping: {sorted(s.value for s in _unmapped)}")


def parse_swap_status(raw_status: Optional[str]) -> Optional[SwapStatus]:
    """Return the SwapStatus for a provider string, or None when unrecognised"""
    if not isinstance(raw_status, str):
        return None
    try:
        return SwapStatus(raw_status.strip().lower())
    except ValueError:
        return None


def map_swap_status(raw_status: Optional[str]) -> Optional[PaymentStatus]:
    """
    Map a provider status string to the internal status.

    Returns None for unknown statuses; callers treat that as "ignore".
    """
    swap_status = parse_swap_status(raw_status)
    if swap_status is None:
        logger.info(f"ℹ️ SWAP_STATUS_UNKNOWN: Ignoring unrecognised provider status {raw_status!r}")
        return None
    return SWAP_TO_PAYMENT_STATUS[swap_status]
