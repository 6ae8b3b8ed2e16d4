"""
Payment State Transition Validator
==================================

Keeps the payment lifecycle monotonic. Provider events can arrive late or out of
order (a stale "waiting" after "settling"); a transition outside the table below
is reported and left unapplied.
"""

import logging
from typing import Dict, Set, Optional, Tuple

from models import PaymentStatus, TERMINAL_PAYMENT_STATUSES

logger = logging.getLogger(__name__)


class PaymentStateValidator:
    """
    Validates payment order state transitions.

    Prevents invalid transitions like:
    - COMPLETED -> PROCESSING (terminal resurrection)
    - SETTLING -> PENDING (stale delivery moving backwards)
    - PROCESSING -> EXPIRED (expiry after the deposit arrived)
    """

    _AFTER_DEPOSIT: Set[PaymentStatus] = {
        PaymentStatus.PROCESSING,
        PaymentStatus.SETTLING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.REFUNDED,
    }

    VALID_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
        # PENDING: Waiting for the deposit, anything may follow
        PaymentStatus.PENDING: {
            PaymentStatus.DETECTING,
            PaymentStatus.EXPIRED,
            PaymentStatus.UNDERPAID,
            PaymentStatus.OVERPAID,
        } | _AFTER_DEPOSIT,

        # DETECTING: Deposit seen, confirmations pending
        PaymentStatus.DETECTING: {
            PaymentStatus.EXPIRED,
            PaymentStatus.UNDERPAID,
            PaymentStatus.OVERPAID,
        } | _AFTER_DEPOSIT,

        # UNDERPAID / OVERPAID: Provider decides whether to swap or refund
        PaymentStatus.UNDERPAID: set(_AFTER_DEPOSIT),
        PaymentStatus.OVERPAID: set(_AFTER_DEPOSIT),

        PaymentStatus.PROCESSING: {
            PaymentStatus.SETTLING,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.REFUNDED,
        },

        PaymentStatus.SETTLING: {
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.REFUNDED,
        },

        # Terminal states
        PaymentStatus.COMPLETED: set(),
        PaymentStatus.EXPIRED: set(),
        PaymentStatus.FAILED: set(),
        PaymentStatus.REFUNDED: set(),
    }

    TERMINAL_STATES: Set[PaymentStatus] = set(TERMINAL_PAYMENT_STATUSES)

    @classmethod
    def validate_transition(
        cls,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        order_id: Optional[str] = None,
    ) -> Tuple[bool, str]:
        """
        Validate if a state transition is allowed.

        Returns:
            Tuple[bool, str]: (is_valid, reason)
        """
        order_ref = f"Order {order_id}" if order_id else "Order"

        if from_status == to_status:
            return True, "No status change required"

        valid_next_states = cls.VALID_TRANSITIONS.get(from_status, set())
        if to_status in valid_next_states:
            return True, "Valid state transition"

        reason = (
            f"Invalid transition: {from_status.value} -> {to_status.value}. "
            f"Valid transitions from {from_status.value}: "
            f"{sorted(s.value for s in valid_next_states)}"
        )
        logger.warning(f"⚠️ INVALID_TRANSITION: {order_ref} {from_status.value} -> {to_status.value}")
        return False, reason

    @classmethod
    def get_valid_next_states(cls, current_status: PaymentStatus) -> Set[PaymentStatus]:
        """Get all valid next states from the current status"""
        return cls.VALID_TRANSITIONS.get(current_status, set())

    @classmethod
    def is_terminal_state(cls, status: PaymentStatus) -> bool:
        return status in cls.TERMINAL_STATES
