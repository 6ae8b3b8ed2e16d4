"""
Deposit Tolerance Service
Classifies an observed deposit against the quoted amount (exact, underpaid, overpaid)
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

from config import Config
from models import PaymentStatus

logger = logging.getLogger(__name__)

Amount = Union[Decimal, str, int, float]


class DepositVariance(Enum):
    """Deposit variance categories"""
    WITHIN_TOLERANCE = "within_tolerance"
    UNDERPAID = "underpaid"
    OVERPAID = "overpaid"


@dataclass
class ToleranceResult:
    """Result of tolerance calculation"""
    tolerance_percentage: Decimal
    tolerance_amount: Decimal
    min_acceptable: Decimal
    max_acceptable: Decimal


@dataclass
class DepositDecision:
    """Decision on how an observed deposit affects the order"""
    variance: DepositVariance
    tolerance_result: ToleranceResult
    expected_amount: Decimal
    received_amount: Decimal

    @property
    def difference(self) -> Decimal:
        return self.received_amount - self.expected_amount


def _to_decimal(value: Amount) -> Optional[Decimal]:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None


class DepositToleranceService:
    """
    Percentage-based tolerance around the quoted deposit amount.

    Fixed-rate swaps quote an exact deposit; small variances come from wallet fee
    rounding and are accepted. Anything outside the band is flagged so the merchant
    sees an underpaid/overpaid order instead of a silent completion.
    """

    def __init__(self, tolerance_percent: Optional[Decimal] = None):
        percent = tolerance_percent if tolerance_percent is not None else Config.DEPOSIT_TOLERANCE_PERCENT
        self.tolerance_percent = max(Decimal(str(percent)), Decimal("0"))

    def calculate_tolerance(self, expected_amount: Amount) -> ToleranceResult:
        expected = _to_decimal(expected_amount) or Decimal("0")
        tolerance_amount = expected * (self.tolerance_percent / Decimal("100"))
        return ToleranceResult(
            tolerance_percentage=self.tolerance_percent,
            tolerance_amount=tolerance_amount,
            min_acceptable=expected - tolerance_amount,
            max_acceptable=expected + tolerance_amount,
        )

    def analyze_deposit(self, expected_amount: Amount, received_amount: Amount) -> Optional[DepositDecision]:
        """
        Compare a received deposit with the quote.

        Returns None when either amount is unusable (missing, non-numeric or a
        non-positive quote), in which case no classification is made.
        """
        expected = _to_decimal(expected_amount)
        received = _to_decimal(received_amount)
        if expected is None or received is None or expected <= 0:
            return None

        tolerance = self.calculate_tolerance(expected)
        if received < tolerance.min_acceptable:
            variance = DepositVariance.UNDERPAID
        elif received > tolerance.max_acceptable:
            variance = DepositVariance.OVERPAID
        else:
            variance = DepositVariance.WITHIN_TOLERANCE

        if variance is not DepositVariance.WITHIN_TOLERANCE:
            logger.warning(
                f"⚠️ DEPOSIT_VARIANCE: expected={expected} received={received} "
                f"band=[{tolerance.min_acceptable}, {tolerance.max_acceptable}] → {variance.value}"
            )

        return DepositDecision(
            variance=variance,
            tolerance_result=tolerance,
            expected_amount=expected,
            received_amount=received,
        )

    def classify_status(
        self,
        proposed_status: PaymentStatus,
        expected_amount: Amount,
        received_amount: Amount,
    ) -> PaymentStatus:
        """Replace the proposed status with UNDERPAID/OVERPAID when the deposit is off-band"""
        decision = self.analyze_deposit(expected_amount, received_amount)
        if decision is None or decision.variance is DepositVariance.WITHIN_TOLERANCE:
            return proposed_status
        if decision.variance is DepositVariance.UNDERPAID:
            return PaymentStatus.UNDERPAID
        return PaymentStatus.OVERPAID
