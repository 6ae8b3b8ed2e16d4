"""
Status Reconciler
=================

The single writer of payment order status. Webhooks, on-demand polls and the
expiry sweep all funnel through StatusReconciler.apply, which:

1. Leaves terminal orders untouched (late and duplicate deliveries are no-ops)
2. Maps the provider status through the closed SideShift mapping (unknown → ignored)
3. Rejects backwards transitions with a WARNING
4. Writes status, history entry and transaction hashes in one version-conditional
   transaction, re-deciding from a fresh read when a concurrent writer wins
5. Fires the completion hook once, for the write that moved the order to COMPLETED
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from config import Config
from models import PaymentOrder, PaymentStatus
from services.order_store import OrderStore
from services.payment_tolerance_service import DepositToleranceService
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import NotFoundError, OptimisticLockingError, StorageError
from utils.payment_state_validator import PaymentStateValidator
from utils.swap_status_mapping import map_swap_status

logger = logging.getLogger(__name__)

CompletionHook = Callable[[PaymentOrder], Awaitable[None]]

# Statuses in which an observed deposit amount is still compared with the quote;
# once a variance is recorded the provider decides and later steps pass through
DEPOSIT_PHASE_STATUSES = {PaymentStatus.PENDING, PaymentStatus.DETECTING}
DEPOSIT_CHECK_TARGETS = {PaymentStatus.DETECTING, PaymentStatus.PROCESSING}


@dataclass
class _ApplyOutcome:
    order: PaymentOrder
    written: bool = False
    completed: bool = False


class StatusReconciler:
    """Applies external swap statuses to payment orders idempotently"""

    def __init__(
        self,
        store: OrderStore,
        on_completed: Optional[CompletionHook] = None,
        tolerance_service: Optional[DepositToleranceService] = None,
        max_retries: Optional[int] = None,
        clock: Callable[[], datetime] = get_naive_utc_now,
    ):
        self.store = store
        self.on_completed = on_completed
        self.tolerance_service = tolerance_service or DepositToleranceService()
        self.max_retries = max_retries if max_retries is not None else Config.RECONCILE_MAX_RETRIES
        self.clock = clock

    async def apply(
        self,
        reference: str,
        external_status: str,
        *,
        deposit_tx_hash: Optional[str] = None,
        settle_tx_hash: Optional[str] = None,
        deposit_amount: Optional[Union[Decimal, str]] = None,
        note: Optional[str] = None,
        by_order_id: bool = False,
        expected_status: Optional[PaymentStatus] = None,
        require_no_deposit: bool = False,
    ) -> PaymentOrder:
        """
        Apply a provider status to the order identified by swap id or order id.

        by_order_id restricts the lookup to order ids. expected_status and
        require_no_deposit make the write conditional on the order still being in
        that status with no deposit hash; they are rechecked on every retry, so a
        deposit landing after the caller selected the order turns the call into a
        no-op.

        Returns the order as it stands after the call (unchanged for no-ops).

        Raises:
            NotFoundError: no order matches the reference
            StorageError: persistence failed or conflicts persisted after max_retries
        """
        outcome: Optional[_ApplyOutcome] = None

        for attempt in range(self.max_retries + 1):
            if by_order_id:
                order = self.store.get_by_order_id(reference)
            else:
                order = self.store.find_order(reference)
            if order is None:
                logger.warning(f"⚠️ RECONCILE_NOT_FOUND: No order for reference {reference}")
                raise NotFoundError(f"Order not found: {reference}")

            try:
                outcome = self._apply_once(
                    order,
                    external_status,
                    deposit_tx_hash=deposit_tx_hash,
                    settle_tx_hash=settle_tx_hash,
                    deposit_amount=deposit_amount,
                    note=note,
                    expected_status=expected_status,
                    require_no_deposit=require_no_deposit,
                )
                break
            except OptimisticLockingError as e:
                if attempt < self.max_retries:
                    logger.info(
                        f"🔄 RECONCILE_RETRY: {order.order_id} attempt {attempt + 1}/{self.max_retries} - {e.message}"
                    )
                    continue
                logger.error(
                    f"❌ RECONCILE_CONFLICT: {order.order_id} still conflicting after {self.max_retries} retries"
                )
                raise StorageError(
                    f"Concurrent updates kept conflicting for order {order.order_id}"
                ) from e

        if outcome.written:
            refreshed = self.store.get_by_order_id(outcome.order.order_id)
            if refreshed is not None:
                outcome.order = refreshed

        if outcome.completed:
            await self._notify_completed(outcome.order)

        return outcome.order

    def _apply_once(
        self,
        order: PaymentOrder,
        external_status: str,
        *,
        deposit_tx_hash: Optional[str],
        settle_tx_hash: Optional[str],
        deposit_amount: Optional[Union[Decimal, str]],
        note: Optional[str],
        expected_status: Optional[PaymentStatus] = None,
        require_no_deposit: bool = False,
    ) -> _ApplyOutcome:
        current = order.payment_status

        if PaymentStateValidator.is_terminal_state(current):
            logger.info(
                f"ℹ️ RECONCILE_TERMINAL: {order.order_id} already {current.value}, ignoring {external_status!r}"
            )
            return _ApplyOutcome(order)

        if expected_status is not None and current != expected_status:
            logger.info(
                f"ℹ️ RECONCILE_PRECONDITION: {order.order_id} is {current.value}, not {expected_status.value}; "
                f"skipping {external_status!r}"
            )
            return _ApplyOutcome(order)

        if require_no_deposit and order.deposit_tx_hash:
            logger.info(
                f"ℹ️ RECONCILE_PRECONDITION: {order.order_id} deposit {order.deposit_tx_hash} already seen; "
                f"skipping {external_status!r}"
            )
            return _ApplyOutcome(order)

        target = map_swap_status(external_status)
        if target is None:
            logger.info(
                f"ℹ️ RECONCILE_IGNORED: {order.order_id} unknown provider status {external_status!r}"
            )
            return _ApplyOutcome(order)

        observed_amount = self._parse_amount(deposit_amount)
        if (
            observed_amount is not None
            and current in DEPOSIT_PHASE_STATUSES
            and target in DEPOSIT_CHECK_TARGETS
            and order.deposit_amount is not None
        ):
            target = self.tolerance_service.classify_status(target, order.deposit_amount, observed_amount)

        is_valid, reason = PaymentStateValidator.validate_transition(current, target, order.order_id)
        if not is_valid:
            logger.warning(
                f"⚠️ TRANSITION_REJECTED: {order.order_id} provider status {external_status!r} "
                f"not applied - {reason}"
            )
            return _ApplyOutcome(order)

        values = self._changed_metadata(order, deposit_tx_hash, settle_tx_hash, observed_amount)
        now = self.clock()

        if target == current:
            if not values:
                logger.debug(f"RECONCILE_NOOP: {order.order_id} already {current.value}")
                return _ApplyOutcome(order)
            self.store.commit_transition(order, values, now=now)
            logger.info(f"🔗 RECONCILE_METADATA: {order.order_id} updated {sorted(values)}")
            return _ApplyOutcome(order, written=True)

        values["status"] = target.value
        if target == PaymentStatus.COMPLETED:
            values["completed_at"] = now

        history_note = note or f"Status updated to {target.value} from provider status {external_status}"
        self.store.commit_transition(order, values, history_status=target, note=history_note, now=now)

        logger.info(f"✅ RECONCILE_APPLIED: {order.order_id} {current.value} → {target.value}")
        return _ApplyOutcome(order, written=True, completed=target == PaymentStatus.COMPLETED)

    @staticmethod
    def _parse_amount(value: Optional[Union[Decimal, str]]) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        try:
            return Decimal(str(value))
        except ArithmeticError:
            logger.warning(f"⚠️ RECONCILE_AMOUNT: Ignoring unparseable deposit amount {value!r}")
            return None

    @staticmethod
    def _changed_metadata(
        order: PaymentOrder,
        deposit_tx_hash: Optional[str],
        settle_tx_hash: Optional[str],
        observed_amount: Optional[Decimal],
    ) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        if deposit_tx_hash and deposit_tx_hash != order.deposit_tx_hash:
            values["deposit_tx_hash"] = deposit_tx_hash
        if settle_tx_hash and settle_tx_hash != order.settle_tx_hash:
            values["settle_tx_hash"] = settle_tx_hash
        if observed_amount is not None and observed_amount != order.deposit_received_amount:
            values["deposit_received_amount"] = observed_amount
        return values

    async def _notify_completed(self, order: PaymentOrder) -> None:
        logger.info(f"🎉 PAYMENT_COMPLETED: {order.order_id} ({order.order_number}) settled")
        if self.on_completed is None:
            return
        try:
            await self.on_completed(order)
        except Exception as e:
            # The completion is durable; fulfillment failures are reported, not rolled back
            logger.error(f"❌ COMPLETION_HOOK_FAILED: {order.order_id}: {e}", exc_info=True)
