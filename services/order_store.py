"""
Order Store
Durable persistence for payment orders, their status history and the webhook audit log.

All writes that change an order go through commit_transition, which performs a
version-conditional UPDATE (optimistic locking) and appends the history row in the
same transaction. A lost race surfaces as OptimisticLockingError so the caller can
re-read and re-decide.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models import PaymentOrder, PaymentOrderStatusHistory, PaymentStatus, WebhookEvent
from utils.datetime_helpers import get_naive_utc_now
from utils.exception_handler import OptimisticLockingError, StorageError

logger = logging.getLogger(__name__)


class OrderStore:
    """SQLAlchemy-backed store shared by the reconciler, ingestor, poller and monitor"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str):
        session: Session = self._session_factory()
        try:
            yield session
            session.commit()
        except OptimisticLockingError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"❌ ORDER_STORE: {operation} failed: {e}")
            raise StorageError(f"{operation} failed: {e}") from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(self, order: PaymentOrder, note: str) -> PaymentOrder:
        """Persist a new order with its initial history entry"""
        now = get_naive_utc_now()
        order.created_at = order.created_at or now
        order.updated_at = order.updated_at or order.created_at
        order.status = order.status or PaymentStatus.PENDING.value
        order.status_history = [
            PaymentOrderStatusHistory(status=order.status, note=note, timestamp=order.created_at)
        ]
        with self._session("create_order") as session:
            session.add(order)
        logger.info(f"💾 ORDER_CREATED: {order.order_id} ({order.order_number}) swap={order.swap_id}")
        return order

    def get_by_order_id(self, order_id: str) -> Optional[PaymentOrder]:
        with self._session("get_by_order_id") as session:
            return session.execute(
                select(PaymentOrder).where(PaymentOrder.order_id == order_id)
            ).scalar_one_or_none()

    def get_by_swap_id(self, swap_id: str) -> Optional[PaymentOrder]:
        with self._session("get_by_swap_id") as session:
            return session.execute(
                select(PaymentOrder).where(PaymentOrder.swap_id == swap_id)
            ).scalar_one_or_none()

    def find_order(self, reference: str) -> Optional[PaymentOrder]:
        """Resolve a reference that may be a swap id or an order id (swap id first)"""
        return self.get_by_swap_id(reference) or self.get_by_order_id(reference)

    def commit_transition(
        self,
        order: PaymentOrder,
        values: Dict[str, Any],
        history_status: Optional[PaymentStatus] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """
        Conditionally write `values` to the order read as `order`.

        Succeeds only if nobody else wrote since that read (version match); appends a
        history row for history_status in the same transaction.

        Raises:
            OptimisticLockingError: the stored version moved on
            StorageError: any database failure
        """
        now = now or get_naive_utc_now()
        expected_version = order.version
        update_values = {
            **values,
            "version": expected_version + 1,
            "updated_at": now,
        }

        with self._session("commit_transition") as session:
            result = session.execute(
                update(PaymentOrder)
                .where(
                    PaymentOrder.id == order.id,
                    PaymentOrder.version == expected_version,
                )
                .values(**update_values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.info(
                    f"🔒 ORDER_VERSION_CONFLICT: {order.order_id} expected_version={expected_version}"
                )
                raise OptimisticLockingError(order.order_id, expected_version)

            if history_status is not None:
                session.add(PaymentOrderStatusHistory(
                    order_pk=order.id,
                    status=history_status.value,
                    note=note,
                    timestamp=now,
                ))

        logger.debug(
            f"✅ ORDER_WRITE: {order.order_id} v{expected_version} → v{expected_version + 1}"
        )

    def mark_reminder_sent(self, order_id: str) -> bool:
        """Flip the one-shot reminder flag; True only for the caller that flipped it"""
        with self._session("mark_reminder_sent") as session:
            result = session.execute(
                update(PaymentOrder)
                .where(
                    PaymentOrder.order_id == order_id,
                    PaymentOrder.expiry_reminder_sent.is_(False),
                )
                .values(expiry_reminder_sent=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Sweep candidate queries
    # ------------------------------------------------------------------

    def _awaiting_deposit(self):
        return select(PaymentOrder).where(
            PaymentOrder.status == PaymentStatus.PENDING.value,
            PaymentOrder.deposit_tx_hash.is_(None),
        )

    def find_expired_pending(self, now: datetime) -> List[PaymentOrder]:
        with self._session("find_expired_pending") as session:
            stmt = self._awaiting_deposit().where(PaymentOrder.quote_expires_at < now)
            return list(session.execute(stmt).scalars())

    def find_expiring_soon(self, now: datetime, window_end: datetime) -> List[PaymentOrder]:
        with self._session("find_expiring_soon") as session:
            stmt = self._awaiting_deposit().where(
                PaymentOrder.quote_expires_at > now,
                PaymentOrder.quote_expires_at < window_end,
                PaymentOrder.expiry_reminder_sent.is_(False),
            )
            return list(session.execute(stmt).scalars())

    def find_abandoned(self, created_before: datetime) -> List[PaymentOrder]:
        with self._session("find_abandoned") as session:
            stmt = self._awaiting_deposit().where(PaymentOrder.created_at < created_before)
            return list(session.execute(stmt).scalars())

    def find_stuck(self, statuses: Iterable[PaymentStatus], updated_before: datetime) -> List[PaymentOrder]:
        with self._session("find_stuck") as session:
            stmt = select(PaymentOrder).where(
                PaymentOrder.status.in_([s.value for s in statuses]),
                PaymentOrder.updated_at < updated_before,
            )
            return list(session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Webhook audit log
    # ------------------------------------------------------------------

    def record_webhook_event(
        self,
        event_id: str,
        event_type: str,
        swap_id: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, Any]] = None,
        source_ip: Optional[str] = None,
    ) -> Tuple[WebhookEvent, bool]:
        """
        Insert the audit record for an inbound delivery.

        Returns (event, created). A known event id is not re-inserted; its
        delivery_count is incremented instead.
        """
        with self._session("record_webhook_event") as session:
            existing = session.execute(
                select(WebhookEvent).where(WebhookEvent.event_id == event_id)
            ).scalar_one_or_none()
            if existing is not None:
                existing.delivery_count = (existing.delivery_count or 1) + 1
                return existing, False

            event = WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                swap_id=swap_id,
                payload=payload,
                headers=headers or {},
                source_ip=source_ip,
                received_at=get_naive_utc_now(),
            )
            session.add(event)
            try:
                session.flush()
            except IntegrityError:
                # A concurrent delivery of the same event won the insert
                session.rollback()
                existing = session.execute(
                    select(WebhookEvent).where(WebhookEvent.event_id == event_id)
                ).scalar_one()
                existing.delivery_count = (existing.delivery_count or 1) + 1
                return existing, False
            return event, True

    def complete_webhook_event(
        self,
        event_id: str,
        order_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Mark an audit record processed, linking the order and recording any error"""
        values: Dict[str, Any] = {
            "processed": True,
            "processed_at": get_naive_utc_now(),
            "processing_error": error,
        }
        if order_id is not None:
            values["order_id"] = order_id
        with self._session("complete_webhook_event") as session:
            session.execute(
                update(WebhookEvent)
                .where(WebhookEvent.event_id == event_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

    def get_webhook_event(self, event_id: str) -> Optional[WebhookEvent]:
        with self._session("get_webhook_event") as session:
            return session.execute(
                select(WebhookEvent).where(WebhookEvent.event_id == event_id)
            ).scalar_one_or_none()

    def count_webhook_events(self, swap_id: Optional[str] = None) -> int:
        with self._session("count_webhook_events") as session:
            stmt = select(func.count()).select_from(WebhookEvent)
            if swap_id is not None:
                stmt = stmt.where(WebhookEvent.swap_id == swap_id)
            return session.execute(stmt).scalar_one()

    def purge_webhook_events(self, received_before: datetime) -> int:
        """Delete audit records received before the cutoff; returns the number removed"""
        with self._session("purge_webhook_events") as session:
            result = session.execute(
                delete(WebhookEvent)
                .where(WebhookEvent.received_at < received_before)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0
