"""
Swap Payment Service - Database Schema
======================================

Schema for merchant payments settled through SideShift swaps:
- Payment orders and their append-only status history
- Durable audit log of inbound provider webhooks

Datetimes are stored as naive UTC (see utils.datetime_helpers).
"""

from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, Text,
    ForeignKey, Index, JSON
)
from sqlalchemy.orm import DeclarativeBase, relationship

from utils.datetime_helpers import get_naive_utc_now


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class PaymentStatus(Enum):
    """Payment order lifecycle states"""
    PENDING = "pending"          # Waiting for the customer deposit
    DETECTING = "detecting"      # Deposit seen on chain, awaiting confirmations
    PROCESSING = "processing"    # Provider is executing the swap
    SETTLING = "settling"        # Settlement transaction broadcast
    COMPLETED = "completed"      # Merchant received the settlement asset
    EXPIRED = "expired"          # Quote expired or order abandoned without deposit
    FAILED = "failed"            # Provider is refunding the deposit
    REFUNDED = "refunded"        # Provider refunded the deposit
    UNDERPAID = "underpaid"      # Observed deposit below the quoted amount
    OVERPAID = "overpaid"        # Observed deposit above the quoted amount


TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.EXPIRED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
})


# ============================================================================
# CORE ENTITIES
# ============================================================================

class PaymentOrder(Base):
    """Merchant payment settled through a fixed-rate SideShift swap"""
    __tablename__ = "payment_orders"

    id = Column(Integer, primary_key=True)
    order_id = Column(String(32), unique=True, nullable=False, index=True)
    order_number = Column(String(40), unique=True, nullable=False)

    # Cart / customer
    items = Column(JSON, nullable=True)
    total_usd = Column(Numeric(18, 2), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_wallet = Column(String(200), nullable=True)  # Refund address

    # Swap linkage
    quote_id = Column(String(64), nullable=True)
    swap_id = Column(String(64), unique=True, nullable=True, index=True)

    # Deposit side
    deposit_coin = Column(String(20), nullable=False)
    deposit_network = Column(String(40), nullable=False)
    deposit_address = Column(String(200), nullable=True)
    deposit_amount = Column(Numeric(38, 18), nullable=True)
    deposit_received_amount = Column(Numeric(38, 18), nullable=True)
    deposit_tx_hash = Column(String(200), nullable=True)

    # Settlement side
    settle_coin = Column(String(20), nullable=False)
    settle_network = Column(String(40), nullable=False)
    settle_address = Column(String(200), nullable=False)
    settle_amount = Column(Numeric(38, 18), nullable=True)
    settle_tx_hash = Column(String(200), nullable=True)

    exchange_rate = Column(Numeric(38, 18), nullable=True)
    quoted_at = Column(DateTime, nullable=True)
    quote_expires_at = Column(DateTime, nullable=True)

    # Status and concurrency control
    status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False)
    version = Column(Integer, default=1, server_default="1", nullable=False)
    expiry_reminder_sent = Column(Boolean, default=False, nullable=False)

    # Request metadata
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    affiliate_id = Column(String(64), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=get_naive_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_naive_utc_now, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    status_history = relationship(
        "PaymentOrderStatusHistory",
        back_populates="order",
        order_by="PaymentOrderStatusHistory.id",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    # Indexes
    __table_args__ = (
        Index('ix_payment_orders_status_expiry', 'status', 'quote_expires_at'),
        Index('ix_payment_orders_status_created', 'status', 'created_at'),
        Index('ix_payment_orders_status_updated', 'status', 'updated_at'),
    )

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    def to_dict(self) -> dict:
        """Serialize for API responses"""
        def _dec(value: Optional[Decimal]) -> Optional[str]:
            return format(value, "f") if value is not None else None

        def _ts(value) -> Optional[str]:
            return value.isoformat() + "Z" if value is not None else None

        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "status": self.status,
            "items": self.items or [],
            "total_usd": _dec(self.total_usd),
            "customer_email": self.customer_email,
            "swap_id": self.swap_id,
            "deposit_coin": self.deposit_coin,
            "deposit_network": self.deposit_network,
            "deposit_address": self.deposit_address,
            "deposit_amount": _dec(self.deposit_amount),
            "deposit_received_amount": _dec(self.deposit_received_amount),
            "deposit_tx_hash": self.deposit_tx_hash,
            "settle_coin": self.settle_coin,
            "settle_network": self.settle_network,
            "settle_amount": _dec(self.settle_amount),
            "settle_tx_hash": self.settle_tx_hash,
            "exchange_rate": _dec(self.exchange_rate),
            "quote_expires_at": _ts(self.quote_expires_at),
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
            "completed_at": _ts(self.completed_at),
            "status_history": [entry.to_dict() for entry in self.status_history],
        }

    def __repr__(self):
        return f"<PaymentOrder(order_id={self.order_id}, swap_id={self.swap_id}, status={self.status})>"


class PaymentOrderStatusHistory(Base):
    """
    Append-only audit trail of accepted status transitions.
    Rows are ordered by primary key and never updated or deleted.
    """
    __tablename__ = "payment_order_status_history"

    id = Column(Integer, primary_key=True)
    order_pk = Column(Integer, ForeignKey("payment_orders.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    note = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=get_naive_utc_now, nullable=False)

    order = relationship("PaymentOrder", back_populates="status_history")

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat() + "Z" if self.timestamp else None,
            "note": self.note,
        }

    def __repr__(self):
        return f"<PaymentOrderStatusHistory(order_pk={self.order_pk}, status={self.status})>"


class WebhookEvent(Base):
    """
    Durable audit record of an inbound provider webhook.

    Written before any reconciliation is attempted; one row per distinct event id,
    redeliveries bump delivery_count.
    """
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(100), unique=True, nullable=False, index=True)
    provider = Column(String(20), default="sideshift", nullable=False)
    event_type = Column(String(50), nullable=False, index=True)  # shift.<status>

    swap_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(32), nullable=True, index=True)

    payload = Column(JSON, nullable=False)
    headers = Column(JSON, nullable=True)
    source_ip = Column(String(64), nullable=True)

    processed = Column(Boolean, default=False, nullable=False)
    processed_at = Column(DateTime, nullable=True)
    processing_error = Column(Text, nullable=True)
    delivery_count = Column(Integer, default=1, nullable=False)

    received_at = Column(DateTime, default=get_naive_utc_now, nullable=False)

    __table_args__ = (
        Index('ix_webhook_events_received_at', 'received_at'),
        Index('ix_webhook_events_processed', 'processed'),
    )

    def __repr__(self):
        return f"<WebhookEvent(event_id={self.event_id}, swap_id={self.swap_id}, processed={self.processed})>"
