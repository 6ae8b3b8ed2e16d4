"""Configuration management for the SideShift swap payment service"""

import os
import logging
from decimal import Decimal
from typing import Dict, Any, List

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower().strip() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./swap_payments.db")

    # SideShift provider
    SIDESHIFT_BASE_URL = os.getenv("SIDESHIFT_BASE_URL", "https://sideshift.ai/api/v2")
    SIDESHIFT_SECRET = os.getenv("SIDESHIFT_SECRET", "")
    SIDESHIFT_AFFILIATE_ID = os.getenv("SIDESHIFT_AFFILIATE_ID", "")
    SIDESHIFT_TIMEOUT_SECONDS = float(os.getenv("SIDESHIFT_TIMEOUT_SECONDS", "30"))

    # On-demand status polls get a tighter bound than creation calls
    POLL_TIMEOUT_SECONDS = float(os.getenv("POLL_TIMEOUT_SECONDS", "15"))

    # Merchant settlement destination (immutable per order once created)
    SETTLEMENT_COIN = os.getenv("SETTLEMENT_COIN", "usdc")
    SETTLEMENT_NETWORK = os.getenv("SETTLEMENT_NETWORK", "arbitrum")
    SETTLEMENT_ADDRESS = os.getenv("SETTLEMENT_ADDRESS", "")

    # Coins surfaced on the checkout asset picker
    POPULAR_DEPOSIT_COINS: List[str] = [
        c.strip().lower()
        for c in os.getenv("POPULAR_DEPOSIT_COINS", "btc,eth,usdc,usdt,sol,bnb,matic,arb").split(",")
        if c.strip()
    ]

    # Shared secret for the external scheduler calling /api/cron/monitor
    CRON_SECRET = os.getenv("CRON_SECRET", "")

    # Expiry / stuck monitor thresholds
    MONITOR_INTERVAL_MINUTES = int(os.getenv("MONITOR_INTERVAL_MINUTES", "5"))
    EXPIRY_REMINDER_MINUTES = int(os.getenv("EXPIRY_REMINDER_MINUTES", "2"))
    ABANDONED_ORDER_HOURS = int(os.getenv("ABANDONED_ORDER_HOURS", "24"))
    STUCK_ORDER_MINUTES = int(os.getenv("STUCK_ORDER_MINUTES", "60"))

    # Reconciler conflict retries for the conditional per-order write
    RECONCILE_MAX_RETRIES = int(os.getenv("RECONCILE_MAX_RETRIES", "5"))

    # Underpaid / overpaid classification on deposit detection
    DEPOSIT_TOLERANCE_PERCENT = Decimal(os.getenv("DEPOSIT_TOLERANCE_PERCENT", "0.5"))

    # Webhook audit log retention (90 days)
    WEBHOOK_RETENTION_DAYS = int(os.getenv("WEBHOOK_RETENTION_DAYS", "90"))
    WEBHOOK_CLEANUP_HOUR_UTC = int(os.getenv("WEBHOOK_CLEANUP_HOUR_UTC", "3"))

    # In-process scheduler (the external cron trigger is the default driver)
    ENABLE_INTERNAL_SCHEDULER = _env_bool("ENABLE_INTERNAL_SCHEDULER")

    # Optional merchant fulfillment callback for completion / reminder hooks
    FULFILLMENT_WEBHOOK_URL = os.getenv("FULFILLMENT_WEBHOOK_URL", "")
    FULFILLMENT_TIMEOUT_SECONDS = float(os.getenv("FULFILLMENT_TIMEOUT_SECONDS", "10"))

    @classmethod
    def validate(cls) -> List[str]:
        """Return the names of missing critical settings"""
        missing = []
        if not cls.SIDESHIFT_SECRET:
            missing.append("SIDESHIFT_SECRET")
        if not cls.SETTLEMENT_ADDRESS:
            missing.append("SETTLEMENT_ADDRESS")
        if not cls.CRON_SECRET:
            missing.append("CRON_SECRET")
        return missing

    @classmethod
    def log_environment_config(cls) -> Dict[str, Any]:
        """Log the effective (non-secret) configuration at startup"""
        summary = {
            "environment": cls.ENVIRONMENT,
            "database": cls.DATABASE_URL.split("@")[-1],
            "sideshift_base_url": cls.SIDESHIFT_BASE_URL,
            "settlement": f"{cls.SETTLEMENT_COIN}/{cls.SETTLEMENT_NETWORK}",
            "monitor_interval_minutes": cls.MONITOR_INTERVAL_MINUTES,
            "webhook_retention_days": cls.WEBHOOK_RETENTION_DAYS,
            "internal_scheduler": cls.ENABLE_INTERNAL_SCHEDULER,
        }
        logger.info(f"🔧 CONFIG: {summary}")

        missing = cls.validate()
        if missing:
            if cls.IS_PRODUCTION:
                logger.error(f"❌ CONFIG: Missing critical settings in production: {missing}")
            else:
                logger.warning(f"⚠️ CONFIG: Missing settings (development): {missing}")
        return summary
