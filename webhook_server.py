"""
Swap Payment Webhook Server

FastAPI application exposing the SideShift webhook, payment API and cron trigger.
Shared collaborators live in one PaymentContainer on app.state.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from config import Config
from handlers.sideshift_webhook import router as sideshift_webhook_router
from routes.cron_routes import router as cron_router
from routes.payment_routes import router as payment_router
from services.payment_container import PaymentContainer, build_container

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(container: Optional[PaymentContainer] = None, enable_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Build the application.

    A prebuilt container is used as-is (tests); otherwise tables are created and
    the container is wired from Config during startup.
    """
    use_scheduler = Config.ENABLE_INTERNAL_SCHEDULER if enable_scheduler is None else enable_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.container is None
        scheduler = None

        if owned:
            from database import create_tables, test_connection
            Config.log_environment_config()
            if not test_connection():
                logger.error("❌ Database unreachable at startup - requests will fail until it recovers")
            create_tables()
            app.state.container = build_container()

        if use_scheduler:
            from jobs.scheduler import PaymentScheduler
            scheduler = PaymentScheduler(app.state.container.monitor, app.state.container.store)
            scheduler.start()

        logger.info("✅ Swap payment server started")
        yield

        if scheduler is not None:
            scheduler.stop()
        if owned:
            await app.state.container.close()
        logger.info("🔄 Swap payment server shutting down")

    app = FastAPI(
        title="Swap Payment Service",
        description="SideShift-settled checkout payments with webhook and poll reconciliation",
        lifespan=lifespan,
    )
    app.state.container = container

    app.include_router(sideshift_webhook_router, prefix="/api")
    app.include_router(payment_router, prefix="/api")
    app.include_router(cron_router, prefix="/api")

    @app.get("/health")
    async def health_check():
        """Health check endpoint for deployment probes"""
        return {"status": "ok", "service": "swap-payments", "version": "1.0"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("webhook_server:app", host="0.0.0.0", port=8000)
