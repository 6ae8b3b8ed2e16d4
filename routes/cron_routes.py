"""
Cron trigger for the payment monitor sweep.
Called every ~5 minutes by the external scheduler with a shared bearer secret.
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from config import Config
from utils.datetime_helpers import get_naive_utc_now

logger = logging.getLogger(__name__)

router = APIRouter()


def _authorized(authorization: Optional[str], secret: str) -> bool:
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {secret}")


@router.get("/cron/monitor")
async def run_monitor(request: Request, authorization: Optional[str] = Header(None)):
    """Run one expiry / stuck-order sweep"""
    secret = getattr(request.app.state, "cron_secret", None) or Config.CRON_SECRET
    if not _authorized(authorization, secret):
        logger.warning("🚨 CRON_UNAUTHORIZED: Rejected monitor trigger with invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")

    monitor = request.app.state.container.monitor
    try:
        summary = await monitor.run_sweep()
    except Exception as e:
        logger.error(f"❌ CRON_MONITOR: Sweep failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return {
        "success": True,
        "timestamp": get_naive_utc_now().isoformat() + "Z",
        "results": summary.to_dict(),
    }
