"""
SideShift Webhook Handler

Flow for every delivery:
1. Validate shape (swap id + status); malformed payloads are rejected with 400
2. Persist the audit record (durability first, keyed by event id)
3. Correlate to the order by swap id
4. Hand the status to the StatusReconciler
5. Record the outcome on the audit record and acknowledge

Errors after step 2 never change the acknowledgement class: the provider must not
retry-storm us for our own failures, and the stuck-order sweep converges via polling.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from services.order_store import OrderStore
from services.status_reconciler import StatusReconciler
from utils.exception_handler import StorageError, ValidationError
from utils.helpers import fingerprint_webhook_event, get_client_ip

logger = logging.getLogger(__name__)

# Create FastAPI router
router = APIRouter()

EVENT_ID_HEADERS = ("x-sideshift-event-id", "x-event-id")
RECORDED_HEADERS = ("user-agent", "content-type", "x-forwarded-for", "x-real-ip") + EVENT_ID_HEADERS


@dataclass
class WebhookAck:
    """Acknowledgement returned to the provider"""
    status_code: int
    success: bool
    message: str
    event_id: Optional[str] = None
    order_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.event_id:
            body["event_id"] = self.event_id
        if self.order_id:
            body["order_id"] = self.order_id
        body.update(self.extra)
        return body


class SideShiftWebhookIngestor:
    """Durable, redelivery-safe intake of SideShift shift notifications"""

    def __init__(self, store: OrderStore, reconciler: StatusReconciler):
        self.store = store
        self.reconciler = reconciler

    async def receive(
        self,
        payload: Any,
        headers: Mapping[str, Any],
        source_address: Optional[str] = None,
    ) -> WebhookAck:
        """
        Ingest one delivery.

        Raises:
            ValidationError: payload lacks a swap id or a status (nothing is recorded)
        """
        swap_id, status = self._validate(payload)
        normalized_headers = {str(k).lower(): str(v) for k, v in (headers or {}).items()}
        event_id = self._derive_event_id(payload, normalized_headers, swap_id, status)
        event_type = f"shift.{status}"

        # Step 1: durable audit record before anything else
        try:
            _, created = self.store.record_webhook_event(
                event_id=event_id,
                event_type=event_type,
                swap_id=swap_id,
                payload=payload,
                headers={k: v for k, v in normalized_headers.items() if k in RECORDED_HEADERS},
                source_ip=source_address,
            )
        except StorageError as e:
            logger.critical(
                f"🚨 WEBHOOK_AUDIT_FAILED: Could not record {event_type} for swap {swap_id}: {e} "
                f"payload={json.dumps(payload, default=str)}"
            )
            return WebhookAck(200, False, "Event accepted but could not be recorded", event_id=event_id)

        if created:
            logger.info(f"📥 SIDESHIFT_WEBHOOK: {event_type} swap={swap_id} event={event_id}")
        else:
            logger.info(f"🔁 SIDESHIFT_WEBHOOK_REDELIVERY: {event_type} swap={swap_id} event={event_id}")

        # Step 2: correlate
        try:
            order = self.store.get_by_swap_id(swap_id)
        except StorageError as e:
            self._complete(event_id, error=f"Order lookup failed: {e.message}")
            return WebhookAck(200, False, "Event recorded, processing failed", event_id=event_id)

        if order is None:
            logger.warning(f"⚠️ SIDESHIFT_WEBHOOK_NO_ORDER: No order for swap {swap_id}")
            self._complete(event_id, error="Order not found")
            return WebhookAck(404, False, "Order not found", event_id=event_id)

        # Step 3: reconcile; failures are recorded and still acknowledged
        try:
            updated = await self.reconciler.apply(
                swap_id,
                status,
                deposit_tx_hash=payload.get("depositHash") or None,
                settle_tx_hash=payload.get("settleHash") or None,
                deposit_amount=payload.get("depositAmount") or None,
                note=f"Webhook: {status}",
            )
        except Exception as e:
            logger.error(
                f"❌ SIDESHIFT_WEBHOOK_PROCESSING: {event_type} for order {order.order_id} failed: {e}",
                exc_info=True,
            )
            self._complete(event_id, order_id=order.order_id, error=str(e))
            return WebhookAck(200, False, "Event recorded, processing failed",
                              event_id=event_id, order_id=order.order_id)

        self._complete(event_id, order_id=order.order_id)
        return WebhookAck(200, True, "Webhook processed", event_id=event_id,
                          order_id=order.order_id, extra={"status": updated.status})

    @staticmethod
    def _validate(payload: Any):
        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object")
        swap_id = payload.get("id")
        status = payload.get("status")
        if not isinstance(swap_id, str) or not swap_id.strip():
            raise ValidationError("Missing shift id in webhook payload")
        if not isinstance(status, str) or not status.strip():
            raise ValidationError("Missing status in webhook payload")
        return swap_id.strip(), status.strip()

    @staticmethod
    def _derive_event_id(payload: Dict[str, Any], headers: Dict[str, str], swap_id: str, status: str) -> str:
        provided = payload.get("eventId")
        if isinstance(provided, str) and provided.strip():
            return provided.strip()
        for header in EVENT_ID_HEADERS:
            if headers.get(header):
                return headers[header].strip()
        return fingerprint_webhook_event(swap_id, status, payload.get("depositHash"), payload.get("settleHash"))

    def _complete(self, event_id: str, order_id: Optional[str] = None, error: Optional[str] = None) -> None:
        try:
            self.store.complete_webhook_event(event_id, order_id=order_id, error=error)
        except StorageError as e:
            logger.error(f"❌ WEBHOOK_AUDIT_UPDATE: Could not finalise event {event_id}: {e}")


@router.post("/webhooks/sideshift")
async def sideshift_webhook(request: Request):
    """SideShift shift-status notification endpoint"""
    ingestor: SideShiftWebhookIngestor = request.app.state.container.webhook_ingestor

    try:
        payload = await request.json()
    except ValueError as e:
        logger.warning(f"⚠️ SIDESHIFT_WEBHOOK_JSON: Invalid JSON body: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON format")

    source_ip = get_client_ip(request.headers, request.client.host if request.client else None)

    try:
        ack = await ingestor.receive(payload, dict(request.headers), source_ip)
    except ValidationError as e:
        logger.warning(f"⚠️ SIDESHIFT_WEBHOOK_REJECTED: {e.message} from {source_ip}")
        raise HTTPException(status_code=400, detail=e.message)

    return JSONResponse(status_code=ack.status_code, content=ack.to_body())


@router.get("/webhooks/sideshift")
async def sideshift_webhook_health():
    """Health probe for the webhook endpoint"""
    return {"status": "ok", "endpoint": "sideshift-webhook"}
