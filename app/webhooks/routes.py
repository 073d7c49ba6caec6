"""Invoice Ninja webhook routes.

Endpoints:
- POST /webhooks/invoiceninja - Receive an Invoice Ninja event
- GET /webhooks/invoiceninja - Endpoint check
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import hmac
import logging

from app.config import settings
from app.database import get_db
from app.middleware.rate_limit import limiter
from app.models.xero import WebhookEvent
from app.sync.config import is_auto_sync_enabled
from app.webhooks.processor import SUPPORTED_EVENTS, process_webhook_event
from app.webhooks.queue import WebhookTaskQueue


router = APIRouter()
logger = logging.getLogger(__name__)

webhook_queue = WebhookTaskQueue(
    process_webhook_event,
    maxsize=settings.WEBHOOK_QUEUE_MAXSIZE,
)


def get_webhook_queue() -> WebhookTaskQueue:
    return webhook_queue


def verify_webhook_secret(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison of the shared webhook secret."""
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@router.post("/invoiceninja")
@limiter.exempt
async def receive_invoice_ninja_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    queue: WebhookTaskQueue = Depends(get_webhook_queue),
):
    """
    Receive an Invoice Ninja webhook.

    The event is logged and handed to the background queue; the Xero sync
    runs after the response is sent. Once authenticated, the response is
    always 200 so Invoice Ninja never retries; failures are recorded on the
    webhook log and the sync ledger instead.
    """
    expected = settings.INVOICE_NINJA_WEBHOOK_SECRET
    if not expected:
        logger.error("INVOICE_NINJA_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    provided = request.headers.get("X-Webhook-Secret")
    if not provided:
        logger.warning("Invoice Ninja webhook: missing X-Webhook-Secret header")
        raise HTTPException(status_code=401, detail="Missing webhook secret")

    if not verify_webhook_secret(provided, expected):
        logger.warning("Invoice Ninja webhook: invalid webhook secret")
        raise HTTPException(status_code=401, detail="Invalid webhook secret")

    try:
        payload = await request.json()
        if not isinstance(payload, dict):
            raise ValueError("Webhook body must be a JSON object")

        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        event_type = payload.get("event") or payload.get("event_type") or "unknown"
        entity_id = payload.get("id") or data.get("id")
        entity_id = str(entity_id) if entity_id else None

        logger.info(f"Invoice Ninja webhook received: {event_type} ({entity_id})")

        status, error_message = "queued", None
        if event_type not in SUPPORTED_EVENTS:
            status, error_message = "ignored", f"Unsupported event {event_type}"
        elif not await is_auto_sync_enabled(db):
            status, error_message = "ignored", "Auto-sync disabled"

        event = WebhookEvent(
            event_type=event_type,
            entity_id=entity_id,
            payload=payload,
            status=status,
            error_message=error_message,
        )
        db.add(event)
        await db.commit()

        # Committed as "queued" before the worker can see it
        queued = False
        if status == "queued":
            queued = queue.enqueue(event.id)
            if not queued:
                event.status = "received"
                await db.commit()

        return {
            "received": True,
            "event": event_type,
            "entity_id": entity_id,
            "status": event.status,
            "queued": queued,
        }

    except Exception as e:
        logger.exception("Invoice Ninja webhook processing error")
        await db.rollback()
        try:
            db.add(WebhookEvent(
                event_type="error",
                payload={"error": str(e)},
                status="error",
                error_message=str(e),
            ))
            await db.commit()
        except Exception:
            logger.exception("Failed to log webhook error")

        return {"received": True, "error": "Processing error logged"}


@router.get("/invoiceninja")
async def webhook_endpoint_status():
    """Confirm the webhook endpoint is live."""
    return {
        "status": "Invoice Ninja webhook endpoint active",
        "supported_events": list(SUPPORTED_EVENTS),
    }
