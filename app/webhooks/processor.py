"""Process logged Invoice Ninja webhook events into Xero syncs."""
from datetime import timedelta
from typing import Optional, Dict, Any, Callable
import logging

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.database import async_session_maker
from app.invoiceninja.client import InvoiceNinjaClient, InvoiceNinjaError
from app.models.base import utcnow
from app.models.xero import WebhookEvent
from app.schemas.invoiceninja import NinjaInvoice, NinjaPayment
from app.sync.service import SyncService
from app.xero.client import SyncResult


logger = logging.getLogger(__name__)

INVOICE_EVENTS = ("create_invoice", "update_invoice")
PAYMENT_EVENTS = ("create_payment", "update_payment")
SUPPORTED_EVENTS = INVOICE_EVENTS + ("delete_invoice",) + PAYMENT_EVENTS

# Statuses that still need processing
PENDING_STATUSES = ("received", "queued")

ServiceFactory = Callable[[AsyncSession], SyncService]


def default_service_factory(db: AsyncSession) -> SyncService:
    return SyncService(db, ninja_client=InvoiceNinjaClient())


def extract_entity(payload: Dict[str, Any]) -> Dict[str, Any]:
    """The entity body of a webhook payload.

    Invoice Ninja posts either {event, id, data: {...}} or the bare entity.
    """
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    if "id" in payload and "event" not in payload:
        return payload
    return {}


async def dispatch_event(
    service: SyncService,
    event_type: str,
    entity_id: Optional[str],
    payload: Dict[str, Any],
) -> SyncResult:
    """Run the sync matching one webhook event."""
    entity = extract_entity(payload)
    force_update = event_type.startswith("update_")

    if event_type in INVOICE_EVENTS:
        if entity.get("id"):
            invoice = NinjaInvoice.model_validate(entity)
        elif entity_id and service.ninja_client:
            invoice = await service.ninja_client.get_invoice(entity_id)
        else:
            return SyncResult(success=False, error="Webhook payload has no invoice")
        return await service.sync_invoice(invoice, force_update=force_update)

    if event_type == "delete_invoice":
        ninja_id = entity.get("id") or entity_id
        if not ninja_id:
            return SyncResult(success=False, error="Webhook payload has no invoice id")
        return await service.void_invoice(str(ninja_id), entity.get("number"))

    if event_type in PAYMENT_EVENTS:
        if entity.get("id"):
            payment = NinjaPayment.model_validate(entity)
        elif entity_id and service.ninja_client:
            payment = await service.ninja_client.get_payment(entity_id)
        else:
            return SyncResult(success=False, error="Webhook payload has no payment")
        return await service.sync_payment(payment, force_update=force_update)

    return SyncResult(success=False, error=f"Unsupported event {event_type}")


async def process_webhook_event(
    event_id: str,
    session_factory: Optional[async_sessionmaker] = None,
    service_factory: ServiceFactory = default_service_factory,
) -> Optional[str]:
    """Sync the entity behind one logged webhook event.

    Returns the final event status, or None if the event does not exist.
    Events already processed or ignored are left alone.
    """
    session_factory = session_factory or async_session_maker

    async with session_factory() as db:
        event = await db.get(WebhookEvent, event_id)
        if not event:
            logger.warning(f"Webhook event {event_id} not found")
            return None
        if event.status not in PENDING_STATUSES:
            return event.status

        event.attempts = (event.attempts or 0) + 1
        await db.commit()

        event_type = event.event_type
        try:
            result = await dispatch_event(
                service_factory(db),
                event_type,
                event.entity_id,
                event.payload or {},
            )
            status = "processed" if result.success else "error"
            error_message = None if result.success else result.error
        except (ValidationError, InvoiceNinjaError) as e:
            logger.error(f"Webhook event {event_id} ({event_type}) could not be processed: {e}")
            await db.rollback()
            status, error_message = "error", str(e)

        event = await db.get(WebhookEvent, event_id)
        event.status = status
        event.error_message = error_message
        event.processed_at = utcnow()
        await db.commit()

        logger.info(f"Webhook event {event_id} ({event_type}) -> {status}")
        return status


async def replay_stale_events(
    db: AsyncSession,
    older_than_minutes: Optional[int] = None,
    max_attempts: Optional[int] = None,
    session_factory: Optional[async_sessionmaker] = None,
    service_factory: ServiceFactory = default_service_factory,
) -> Dict[str, int]:
    """Process webhook events that never left the received/queued state.

    Covers events dropped by a full queue or lost in a restart.
    """
    older_than_minutes = (
        settings.WEBHOOK_REPLAY_AFTER_MINUTES if older_than_minutes is None else older_than_minutes
    )
    max_attempts = settings.CRON_MAX_RETRIES if max_attempts is None else max_attempts
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)

    result = await db.execute(
        select(WebhookEvent.id)
        .where(
            WebhookEvent.status.in_(PENDING_STATUSES),
            WebhookEvent.created_at < cutoff,
            WebhookEvent.attempts < max_attempts,
        )
        .order_by(WebhookEvent.created_at.asc())
        .limit(settings.SYNC_BATCH_LIMIT)
    )
    event_ids = list(result.scalars().all())

    counts = {"replayed": 0, "processed": 0, "errors": 0}
    for event_id in event_ids:
        counts["replayed"] += 1
        status = await process_webhook_event(
            event_id,
            session_factory=session_factory,
            service_factory=service_factory,
        )
        if status == "processed":
            counts["processed"] += 1
        else:
            counts["errors"] += 1

    if event_ids:
        logger.info(f"Replayed {counts['replayed']} stale webhook events ({counts['errors']} errors)")
    return counts
