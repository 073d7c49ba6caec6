"""Reconciliation driver: retry failed syncs, bulk backfill, and reset.

Entities are processed one at a time. Bulk sync waits a fixed delay
between entities to stay under Xero's per-minute API limit.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Callable, Awaitable
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.invoiceninja.client import InvoiceNinjaClient, InvoiceNinjaError
from app.schemas.invoiceninja import InvoiceStatus
from app.sync.config import update_last_reconciliation
from app.sync.ledger import SyncLedger
from app.sync.service import SyncService
from app.xero.auth import is_xero_configured
from app.xero.client import is_xero_connected


logger = logging.getLogger(__name__)

# Largest number of per-entity errors echoed back in a bulk summary
MAX_REPORTED_ERRORS = 20


@dataclass
class RetryStats:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class BulkStats:
    total: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def add_error(self, ninja_id: str, error: Optional[str]) -> None:
        self.failed += 1
        if len(self.errors) < MAX_REPORTED_ERRORS:
            self.errors.append({"ninja_id": ninja_id, "error": error or "Unknown error"})


class ReconciliationDriver:
    """Batch operations over the sync ledger."""

    def __init__(
        self,
        db: AsyncSession,
        service: SyncService,
        ninja_client: InvoiceNinjaClient,
        delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.db = db
        self.service = service
        self.ninja_client = ninja_client
        self.ledger = SyncLedger(db)
        self.delay_seconds = settings.SYNC_BULK_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self._sleep = sleep

    async def _precheck(self) -> Optional[Dict[str, Any]]:
        """Summary to return instead of running, or None to go ahead."""
        if not is_xero_configured():
            return {"skipped": True, "message": "Not configured, skipped"}
        if not await is_xero_connected(self.service.token_provider):
            return {"skipped": True, "message": "Not connected, skipped"}
        return None

    # =========================================================================
    # RECONCILE
    # =========================================================================

    async def reconcile(self, max_retries: int) -> Dict[str, Any]:
        """Re-attempt failed invoice and payment syncs under the retry ceiling.

        Each failed record is re-fetched from Invoice Ninja so the retry uses
        current data. A fetch failure counts as another failed attempt.
        """
        skipped = await self._precheck()
        if skipped:
            return skipped

        # Plain ids: a failed sync rolls back the session and expires loaded rows
        invoice_ids = [record.ninja_id for record in await self.ledger.get_failed_invoice_syncs(max_retries)]
        invoices = RetryStats()
        for ninja_id in invoice_ids:
            invoices.attempted += 1
            try:
                invoice = await self.ninja_client.get_invoice(ninja_id)
            except InvoiceNinjaError as e:
                logger.error(f"Could not fetch invoice {ninja_id} for retry: {e}")
                await self.ledger.upsert_record("invoice", ninja_id, "failed", error_message=str(e))
                invoices.failed += 1
                continue

            result = await self.service.sync_invoice(invoice)
            if result.success:
                invoices.succeeded += 1
            else:
                invoices.failed += 1

        payment_ids = [record.ninja_id for record in await self.ledger.get_failed_payment_syncs(max_retries)]
        payments = RetryStats()
        for ninja_id in payment_ids:
            payments.attempted += 1
            try:
                payment = await self.ninja_client.get_payment(ninja_id)
            except InvoiceNinjaError as e:
                logger.error(f"Could not fetch payment {ninja_id} for retry: {e}")
                await self.ledger.upsert_record("payment", ninja_id, "failed", error_message=str(e))
                payments.failed += 1
                continue

            result = await self.service.sync_payment(payment)
            if result.success:
                payments.succeeded += 1
            else:
                payments.failed += 1

        last_reconciliation_at = await update_last_reconciliation(self.db)
        logger.info(
            f"Reconciliation done: invoices {invoices.succeeded}/{invoices.attempted}, "
            f"payments {payments.succeeded}/{payments.attempted}"
        )

        return {
            "invoices": asdict(invoices),
            "payments": asdict(payments),
            "last_reconciliation_at": last_reconciliation_at,
        }

    # =========================================================================
    # BULK SYNC
    # =========================================================================

    async def bulk_sync(self, since_date: Optional[str] = None) -> Dict[str, Any]:
        """Sync every invoice, then every payment, dated on or after since_date.

        Drafts and entities already synced are counted as skipped without
        any Xero call.
        """
        skipped = await self._precheck()
        if skipped:
            return skipped

        invoice_stats = BulkStats()
        synced_invoices = await self.ledger.get_synced_ids("invoice")
        pending_invoices = []
        for invoice in await self.ninja_client.fetch_invoices(since=since_date):
            invoice_stats.total += 1
            if invoice.status_id == InvoiceStatus.DRAFT or invoice.id in synced_invoices:
                invoice_stats.skipped += 1
            else:
                pending_invoices.append(invoice)

        for index, invoice in enumerate(pending_invoices):
            if index:
                await self._sleep(self.delay_seconds)
            result = await self.service.sync_invoice(invoice)
            if result.success and result.xero_id:
                invoice_stats.synced += 1
            elif result.success:
                invoice_stats.skipped += 1
            else:
                invoice_stats.add_error(invoice.id, result.error)

        payment_stats = BulkStats()
        synced_payments = await self.ledger.get_synced_ids("payment")
        pending_payments = []
        for payment in await self.ninja_client.fetch_payments(since=since_date):
            payment_stats.total += 1
            if payment.id in synced_payments:
                payment_stats.skipped += 1
            else:
                pending_payments.append(payment)

        for index, payment in enumerate(pending_payments):
            if index or pending_invoices:
                await self._sleep(self.delay_seconds)
            result = await self.service.sync_payment(payment)
            if result.success and result.xero_id:
                payment_stats.synced += 1
            elif result.success:
                payment_stats.skipped += 1
            else:
                payment_stats.add_error(payment.id, result.error)

        logger.info(
            f"Bulk sync since {since_date or 'beginning'}: "
            f"invoices {invoice_stats.synced} synced / {invoice_stats.skipped} skipped / {invoice_stats.failed} failed, "
            f"payments {payment_stats.synced} synced / {payment_stats.skipped} skipped / {payment_stats.failed} failed"
        )

        return {
            "since_date": since_date,
            "invoices": asdict(invoice_stats),
            "payments": asdict(payment_stats),
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }

    # =========================================================================
    # RESET
    # =========================================================================

    async def reset_sync(self) -> Dict[str, Any]:
        """Void every synced invoice in Xero, then delete all sync records.

        Irreversible. Invoices that fail to void are reported but do not stop
        the reset.
        """
        skipped = await self._precheck()
        if skipped:
            return skipped

        voided = 0
        void_failed: List[Dict[str, str]] = []
        synced_ids = [record.ninja_id for record in await self.ledger.list_synced("invoice")]
        for ninja_id in synced_ids:
            result = await self.service.void_invoice(ninja_id)
            if result.success:
                voided += 1
            else:
                void_failed.append({"ninja_id": ninja_id, "error": result.error or "Unknown error"})

        records_cleared = await self.ledger.clear_all()
        logger.warning(
            f"Sync reset: voided {voided} invoices, {len(void_failed)} void failures, "
            f"cleared {records_cleared} sync records"
        )

        return {
            "voided": voided,
            "void_failed": void_failed,
            "records_cleared": records_cleared,
        }
