"""Invoice Ninja → Xero sync orchestrators.

Each entity type follows the same steps: read the sync ledger, resolve
dependencies (invoice needs its client's contact, payment needs its
invoice), call Xero, then write the outcome back to the ledger.

Orchestrators never raise. Every failure is stored on the sync record and
returned as SyncResult(success=False, error=...), so a batch caller can
carry on with the next entity.
"""
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.invoiceninja.client import InvoiceNinjaClient
from app.schemas.invoiceninja import InvoiceStatus, NinjaClient, NinjaInvoice, NinjaPayment
from app.sync.config import get_sync_config
from app.sync.ledger import SyncLedger
from app.xero.auth import TokenProvider, DatabaseTokenProvider, is_xero_configured
from app.xero.client import XeroClient, SyncResult
from app.xero.mappers import map_client_to_contact, map_invoice_to_xero, map_payment_to_xero


logger = logging.getLogger(__name__)

NOT_CONNECTED = "Xero not connected"


def skipped_result() -> SyncResult:
    """Result for every sync call while the Xero integration is not configured."""
    return SyncResult(success=True, message="skipped")


class SyncService:
    """Orchestrates client, invoice and payment sync into Xero."""

    def __init__(
        self,
        db: AsyncSession,
        token_provider: Optional[TokenProvider] = None,
        xero_client: Optional[XeroClient] = None,
        ninja_client: Optional[InvoiceNinjaClient] = None,
    ):
        self.db = db
        self.ledger = SyncLedger(db)
        self.token_provider = token_provider or DatabaseTokenProvider(db)
        self.ninja_client = ninja_client
        self._xero_client = xero_client

    async def _get_xero_client(self) -> Optional[XeroClient]:
        """Get a Xero client, creating it (and refreshing tokens) on first use."""
        if self._xero_client:
            return self._xero_client

        self._xero_client = await XeroClient.create(self.token_provider)
        return self._xero_client

    async def _record_failure(
        self,
        entity_type: str,
        ninja_id: str,
        error: str,
        xero_id: Optional[str] = None,
    ) -> SyncResult:
        """Store a failed attempt and turn it into a result."""
        await self.ledger.upsert_record(entity_type, ninja_id, "failed", xero_id, error)
        return SyncResult(success=False, xero_id=xero_id, error=error)

    async def _record_exception(self, entity_type: str, ninja_id: str, exc: Exception) -> SyncResult:
        logger.exception(f"Unexpected error syncing {entity_type} {ninja_id}")
        error = str(exc) or exc.__class__.__name__
        try:
            await self.db.rollback()
            await self.ledger.upsert_record(entity_type, ninja_id, "failed", error_message=error)
        except Exception:
            logger.exception(f"Could not record failure for {entity_type} {ninja_id}")
        return SyncResult(success=False, error=error)

    # =========================================================================
    # CLIENTS
    # =========================================================================

    async def sync_client(self, client: NinjaClient) -> SyncResult:
        """Mirror a client as a Xero contact, reusing a matching contact if one exists."""
        if not is_xero_configured():
            return skipped_result()

        try:
            cached = await self.ledger.get_mirror_id("client", client.id)
            if cached:
                return SyncResult(success=True, xero_id=cached)

            xero = await self._get_xero_client()
            if not xero:
                return await self._record_failure("client", client.id, NOT_CONNECTED)

            result = await xero.get_or_create_contact(map_client_to_contact(client))

            if result.success and result.xero_id:
                await self.ledger.upsert_record("client", client.id, "synced", result.xero_id)
                logger.info(f"Synced client {client.id} to Xero contact {result.xero_id}")
                return result

            logger.error(f"Failed to sync client {client.id}: {result.error}")
            return await self._record_failure("client", client.id, result.error or "Failed to sync client")

        except Exception as e:
            return await self._record_exception("client", client.id, e)

    async def get_xero_contact_id(self, client: NinjaClient) -> Optional[str]:
        cached = await self.ledger.get_mirror_id("client", client.id)
        if cached:
            return cached

        result = await self.sync_client(client)
        return result.xero_id if result.success else None

    # =========================================================================
    # INVOICES
    # =========================================================================

    async def _resolve_invoice_client(self, invoice: NinjaInvoice) -> Optional[NinjaClient]:
        """Embedded client, or load it from Invoice Ninja by client_id."""
        if invoice.client:
            return invoice.client
        if invoice.client_id and self.ninja_client:
            return await self.ninja_client.get_client(invoice.client_id)
        return None

    async def sync_invoice(self, invoice: NinjaInvoice, force_update: bool = False) -> SyncResult:
        """Mirror an invoice into Xero.

        Drafts are recorded as skipped. An already-synced invoice returns its
        cached Xero id unless force_update is set, in which case the existing
        Xero invoice is updated in place.
        """
        if not is_xero_configured():
            return skipped_result()

        try:
            if invoice.status_id == InvoiceStatus.DRAFT:
                await self.ledger.upsert_record(
                    "invoice", invoice.id, "skipped", error_message="Draft invoices are not synced"
                )
                return SyncResult(success=True, error="Skipped draft invoice")

            existing = await self.ledger.get_record("invoice", invoice.id)
            if existing and existing.status == "synced" and existing.xero_id and not force_update:
                return SyncResult(success=True, xero_id=existing.xero_id)

            xero = await self._get_xero_client()
            if not xero:
                return await self._record_failure("invoice", invoice.id, NOT_CONNECTED)

            client = await self._resolve_invoice_client(invoice)
            if not client:
                return await self._record_failure("invoice", invoice.id, "Invoice has no client")

            contact_id = await self.get_xero_contact_id(client)
            if not contact_id:
                return await self._record_failure(
                    "invoice", invoice.id, f"Failed to sync client {client.id} to Xero"
                )

            config = await get_sync_config(self.db)
            payload = map_invoice_to_xero(invoice, contact_id, config.default_account_code)

            found = await xero.find_invoice_by_reference(invoice.number) if invoice.number else None
            existing_xero_id = (found or {}).get("InvoiceID") or (existing.xero_id if existing else None)

            if existing_xero_id:
                if not force_update:
                    await self.ledger.upsert_record("invoice", invoice.id, "synced", existing_xero_id)
                    return SyncResult(success=True, xero_id=existing_xero_id)

                result = await xero.update_invoice(existing_xero_id, payload)
                if result.success:
                    await self.ledger.upsert_record("invoice", invoice.id, "synced", existing_xero_id)
                    logger.info(f"Updated invoice {invoice.number} in Xero {existing_xero_id}")
                    return SyncResult(success=True, xero_id=existing_xero_id)

                logger.error(f"Failed to update invoice {invoice.number}: {result.error}")
                return await self._record_failure(
                    "invoice", invoice.id, result.error or "Failed to update invoice", existing_xero_id
                )

            result = await xero.create_invoice(payload)
            if result.success and result.xero_id:
                await self.ledger.upsert_record("invoice", invoice.id, "synced", result.xero_id)
                logger.info(f"Synced invoice {invoice.number} to Xero {result.xero_id}")
                return result

            logger.error(f"Failed to sync invoice {invoice.number}: {result.error}")
            return await self._record_failure("invoice", invoice.id, result.error or "Failed to create invoice")

        except Exception as e:
            return await self._record_exception("invoice", invoice.id, e)

    async def get_xero_invoice_id(self, invoice: NinjaInvoice) -> Optional[str]:
        cached = await self.ledger.get_mirror_id("invoice", invoice.id)
        if cached:
            return cached

        result = await self.sync_invoice(invoice)
        return result.xero_id if result.success else None

    async def void_invoice(self, ninja_id: str, number: Optional[str] = None) -> SyncResult:
        """Void the Xero copy of a deleted Invoice Ninja invoice."""
        if not is_xero_configured():
            return skipped_result()

        label = number or ninja_id
        try:
            existing = await self.ledger.get_record("invoice", ninja_id)
            if not existing or not existing.xero_id:
                return SyncResult(success=True, error="Invoice was not synced to Xero")

            xero = await self._get_xero_client()
            if not xero:
                return SyncResult(success=False, error=NOT_CONNECTED)

            result = await xero.void_invoice(existing.xero_id)
            if result.success:
                await self.ledger.upsert_record("invoice", ninja_id, "synced", existing.xero_id)
                logger.info(f"Voided invoice {label} in Xero {existing.xero_id}")
                return result

            logger.error(f"Failed to void invoice {label}: {result.error}")
            return await self._record_failure(
                "invoice", ninja_id, result.error or "Failed to void invoice", existing.xero_id
            )

        except Exception as e:
            return await self._record_exception("invoice", ninja_id, e)

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    async def _resolve_payment_invoice(self, invoice_id: str) -> Optional[str]:
        """Xero id of the invoice a payment is applied to, syncing it if needed."""
        cached = await self.ledger.get_mirror_id("invoice", invoice_id)
        if cached or not self.ninja_client:
            return cached

        invoice = await self.ninja_client.get_invoice(invoice_id)
        return await self.get_xero_invoice_id(invoice)

    async def sync_payment(self, payment: NinjaPayment, force_update: bool = False) -> SyncResult:
        """Apply a payment to its invoice in Xero.

        Xero payments cannot be edited, so forcing an update of a synced
        payment logs a warning and returns the existing id. A payment split
        over several invoices is applied in full to the first one.
        """
        if not is_xero_configured():
            return skipped_result()

        try:
            existing = await self.ledger.get_record("payment", payment.id)
            if existing and existing.status == "synced" and existing.xero_id:
                if not force_update:
                    return SyncResult(success=True, xero_id=existing.xero_id)

                logger.warning(
                    f"Payment {payment.number} already synced to Xero {existing.xero_id}; "
                    f"Xero does not support payment updates"
                )
                return SyncResult(
                    success=True,
                    xero_id=existing.xero_id,
                    error="Xero does not support payment updates",
                )

            if not payment.invoices:
                await self.ledger.upsert_record(
                    "payment", payment.id, "skipped", error_message="Payment has no linked invoices"
                )
                return SyncResult(success=True, error="Payment has no linked invoices")

            xero = await self._get_xero_client()
            if not xero:
                return await self._record_failure("payment", payment.id, NOT_CONNECTED)

            if len(payment.invoices) > 1:
                logger.warning(
                    f"Payment {payment.number} is split over {len(payment.invoices)} invoices; "
                    f"applying it to {payment.invoices[0].invoice_id} only"
                )

            first_invoice_id = payment.invoices[0].invoice_id
            xero_invoice_id = await self._resolve_payment_invoice(first_invoice_id)
            if not xero_invoice_id:
                return await self._record_failure(
                    "payment", payment.id, f"Linked invoice {first_invoice_id} not synced to Xero"
                )

            config = await get_sync_config(self.db)
            result = await xero.create_payment(
                map_payment_to_xero(payment, xero_invoice_id, config.payment_account_code)
            )

            if result.success and result.xero_id:
                await self.ledger.upsert_record("payment", payment.id, "synced", result.xero_id)
                logger.info(f"Synced payment {payment.number} to Xero {result.xero_id}")
                return result

            logger.error(f"Failed to sync payment {payment.number}: {result.error}")
            return await self._record_failure("payment", payment.id, result.error or "Failed to create payment")

        except Exception as e:
            return await self._record_exception("payment", payment.id, e)
