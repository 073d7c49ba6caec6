"""
Tests for the client, invoice and payment sync orchestrators.

Xero is replaced by an AsyncMock; the sync ledger runs on in-memory SQLite.
"""

import pytest
from unittest.mock import patch

from app.invoiceninja.client import InvoiceNinjaError
from app.schemas.invoiceninja import NinjaInvoice, NinjaPayment
from app.sync.ledger import SyncLedger
from app.sync.service import SyncService
from app.xero.auth import StaticTokenProvider
from app.xero.client import SyncResult


@pytest.fixture
def service(db, token_provider, mock_xero, mock_ninja):
    return SyncService(db, token_provider=token_provider, xero_client=mock_xero, ninja_client=mock_ninja)


# =============================================================================
# Invoices
# =============================================================================

class TestSyncInvoice:

    @pytest.mark.asyncio
    async def test_draft_is_skipped_without_xero_calls(self, db, service, mock_xero, draft_invoice):
        result = await service.sync_invoice(draft_invoice)

        assert result.success is True
        assert result.error == "Skipped draft invoice"
        record = await SyncLedger(db).get_record("invoice", "inv_1")
        assert record.status == "skipped"
        assert mock_xero.mock_calls == []

    @pytest.mark.asyncio
    async def test_new_invoice_creates_contact_then_invoice(self, db, service, mock_xero, sent_invoice):
        result = await service.sync_invoice(sent_invoice)

        assert result.success and result.xero_id == "xero-inv-1"
        mock_xero.get_or_create_contact.assert_awaited_once()
        payload = mock_xero.create_invoice.await_args.args[0]
        assert payload["Contact"] == {"ContactID": "xero-contact-1"}
        assert payload["Reference"] == "INV-0002"
        assert payload["LineItems"][0]["AccountCode"] == "200"

        ledger = SyncLedger(db)
        client_record = await ledger.get_record("client", "c1")
        invoice_record = await ledger.get_record("invoice", "inv_2")
        assert (client_record.status, client_record.xero_id) == ("synced", "xero-contact-1")
        assert (invoice_record.status, invoice_record.xero_id) == ("synced", "xero-inv-1")

    @pytest.mark.asyncio
    async def test_second_sync_is_idempotent(self, service, mock_xero, sent_invoice):
        first = await service.sync_invoice(sent_invoice)
        second = await service.sync_invoice(sent_invoice)

        assert first.xero_id == second.xero_id == "xero-inv-1"
        assert mock_xero.create_invoice.await_count == 1
        assert mock_xero.get_or_create_contact.await_count == 1

    @pytest.mark.asyncio
    async def test_force_update_updates_existing_invoice(self, db, service, mock_xero, sent_invoice):
        await service.sync_invoice(sent_invoice)
        mock_xero.find_invoice_by_reference.return_value = {"InvoiceID": "xero-inv-1"}

        result = await service.sync_invoice(sent_invoice, force_update=True)

        mock_xero.find_invoice_by_reference.assert_awaited_with("INV-0002")
        mock_xero.update_invoice.assert_awaited_once()
        assert mock_xero.update_invoice.await_args.args[0] == "xero-inv-1"
        assert mock_xero.create_invoice.await_count == 1
        assert result.xero_id == "xero-inv-1"
        record = await SyncLedger(db).get_record("invoice", "inv_2")
        assert record.xero_id == "xero-inv-1"

    @pytest.mark.asyncio
    async def test_existing_xero_invoice_adopted_without_create(self, db, service, mock_xero, sent_invoice):
        mock_xero.find_invoice_by_reference.return_value = {"InvoiceID": "xero-found"}

        result = await service.sync_invoice(sent_invoice)

        assert result.xero_id == "xero-found"
        mock_xero.create_invoice.assert_not_called()
        assert await SyncLedger(db).get_mirror_id("invoice", "inv_2") == "xero-found"

    @pytest.mark.asyncio
    async def test_failed_update_keeps_xero_id(self, db, service, mock_xero, sent_invoice):
        await service.sync_invoice(sent_invoice)
        mock_xero.find_invoice_by_reference.return_value = {"InvoiceID": "xero-inv-1"}
        mock_xero.update_invoice.side_effect = None
        mock_xero.update_invoice.return_value = SyncResult(success=False, error="Invoice is locked")

        result = await service.sync_invoice(sent_invoice, force_update=True)

        assert not result.success
        record = await SyncLedger(db).get_record("invoice", "inv_2")
        assert (record.status, record.xero_id, record.error_message) == ("failed", "xero-inv-1", "Invoice is locked")
        assert record.retry_count == 1

    @pytest.mark.asyncio
    async def test_xero_rejection_recorded_verbatim(self, db, service, mock_xero, sent_invoice):
        mock_xero.create_invoice.return_value = SyncResult(
            success=False, error="Account code '999' is not a valid code"
        )

        result = await service.sync_invoice(sent_invoice)

        assert result == SyncResult(success=False, error="Account code '999' is not a valid code")
        record = await SyncLedger(db).get_record("invoice", "inv_2")
        assert record.status == "failed"
        assert record.error_message == "Account code '999' is not a valid code"

    @pytest.mark.asyncio
    async def test_invoice_without_client_fails(self, db, service, mock_xero):
        service.ninja_client = None
        invoice = NinjaInvoice(id="inv_5", number="INV-0005", status_id="2")

        result = await service.sync_invoice(invoice)

        assert result.error == "Invoice has no client"
        assert (await SyncLedger(db).get_record("invoice", "inv_5")).status == "failed"
        mock_xero.create_invoice.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_client_loaded_by_client_id(self, service, mock_ninja, ninja_client_entity):
        mock_ninja.get_client.return_value = ninja_client_entity
        invoice = NinjaInvoice(id="inv_6", number="INV-0006", status_id="2", client_id="c1")

        result = await service.sync_invoice(invoice)

        assert result.success
        mock_ninja.get_client.assert_awaited_once_with("c1")

    @pytest.mark.asyncio
    async def test_client_failure_names_dependency(self, db, service, mock_xero, sent_invoice):
        mock_xero.get_or_create_contact.return_value = SyncResult(success=False, error="Contact rejected")

        result = await service.sync_invoice(sent_invoice)

        assert result.error == "Failed to sync client c1 to Xero"
        assert (await SyncLedger(db).get_record("client", "c1")).error_message == "Contact rejected"
        mock_xero.create_invoice.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_connected_recorded_as_failed(self, db, sent_invoice):
        service = SyncService(db, token_provider=StaticTokenProvider(None))

        result = await service.sync_invoice(sent_invoice)

        assert result == SyncResult(success=False, error="Xero not connected")
        assert (await SyncLedger(db).get_record("invoice", "inv_2")).status == "failed"

    @pytest.mark.asyncio
    async def test_not_configured_is_a_noop(self, db, service, mock_xero, sent_invoice):
        with patch("app.sync.service.is_xero_configured", return_value=False):
            result = await service.sync_invoice(sent_invoice)

        assert result == SyncResult(success=True, message="skipped")
        assert await SyncLedger(db).get_record("invoice", "inv_2") is None
        assert mock_xero.mock_calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_never_raises(self, db, service, mock_xero, sent_invoice):
        mock_xero.create_invoice.side_effect = RuntimeError("socket closed")

        result = await service.sync_invoice(sent_invoice)

        assert result == SyncResult(success=False, error="socket closed")
        assert (await SyncLedger(db).get_record("invoice", "inv_2")).status == "failed"


class TestVoidInvoice:

    @pytest.mark.asyncio
    async def test_void_synced_invoice(self, service, mock_xero, sent_invoice):
        await service.sync_invoice(sent_invoice)

        result = await service.void_invoice("inv_2", "INV-0002")

        assert result.success
        mock_xero.void_invoice.assert_awaited_once_with("xero-inv-1")

    @pytest.mark.asyncio
    async def test_void_unsynced_invoice_is_noop(self, service, mock_xero):
        result = await service.void_invoice("inv_404")

        assert result == SyncResult(success=True, error="Invoice was not synced to Xero")
        mock_xero.void_invoice.assert_not_called()


# =============================================================================
# Payments
# =============================================================================

class TestSyncPayment:

    @pytest.mark.asyncio
    async def test_payment_without_allocations_skipped(self, db, service, mock_xero):
        payment = NinjaPayment(id="pay_9", number="0009", amount=10, date="2026-03-01")

        result = await service.sync_payment(payment)

        assert result == SyncResult(success=True, error="Payment has no linked invoices")
        assert (await SyncLedger(db).get_record("payment", "pay_9")).status == "skipped"
        assert mock_xero.mock_calls == []

    @pytest.mark.asyncio
    async def test_payment_applied_to_synced_invoice(self, db, service, mock_xero, sent_invoice, payment):
        await service.sync_invoice(sent_invoice)

        result = await service.sync_payment(payment)

        assert result.xero_id == "xero-pay-1"
        payload = mock_xero.create_payment.await_args.args[0]
        assert payload["Invoice"] == {"InvoiceID": "xero-inv-1"}
        assert payload["Account"] == {"Code": "090"}
        assert (await SyncLedger(db).get_record("payment", "pay_1")).status == "synced"

    @pytest.mark.asyncio
    async def test_payment_syncs_its_invoice_first(self, service, mock_xero, mock_ninja, sent_invoice, payment):
        mock_ninja.get_invoice.return_value = sent_invoice

        result = await service.sync_payment(payment)

        assert result.success
        mock_ninja.get_invoice.assert_awaited_once_with("inv_2")
        mock_xero.create_invoice.assert_awaited_once()
        mock_xero.create_payment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unresolved_invoice_recorded_as_failed(self, db, service, mock_xero, payment):
        service.ninja_client = None

        result = await service.sync_payment(payment)

        assert result.error == "Linked invoice inv_2 not synced to Xero"
        record = await SyncLedger(db).get_record("payment", "pay_1")
        assert (record.status, record.error_message) == ("failed", "Linked invoice inv_2 not synced to Xero")
        mock_xero.create_payment.assert_not_called()

    @pytest.mark.asyncio
    async def test_forced_update_of_synced_payment_is_noop(self, service, mock_xero, sent_invoice, payment):
        await service.sync_invoice(sent_invoice)
        await service.sync_payment(payment)

        result = await service.sync_payment(payment, force_update=True)

        assert result == SyncResult(
            success=True, xero_id="xero-pay-1", error="Xero does not support payment updates"
        )
        assert mock_xero.create_payment.await_count == 1

    @pytest.mark.asyncio
    async def test_split_payment_goes_to_first_invoice_only(self, db, service, mock_xero):
        """Known limitation: one Xero payment for the full amount on the first invoice."""
        ledger = SyncLedger(db)
        await ledger.upsert_record("invoice", "inv_a", "synced", "xero-inv-a")
        await ledger.upsert_record("invoice", "inv_b", "synced", "xero-inv-b")
        split = NinjaPayment(
            id="pay_split",
            number="0002",
            amount=300.0,
            date="2026-03-06",
            invoices=[{"invoice_id": "inv_a", "amount": 100.0}, {"invoice_id": "inv_b", "amount": 200.0}],
        )

        await service.sync_payment(split)

        mock_xero.create_payment.assert_awaited_once()
        payload = mock_xero.create_payment.await_args.args[0]
        assert payload["Invoice"] == {"InvoiceID": "xero-inv-a"}
        assert payload["Amount"] == 300.0

    @pytest.mark.asyncio
    async def test_invoice_fetch_error_recorded_on_payment(self, db, service, mock_xero, mock_ninja, payment):
        mock_ninja.get_invoice.side_effect = InvoiceNinjaError("Invoice Ninja API error: 404", status_code=404)

        result = await service.sync_payment(payment)

        assert not result.success
        record = await SyncLedger(db).get_record("payment", "pay_1")
        assert record.status == "failed"
        assert record.retry_count == 1
        mock_xero.create_payment.assert_not_called()
