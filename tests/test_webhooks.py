"""
Tests for the Invoice Ninja webhook receiver, background queue and processor.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import select

from app.config import settings
from app.models.xero import WebhookEvent
from app.sync.config import update_sync_config
from app.sync.ledger import SyncLedger
from app.sync.service import SyncService
from app.webhooks.processor import extract_entity, process_webhook_event, replay_stale_events
from app.webhooks.queue import WebhookTaskQueue
from app.webhooks.routes import verify_webhook_secret
from app.xero.client import SyncResult


WEBHOOK_URL = "/api/webhooks/invoiceninja"
SECRET_HEADER = {"X-Webhook-Secret": "webhook-secret"}


@pytest.fixture
def service_factory(token_provider, mock_xero, mock_ninja):
    def factory(db):
        return SyncService(db, token_provider=token_provider, xero_client=mock_xero, ninja_client=mock_ninja)
    return factory


async def _log_event(db, event_type, payload, status="queued", created_at=None, attempts=0):
    event = WebhookEvent(
        event_type=event_type,
        entity_id=str(payload.get("id") or ""),
        payload=payload,
        status=status,
        attempts=attempts,
    )
    if created_at:
        event.created_at = created_at
    db.add(event)
    await db.commit()
    return event.id


async def _load_event(session_maker, event_id):
    async with session_maker() as session:
        return await session.get(WebhookEvent, event_id)


# =============================================================================
# Queue
# =============================================================================

class TestWebhookTaskQueue:

    @pytest.mark.asyncio
    async def test_worker_runs_handler_for_each_event(self):
        handled = []

        async def handler(event_id):
            handled.append(event_id)

        queue = WebhookTaskQueue(handler, maxsize=10)
        await queue.start()
        try:
            assert queue.enqueue("whk_1")
            assert queue.enqueue("whk_2")
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert handled == ["whk_1", "whk_2"]
        assert not queue.running

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_worker(self):
        handled = []

        async def handler(event_id):
            if event_id == "bad":
                raise RuntimeError("boom")
            handled.append(event_id)

        queue = WebhookTaskQueue(handler)
        await queue.start()
        try:
            queue.enqueue("bad")
            queue.enqueue("good")
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert handled == ["good"]

    @pytest.mark.asyncio
    async def test_enqueue_refused_when_full(self):
        async def handler(event_id):
            pass

        queue = WebhookTaskQueue(handler, maxsize=1)
        await queue.start()
        try:
            assert queue.enqueue("whk_1") is True
            assert queue.enqueue("whk_2") is False
        finally:
            await queue.stop()

    @pytest.mark.asyncio
    async def test_restart_drains_new_queue(self):
        handled = []

        async def handler(event_id):
            handled.append(event_id)

        queue = WebhookTaskQueue(handler)
        await queue.start()
        await queue.stop()
        await queue.start()
        try:
            assert queue.enqueue("whk_after_restart")
            await asyncio.wait_for(queue.join(), timeout=5)
        finally:
            await queue.stop()

        assert handled == ["whk_after_restart"]

    def test_enqueue_refused_when_not_running(self):
        queue = WebhookTaskQueue(MagicMock())
        assert queue.enqueue("whk_1") is False
        assert queue.qsize() == 0


# =============================================================================
# Processor
# =============================================================================

class TestProcessWebhookEvent:

    def test_extract_entity_accepts_wrapped_and_bare_payloads(self):
        assert extract_entity({"event": "create_invoice", "data": {"id": "inv_1"}}) == {"id": "inv_1"}
        assert extract_entity({"id": "inv_1", "number": "INV-0001"}) == {"id": "inv_1", "number": "INV-0001"}
        assert extract_entity({"event": "ping"}) == {}
        assert extract_entity({"event": "create_payment", "id": "pay_1"}) == {}

    @pytest.mark.asyncio
    async def test_create_invoice_event_syncs_invoice(
        self, db, session_maker, service_factory, mock_xero, sent_invoice
    ):
        event_id = await _log_event(db, "create_invoice", {"data": sent_invoice.model_dump()})

        status = await process_webhook_event(event_id, session_maker, service_factory)

        assert status == "processed"
        event = await _load_event(session_maker, event_id)
        assert (event.status, event.attempts) == ("processed", 1)
        assert event.processed_at is not None
        mock_xero.create_invoice.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_invoice_event_forces_update(
        self, db, session_maker, service_factory, mock_xero, sent_invoice
    ):
        await SyncLedger(db).upsert_record("invoice", "inv_2", "synced", "xero-inv-1")
        mock_xero.find_invoice_by_reference.return_value = {"InvoiceID": "xero-inv-1"}
        event_id = await _log_event(db, "update_invoice", {"data": sent_invoice.model_dump()})

        assert await process_webhook_event(event_id, session_maker, service_factory) == "processed"
        mock_xero.update_invoice.assert_awaited_once()
        mock_xero.create_invoice.assert_not_called()

    @pytest.mark.asyncio
    async def test_payment_event_without_body_is_fetched(
        self, db, session_maker, service_factory, mock_xero, mock_ninja, payment
    ):
        await SyncLedger(db).upsert_record("invoice", "inv_2", "synced", "xero-inv-1")
        mock_ninja.get_payment.return_value = payment
        event_id = await _log_event(db, "create_payment", {"event": "create_payment", "id": "pay_1"})

        assert await process_webhook_event(event_id, session_maker, service_factory) == "processed"
        mock_ninja.get_payment.assert_awaited_once_with("pay_1")
        mock_xero.create_payment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_invoice_event_voids(self, db, session_maker, service_factory, mock_xero):
        await SyncLedger(db).upsert_record("invoice", "inv_2", "synced", "xero-inv-1")
        event_id = await _log_event(db, "delete_invoice", {"data": {"id": "inv_2", "number": "INV-0002"}})

        assert await process_webhook_event(event_id, session_maker, service_factory) == "processed"
        mock_xero.void_invoice.assert_awaited_once_with("xero-inv-1")

    @pytest.mark.asyncio
    async def test_sync_failure_marks_event_error(
        self, db, session_maker, service_factory, mock_xero, sent_invoice
    ):
        mock_xero.create_invoice.return_value = SyncResult(success=False, error="Validation failed")
        event_id = await _log_event(db, "create_invoice", {"data": sent_invoice.model_dump()})

        assert await process_webhook_event(event_id, session_maker, service_factory) == "error"
        event = await _load_event(session_maker, event_id)
        assert event.error_message == "Validation failed"

    @pytest.mark.asyncio
    async def test_malformed_entity_marks_event_error(self, db, session_maker, service_factory):
        event_id = await _log_event(
            db, "create_invoice", {"data": {"id": "inv_9", "line_items": "not-a-list"}}
        )

        assert await process_webhook_event(event_id, session_maker, service_factory) == "error"

    @pytest.mark.asyncio
    async def test_finished_event_is_not_reprocessed(self, db, session_maker, service_factory, mock_xero):
        event_id = await _log_event(db, "create_invoice", {"data": {"id": "inv_2"}}, status="processed")

        assert await process_webhook_event(event_id, session_maker, service_factory) == "processed"
        event = await _load_event(session_maker, event_id)
        assert event.attempts == 0
        assert mock_xero.mock_calls == []

    @pytest.mark.asyncio
    async def test_unknown_event_id(self, session_maker, service_factory):
        assert await process_webhook_event("whk_missing", session_maker, service_factory) is None


class TestReplayStaleEvents:

    @pytest.mark.asyncio
    async def test_only_old_pending_events_are_replayed(
        self, db, session_maker, service_factory, sent_invoice
    ):
        old = datetime.now(timezone.utc) - timedelta(minutes=30)
        body = {"data": sent_invoice.model_dump()}
        stale_id = await _log_event(db, "create_invoice", body, status="received", created_at=old)
        await _log_event(db, "create_invoice", body, status="processed", created_at=old)
        await _log_event(db, "create_invoice", body, status="received", created_at=old, attempts=3)
        await _log_event(db, "create_invoice", body, status="queued")

        counts = await replay_stale_events(db, session_factory=session_maker, service_factory=service_factory)

        assert counts == {"replayed": 1, "processed": 1, "errors": 0}
        assert (await _load_event(session_maker, stale_id)).status == "processed"


# =============================================================================
# Routes
# =============================================================================

class TestWebhookRoutes:

    def test_verify_webhook_secret(self):
        assert verify_webhook_secret("webhook-secret", "webhook-secret")
        assert not verify_webhook_secret("wrong", "webhook-secret")
        assert not verify_webhook_secret(None, "webhook-secret")

    @pytest.mark.asyncio
    async def test_supported_event_is_logged_and_queued(self, client, session_maker, fake_queue):
        response = await client.post(
            WEBHOOK_URL,
            headers=SECRET_HEADER,
            json={"event": "create_invoice", "data": {"id": "inv_2", "number": "INV-0002"}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["entity_id"] == "inv_2"
        assert (body["status"], body["queued"]) == ("queued", True)

        async with session_maker() as session:
            events = (await session.execute(select(WebhookEvent))).scalars().all()
        assert len(events) == 1
        fake_queue.enqueue.assert_called_once_with(events[0].id)

    @pytest.mark.asyncio
    async def test_full_queue_leaves_event_for_replay(self, client, fake_queue):
        fake_queue.enqueue.return_value = False

        response = await client.post(
            WEBHOOK_URL, headers=SECRET_HEADER, json={"event": "create_payment", "data": {"id": "pay_1"}}
        )

        assert response.status_code == 200
        assert (response.json()["status"], response.json()["queued"]) == ("received", False)

    @pytest.mark.asyncio
    async def test_unsupported_event_is_ignored(self, client, fake_queue):
        response = await client.post(
            WEBHOOK_URL, headers=SECRET_HEADER, json={"event": "create_quote", "data": {"id": "q_1"}}
        )

        assert response.json()["status"] == "ignored"
        fake_queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_auto_sync_disabled_ignores_events(self, client, session_maker, fake_queue):
        async with session_maker() as session:
            await update_sync_config(session, {"auto_sync_enabled": False})

        response = await client.post(
            WEBHOOK_URL, headers=SECRET_HEADER, json={"event": "create_invoice", "data": {"id": "inv_2"}}
        )

        assert response.json()["status"] == "ignored"
        fake_queue.enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_bad_body_still_acknowledged(self, client):
        response = await client.post(
            WEBHOOK_URL, headers={**SECRET_HEADER, "Content-Type": "application/json"}, content=b"not json"
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "error": "Processing error logged"}

    @pytest.mark.asyncio
    async def test_missing_secret_rejected(self, client):
        response = await client.post(WEBHOOK_URL, json={"event": "create_invoice"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_secret_rejected(self, client):
        response = await client.post(
            WEBHOOK_URL, headers={"X-Webhook-Secret": "nope"}, json={"event": "create_invoice"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unconfigured_secret_is_server_error(self, client):
        with patch.object(settings, "INVOICE_NINJA_WEBHOOK_SECRET", ""):
            response = await client.post(WEBHOOK_URL, headers=SECRET_HEADER, json={"event": "create_invoice"})
        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_endpoint_check(self, client):
        response = await client.get(WEBHOOK_URL)

        assert response.status_code == 200
        assert "create_invoice" in response.json()["supported_events"]
