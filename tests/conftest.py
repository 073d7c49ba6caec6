"""Shared test fixtures and configuration for the sync service tests."""
import os

# Settings are read at import time, so the environment must be in place
# before anything under app/ is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("XERO_CLIENT_ID", "test-client-id")
os.environ.setdefault("XERO_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("XERO_REDIRECT_URI", "http://testserver/api/xero/callback")
os.environ.setdefault("XERO_TOKEN_ENCRYPTION_KEY", "00112233445566778899aabbccddeeff" * 2)
os.environ.setdefault("INVOICE_NINJA_URL", "https://ninja.test")
os.environ.setdefault("INVOICE_NINJA_API_TOKEN", "ninja-token")
os.environ.setdefault("INVOICE_NINJA_WEBHOOK_SECRET", "webhook-secret")
os.environ.setdefault("CRON_SECRET", "cron-secret")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "10000/minute")
os.environ.setdefault("RATE_LIMIT_MANUAL_SYNC", "10000/minute")

import time
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app import models  # noqa: F401
from app.auth.utils import create_session_token
from app.config import settings
from app.main import app
from app.webhooks.queue import WebhookTaskQueue
from app.webhooks.routes import get_webhook_queue
from app.schemas.invoiceninja import NinjaClient, NinjaInvoice, NinjaPayment
from app.xero.auth import StaticTokenProvider, StoredTokens, TokenSet
from app.xero.client import XeroClient, SyncResult


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


# =============================================================================
# Xero
# =============================================================================

@pytest.fixture
def stored_tokens():
    return StoredTokens(
        tenant_id="tenant-1",
        tenant_name="Demo Org",
        token_set=TokenSet(
            access_token="access-token",
            refresh_token="refresh-token",
            expires_at=int(time.time()) + 1800,
        ),
    )


@pytest.fixture
def token_provider(stored_tokens):
    return StaticTokenProvider(stored_tokens)


@pytest.fixture
def mock_xero():
    """Xero client double with successful defaults."""
    xero = AsyncMock(spec=XeroClient)
    xero.get_or_create_contact.return_value = SyncResult(success=True, xero_id="xero-contact-1")
    xero.find_invoice_by_reference.return_value = None
    xero.create_invoice.return_value = SyncResult(success=True, xero_id="xero-inv-1")
    xero.update_invoice.side_effect = lambda invoice_id, payload: SyncResult(success=True, xero_id=invoice_id)
    xero.void_invoice.side_effect = lambda invoice_id: SyncResult(success=True, xero_id=invoice_id)
    xero.create_payment.return_value = SyncResult(success=True, xero_id="xero-pay-1")
    return xero


@pytest.fixture
def mock_ninja():
    """Invoice Ninja client double."""
    return AsyncMock()


# =============================================================================
# Invoice Ninja entities
# =============================================================================

@pytest.fixture
def ninja_client_entity():
    return NinjaClient(
        id="c1",
        name="Acme Ltd",
        display_name="Acme Ltd",
        contacts=[{"first_name": "Ada", "last_name": "Lovelace", "email": "ada@acme.test", "phone": "555-0100"}],
    )


@pytest.fixture
def sent_invoice(ninja_client_entity):
    return NinjaInvoice(
        id="inv_2",
        number="INV-0002",
        client_id="c1",
        amount=150.0,
        status_id="2",
        date="2026-03-01",
        due_date="2026-03-31",
        line_items=[{"product_key": "Widget", "notes": "Blue widget", "cost": 75, "quantity": 2}],
        client=ninja_client_entity,
    )


@pytest.fixture
def draft_invoice(ninja_client_entity):
    return NinjaInvoice(
        id="inv_1",
        number="INV-0001",
        status_id="1",
        date="2026-03-01",
        client=ninja_client_entity,
    )


@pytest.fixture
def payment():
    return NinjaPayment(
        id="pay_1",
        number="0001",
        client_id="c1",
        amount=150.0,
        date="2026-03-05",
        invoices=[{"invoice_id": "inv_2", "amount": 150.0}],
    )


# =============================================================================
# API
# =============================================================================

@pytest.fixture
def fake_queue():
    """Stands in for the background webhook queue."""
    queue = MagicMock(spec=WebhookTaskQueue)
    queue.enqueue.return_value = True
    return queue


@pytest_asyncio.fixture
async def client(session_maker, fake_queue):
    """HTTP client bound to the app, with the test database and queue."""
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_webhook_queue] = lambda: fake_queue

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def admin_cookies():
    return {settings.ADMIN_SESSION_COOKIE: create_session_token("admin_1", "ops@example.com")}
