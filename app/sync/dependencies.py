"""FastAPI dependencies wiring the sync service per request."""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.invoiceninja.client import InvoiceNinjaClient
from app.sync.reconcile import ReconciliationDriver
from app.sync.service import SyncService


def get_ninja_client() -> InvoiceNinjaClient:
    return InvoiceNinjaClient()


def get_sync_service(
    db: AsyncSession = Depends(get_db),
    ninja_client: InvoiceNinjaClient = Depends(get_ninja_client),
) -> SyncService:
    return SyncService(db, ninja_client=ninja_client)


def get_reconciliation_driver(
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
    ninja_client: InvoiceNinjaClient = Depends(get_ninja_client),
) -> ReconciliationDriver:
    return ReconciliationDriver(db, service, ninja_client)
