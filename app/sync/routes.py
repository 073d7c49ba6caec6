"""Manual sync API routes (admin only).

Endpoints:
- POST /sync/manual - Run a sync action
- GET /sync/manual - Sync record counts by entity type and status
- GET /sync/config - Read sync configuration
- PUT /sync/config - Update sync configuration
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone
import logging

from app.database import get_db
from app.auth.dependencies import get_current_admin, AdminIdentity
from app.invoiceninja.client import InvoiceNinjaClient, InvoiceNinjaError
from app.middleware.rate_limit import limiter
from app.schemas import xero as schemas
from app.sync.config import get_sync_config, update_sync_config, get_last_reconciliation
from app.sync.dependencies import get_ninja_client, get_reconciliation_driver
from app.sync.ledger import SyncLedger
from app.sync.reconcile import ReconciliationDriver
from app.config import settings
from app.xero.auth import is_xero_configured
from app.xero.client import is_xero_connected


router = APIRouter()
logger = logging.getLogger(__name__)


def _ninja_error_to_http(kind: str, ninja_id: str, error: InvoiceNinjaError) -> HTTPException:
    if error.status_code == 404:
        return HTTPException(status_code=404, detail=f"{kind} {ninja_id} not found")
    return HTTPException(status_code=502, detail=f"Failed to fetch {kind.lower()} from Invoice Ninja")


# ============================================================================
# MANUAL SYNC
# ============================================================================

@router.post("/manual", response_model=schemas.ManualSyncResponse)
@limiter.limit(settings.RATE_LIMIT_MANUAL_SYNC)
async def run_manual_sync(
    request: Request,
    body: schemas.ManualSyncRequest,
    admin: AdminIdentity = Depends(get_current_admin),
    driver: ReconciliationDriver = Depends(get_reconciliation_driver),
    ninja_client: InvoiceNinjaClient = Depends(get_ninja_client),
):
    """
    Run one sync action.

    - reconcile (default): retry failed syncs with the manual retry ceiling
    - sync_invoice / sync_payment: sync one entity by Invoice Ninja id
    - bulk_sync: sync everything since since_date
    - reset_sync: void synced invoices in Xero and clear the sync ledger
    """
    if not is_xero_configured():
        raise HTTPException(status_code=400, detail="Xero integration not configured")

    if not await is_xero_connected(driver.service.token_provider):
        raise HTTPException(
            status_code=400,
            detail=f"Xero not connected. Please connect via {settings.API_V1_PREFIX}/xero/connect",
        )

    if body.action in ("sync_invoice", "sync_payment") and not body.ninja_id:
        raise HTTPException(status_code=400, detail=f"ninja_id required for {body.action} action")

    started_at = datetime.now(timezone.utc)
    logger.info(f"Manual sync '{body.action}' started by admin {admin.id}")

    success = True
    try:
        if body.action == "sync_invoice":
            try:
                invoice = await ninja_client.get_invoice(body.ninja_id)
            except InvoiceNinjaError as e:
                raise _ninja_error_to_http("Invoice", body.ninja_id, e)
            sync_result = await driver.service.sync_invoice(invoice)
            success = sync_result.success
            result = {"invoice": {"ninja_id": body.ninja_id, **sync_result.to_dict()}}

        elif body.action == "sync_payment":
            try:
                payment = await ninja_client.get_payment(body.ninja_id)
            except InvoiceNinjaError as e:
                raise _ninja_error_to_http("Payment", body.ninja_id, e)
            sync_result = await driver.service.sync_payment(payment)
            success = sync_result.success
            result = {"payment": {"ninja_id": body.ninja_id, **sync_result.to_dict()}}

        elif body.action == "bulk_sync":
            result = await driver.bulk_sync(since_date=body.since_date)

        elif body.action == "reset_sync":
            logger.warning(f"Admin {admin.id} requested a full sync reset")
            result = await driver.reset_sync()

        else:
            result = {"reconciliation": await driver.reconcile(settings.MANUAL_MAX_RETRIES)}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Manual sync '{body.action}' failed")
        raise HTTPException(status_code=500, detail="Sync failed")

    completed_at = datetime.now(timezone.utc)
    return schemas.ManualSyncResponse(
        success=success,
        action=body.action,
        started_at=started_at,
        completed_at=completed_at,
        duration_ms=int((completed_at - started_at).total_seconds() * 1000),
        result=result,
    )


@router.get("/manual", response_model=schemas.SyncStatsResponse)
async def get_sync_stats(
    admin: AdminIdentity = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Counts of sync records by entity type and status."""
    stats = await SyncLedger(db).status_counts()
    return schemas.SyncStatsResponse(
        stats=stats,
        last_reconciliation_at=await get_last_reconciliation(db),
    )


# ============================================================================
# SYNC CONFIG
# ============================================================================

@router.get("/config", response_model=schemas.SyncConfigResponse)
async def read_sync_config(
    admin: AdminIdentity = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    config = await get_sync_config(db)
    return schemas.SyncConfigResponse(**config.to_dict())


@router.put("/config", response_model=schemas.SyncConfigResponse)
async def write_sync_config(
    update: schemas.SyncConfigUpdate,
    admin: AdminIdentity = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No configuration changes given")

    config = await update_sync_config(db, changes)
    logger.info(f"Admin {admin.id} updated sync config: {sorted(changes)}")
    return schemas.SyncConfigResponse(**config.to_dict())
