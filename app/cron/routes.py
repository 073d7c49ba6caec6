"""Scheduled job routes.

Endpoints:
- GET /cron/daily-sync - Replay stale webhooks and retry failed Xero syncs

Called once a day by the platform scheduler with
`Authorization: Bearer <CRON_SECRET>`.
"""
from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Dict, Any, Callable, Awaitable
import hmac
import logging
import time

from app.config import settings
from app.database import get_db
from app.schemas.xero import CronTaskResult, CronRunResponse
from app.sync.dependencies import get_reconciliation_driver
from app.sync.reconcile import ReconciliationDriver
from app.webhooks.processor import replay_stale_events


router = APIRouter()
logger = logging.getLogger(__name__)


def verify_cron_secret(authorization: Optional[str]) -> None:
    if not settings.CRON_SECRET:
        logger.error("CRON_SECRET not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    expected = f"Bearer {settings.CRON_SECRET}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def run_task(name: str, task: Callable[[], Awaitable[Dict[str, Any]]]) -> CronTaskResult:
    """Run one task, turning any exception into a failed result."""
    started = time.monotonic()
    try:
        details = await task()
        return CronTaskResult(
            task=name,
            success=True,
            details=details,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
    except Exception as e:
        logger.exception(f"Cron task {name} failed")
        return CronTaskResult(
            task=name,
            success=False,
            error=str(e) or e.__class__.__name__,
            duration_ms=int((time.monotonic() - started) * 1000),
        )


@router.get("/daily-sync", response_model=CronRunResponse)
async def daily_sync(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    driver: ReconciliationDriver = Depends(get_reconciliation_driver),
):
    """
    Run the daily sync tasks in order:
    1. Replay webhook events that never finished processing
    2. Retry failed invoice and payment syncs (cron retry ceiling)

    Returns 207 when any task failed.
    """
    verify_cron_secret(authorization)
    started = time.monotonic()

    results = [
        await run_task("webhook_replay", lambda: replay_stale_events(db)),
        await run_task("xero_reconciliation", lambda: driver.reconcile(settings.CRON_MAX_RETRIES)),
    ]

    all_succeeded = all(result.success for result in results)
    body = CronRunResponse(
        success=all_succeeded,
        results=results,
        total_duration_ms=int((time.monotonic() - started) * 1000),
    )
    logger.info(f"Daily sync completed in {body.total_duration_ms}ms (success={all_succeeded})")

    return JSONResponse(
        status_code=200 if all_succeeded else 207,
        content=body.model_dump(mode="json"),
    )
