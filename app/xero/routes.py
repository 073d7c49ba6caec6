"""Xero API Routes.

Endpoints:
- GET /xero/status - Check connection status
- GET /xero/connect - Start OAuth flow
- GET /xero/callback - OAuth callback
- POST /xero/disconnect - Disconnect Xero
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone
from typing import Optional
import hmac
import json
import logging
import urllib.parse

from app.database import get_db
from app.config import settings
from app.auth.dependencies import get_current_admin, AdminIdentity
from app.schemas import xero as schemas
from app.sync.config import get_sync_config
from app.xero.auth import (
    DatabaseTokenProvider,
    XeroAuthError,
    delete_tokens,
    exchange_code_for_tokens,
    generate_state,
    get_authorization_url,
    get_stored_tokens,
    is_xero_configured,
    store_tokens,
)
from app.xero.client import test_xero_connection


router = APIRouter()
logger = logging.getLogger(__name__)

OAUTH_STATE_COOKIE = "xero_oauth_state"
# OAuth state expiry time (10 minutes)
OAUTH_STATE_MAX_AGE = 600


def _safe_return_path(return_url: Optional[str]) -> str:
    """Only same-site paths are accepted as post-auth redirects."""
    if return_url and return_url.startswith("/") and not return_url.startswith("//"):
        return return_url
    return settings.ADMIN_RETURN_PATH


def _redirect(return_path: str, **params: str) -> RedirectResponse:
    query = urllib.parse.urlencode(params)
    response = RedirectResponse(
        url=f"{settings.FRONTEND_URL}{return_path}?{query}",
        status_code=302,
    )
    response.delete_cookie(OAUTH_STATE_COOKIE, path="/")
    return response


# ============================================================================
# CONNECTION STATUS
# ============================================================================

@router.get("/status", response_model=schemas.XeroConnectionStatus)
async def get_xero_status(
    admin: AdminIdentity = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Report whether Xero is configured and connected, probing the
    Organisation endpoint when tokens exist.
    """
    if not is_xero_configured():
        return schemas.XeroConnectionStatus(
            is_configured=False,
            is_connected=False,
            error="Xero OAuth not configured",
        )

    config = await get_sync_config(db)
    stored = await get_stored_tokens(db)
    if not stored:
        return schemas.XeroConnectionStatus(
            is_configured=True,
            is_connected=False,
            auto_sync_enabled=config.auto_sync_enabled,
            last_reconciliation_at=config.last_reconciliation_at,
            error="Not connected to Xero",
        )

    probe = await test_xero_connection(DatabaseTokenProvider(db, stored.tenant_id))

    return schemas.XeroConnectionStatus(
        is_configured=True,
        is_connected=probe["connected"],
        tenant_id=stored.tenant_id,
        tenant_name=stored.tenant_name,
        organisation_name=probe.get("organisation_name"),
        token_expires_at=datetime.fromtimestamp(stored.token_set.expires_at, tz=timezone.utc),
        auto_sync_enabled=config.auto_sync_enabled,
        last_reconciliation_at=config.last_reconciliation_at,
        error=probe.get("error"),
    )


# ============================================================================
# OAUTH FLOW
# ============================================================================

@router.get("/connect")
async def connect_xero(
    return_url: Optional[str] = Query(None),
    admin: AdminIdentity = Depends(get_current_admin),
):
    """
    Start the Xero OAuth flow.
    The CSRF state and return path are kept in a short-lived httpOnly cookie.
    """
    if not is_xero_configured():
        raise HTTPException(
            status_code=500,
            detail="Xero OAuth not configured. Please set the XERO_* environment variables.",
        )

    state = generate_state()
    response = RedirectResponse(url=get_authorization_url(state), status_code=302)
    response.set_cookie(
        OAUTH_STATE_COOKIE,
        json.dumps({"state": state, "return_url": _safe_return_path(return_url)}),
        max_age=OAUTH_STATE_MAX_AGE,
        path="/",
        httponly=True,
        secure=settings.SECURE_COOKIES,
        samesite="lax",
    )
    logger.info(f"Admin {admin.id} started Xero OAuth flow")
    return response


@router.get("/callback")
async def xero_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    OAuth callback endpoint.
    Exchanges the authorization code for tokens and stores them encrypted.

    Note: This endpoint is called by Xero's redirect, so the state cookie is
    the only proof the flow started here.
    """
    try:
        state_data = json.loads(request.cookies.get(OAUTH_STATE_COOKIE) or "{}")
    except ValueError:
        state_data = {}
    return_path = _safe_return_path(state_data.get("return_url"))

    if error:
        logger.warning(f"Xero OAuth error: {error}")
        return _redirect(return_path, xero_error=error)

    if not code or not state:
        return _redirect(return_path, xero_error="missing_params")

    expected_state = state_data.get("state")
    if not expected_state or not hmac.compare_digest(expected_state, state):
        logger.warning("Xero OAuth callback with invalid state")
        return _redirect(return_path, xero_error="invalid_state")

    try:
        token_set, tenants = await exchange_code_for_tokens(code)
    except XeroAuthError as e:
        logger.error(f"Xero token exchange failed: {e}")
        return _redirect(return_path, xero_error="token_exchange_failed")

    if not tenants:
        return _redirect(return_path, xero_error="no_tenants")

    # Single-organisation setup: the first tenant is the ledger
    tenant = tenants[0]
    tenant_name = tenant.get("tenantName") or "Unknown Organisation"
    await store_tokens(db, tenant["tenantId"], tenant_name, token_set)

    logger.info(f"Xero connected: {tenant_name} ({tenant['tenantId']})")
    return _redirect(return_path, xero_connected="true", xero_tenant=tenant_name)


@router.post("/disconnect")
async def disconnect_xero(
    admin: AdminIdentity = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete the stored tokens for the connected tenant."""
    stored = await get_stored_tokens(db)
    if not stored:
        raise HTTPException(status_code=404, detail="No Xero connection found")

    await delete_tokens(db, stored.tenant_id)
    logger.info(f"Admin {admin.id} disconnected Xero tenant {stored.tenant_id}")

    return {"success": True, "message": "Xero disconnected"}
