"""Pydantic schemas for the Xero connection and sync endpoints."""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, List, Literal
from datetime import date, datetime


# ============================================================================
# CONNECTION SCHEMAS
# ============================================================================

class XeroConnectionStatus(BaseModel):
    """Status of the Xero connection."""
    is_configured: bool
    is_connected: bool
    tenant_name: Optional[str] = None
    tenant_id: Optional[str] = None
    organisation_name: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    auto_sync_enabled: bool = True
    last_reconciliation_at: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# SYNC SCHEMAS
# ============================================================================

SyncAction = Literal["sync_invoice", "sync_payment", "bulk_sync", "reset_sync", "reconcile"]


class ManualSyncRequest(BaseModel):
    """Body of POST /sync/manual."""
    action: SyncAction = "reconcile"
    ninja_id: Optional[str] = None
    since_date: Optional[str] = None

    @field_validator("since_date")
    @classmethod
    def _valid_date(cls, value: Optional[str]) -> Optional[str]:
        if value:
            date.fromisoformat(value[:10])
        return value


class ManualSyncResponse(BaseModel):
    success: bool
    action: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    result: Dict[str, Any] = {}


class SyncStatsResponse(BaseModel):
    """Sync record counts per entity type and status."""
    stats: Dict[str, Dict[str, int]]
    last_reconciliation_at: Optional[str] = None


class SyncConfigResponse(BaseModel):
    default_account_code: str
    default_tax_type: str
    payment_account_code: str
    auto_sync_enabled: bool
    last_reconciliation_at: Optional[str] = None


class SyncConfigUpdate(BaseModel):
    """Partial update of the sync configuration."""
    default_account_code: Optional[str] = Field(None, min_length=1)
    default_tax_type: Optional[str] = Field(None, min_length=1)
    payment_account_code: Optional[str] = Field(None, min_length=1)
    auto_sync_enabled: Optional[bool] = None


# ============================================================================
# CRON SCHEMAS
# ============================================================================

class CronTaskResult(BaseModel):
    task: str
    success: bool
    details: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: int


class CronRunResponse(BaseModel):
    success: bool
    results: List[CronTaskResult]
    total_duration_ms: int
