"""Sync configuration stored in the xero_sync_config key/value table.

Missing keys fall back to DEFAULT_CONFIG, so a fresh database works
without any rows.
"""
from dataclasses import dataclass, asdict, fields, replace
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import utcnow
from app.models.xero import XeroSyncConfig


@dataclass
class SyncConfig:
    default_account_code: str = "200"  # Sales
    default_tax_type: str = "OUTPUT"
    payment_account_code: str = "090"  # Bank
    auto_sync_enabled: bool = True
    last_reconciliation_at: Optional[str] = None  # ISO timestamp

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_CONFIG = SyncConfig()
CONFIG_KEYS = {f.name for f in fields(SyncConfig)}


async def get_sync_config(db: AsyncSession) -> SyncConfig:
    result = await db.execute(select(XeroSyncConfig))
    overrides = {
        row.key: row.value
        for row in result.scalars().all()
        if row.key in CONFIG_KEYS and row.value is not None
    }
    return replace(DEFAULT_CONFIG, **overrides)


async def _set_value(db: AsyncSession, key: str, value: Any) -> None:
    row = await db.get(XeroSyncConfig, key)
    if row:
        row.value = value
        row.updated_at = utcnow()
    else:
        db.add(XeroSyncConfig(key=key, value=value))


async def update_sync_config(db: AsyncSession, updates: Dict[str, Any]) -> SyncConfig:
    """Persist the given keys and return the merged configuration."""
    unknown = set(updates) - CONFIG_KEYS
    if unknown:
        raise ValueError(f"Unknown sync config keys: {', '.join(sorted(unknown))}")

    for key, value in updates.items():
        await _set_value(db, key, value)
    await db.commit()

    return await get_sync_config(db)


async def is_auto_sync_enabled(db: AsyncSession) -> bool:
    config = await get_sync_config(db)
    return bool(config.auto_sync_enabled)


async def update_last_reconciliation(db: AsyncSession, at: Optional[datetime] = None) -> str:
    timestamp = (at or utcnow()).isoformat()
    await _set_value(db, "last_reconciliation_at", timestamp)
    await db.commit()
    return timestamp


async def get_last_reconciliation(db: AsyncSession) -> Optional[str]:
    config = await get_sync_config(db)
    return config.last_reconciliation_at
