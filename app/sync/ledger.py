"""Sync ledger: per-entity sync state in the xero_sync_log table.

Every orchestrator reads its record here before calling Xero and writes
the outcome back afterwards. Records are keyed by (entity_type, ninja_id)
and updated in place, never duplicated.
"""
from typing import Optional, Dict, List, Set
import logging

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.base import utcnow
from app.models.xero import XeroSyncRecord


logger = logging.getLogger(__name__)

ENTITY_TYPES = ("client", "invoice", "payment")
SYNC_STATUSES = ("pending", "synced", "failed", "skipped")


class SyncLedger:
    """Read/write access to sync records for one database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_record(self, entity_type: str, ninja_id: str) -> Optional[XeroSyncRecord]:
        result = await self.db.execute(
            select(XeroSyncRecord).where(
                XeroSyncRecord.entity_type == entity_type,
                XeroSyncRecord.ninja_id == ninja_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_mirror_id(self, entity_type: str, ninja_id: str) -> Optional[str]:
        """Xero id of an entity, only if it is currently synced."""
        record = await self.get_record(entity_type, ninja_id)
        if record and record.status == "synced" and record.xero_id:
            return record.xero_id
        return None

    async def upsert_record(
        self,
        entity_type: str,
        ninja_id: str,
        status: str,
        xero_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> XeroSyncRecord:
        """Record the outcome of a sync attempt.

        - A missing xero_id keeps the one already on the record.
        - "failed" increments retry_count; any other status resets it.
        - "synced" stamps synced_at and requires a xero_id.
        """
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {entity_type}")
        if status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status: {status}")

        record = await self.get_record(entity_type, ninja_id)
        if record is None:
            record = XeroSyncRecord(entity_type=entity_type, ninja_id=ninja_id, retry_count=0)
            self._apply(record, status, xero_id, error_message)
            self.db.add(record)
            try:
                await self.db.commit()
                return record
            except IntegrityError:
                # Another trigger inserted the same entity first
                await self.db.rollback()
                logger.warning(f"Concurrent insert for {entity_type} {ninja_id}, updating instead")
                record = await self.get_record(entity_type, ninja_id)
                if record is None:
                    raise

        self._apply(record, status, xero_id, error_message)
        await self.db.commit()
        return record

    @staticmethod
    def _apply(
        record: XeroSyncRecord,
        status: str,
        xero_id: Optional[str],
        error_message: Optional[str],
    ) -> None:
        mirror_id = xero_id or record.xero_id
        if status == "synced" and not mirror_id:
            raise ValueError(f"Cannot mark {record.entity_type} {record.ninja_id} synced without a Xero id")

        record.xero_id = mirror_id
        record.status = status
        record.error_message = error_message
        if status == "failed":
            record.retry_count = (record.retry_count or 0) + 1
        else:
            record.retry_count = 0
        if status == "synced":
            record.synced_at = utcnow()

    # -------------------------------------------------------------------------
    # Reconciliation queries
    # -------------------------------------------------------------------------

    async def get_failed_syncs(
        self,
        entity_type: str,
        max_retries: int,
        limit: Optional[int] = None,
    ) -> List[XeroSyncRecord]:
        """Oldest failed records still under the retry ceiling."""
        limit = limit or settings.SYNC_BATCH_LIMIT
        result = await self.db.execute(
            select(XeroSyncRecord)
            .where(
                XeroSyncRecord.entity_type == entity_type,
                XeroSyncRecord.status == "failed",
                XeroSyncRecord.retry_count < max_retries,
            )
            .order_by(XeroSyncRecord.created_at.asc(), XeroSyncRecord.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_failed_invoice_syncs(self, max_retries: int = 3) -> List[XeroSyncRecord]:
        return await self.get_failed_syncs("invoice", max_retries)

    async def get_failed_payment_syncs(self, max_retries: int = 3) -> List[XeroSyncRecord]:
        return await self.get_failed_syncs("payment", max_retries)

    async def get_synced_ids(self, entity_type: str) -> Set[str]:
        """Source ids of every synced entity of one type."""
        result = await self.db.execute(
            select(XeroSyncRecord.ninja_id).where(
                XeroSyncRecord.entity_type == entity_type,
                XeroSyncRecord.status == "synced",
            )
        )
        return set(result.scalars().all())

    async def list_synced(self, entity_type: str) -> List[XeroSyncRecord]:
        result = await self.db.execute(
            select(XeroSyncRecord)
            .where(
                XeroSyncRecord.entity_type == entity_type,
                XeroSyncRecord.status == "synced",
                XeroSyncRecord.xero_id.is_not(None),
            )
            .order_by(XeroSyncRecord.created_at.asc())
        )
        return list(result.scalars().all())

    async def status_counts(self) -> Dict[str, Dict[str, int]]:
        """Counts per entity type and status, zero-filled.

        Keys are the plural entity names, e.g. {"invoices": {"synced": 3, ...}}.
        """
        counts = {
            f"{entity_type}s": {status: 0 for status in SYNC_STATUSES}
            for entity_type in ENTITY_TYPES
        }

        result = await self.db.execute(
            select(XeroSyncRecord.entity_type, XeroSyncRecord.status, func.count())
            .group_by(XeroSyncRecord.entity_type, XeroSyncRecord.status)
        )
        for entity_type, status, count in result.all():
            counts.setdefault(f"{entity_type}s", {})[status] = count

        return counts

    async def clear_all(self) -> int:
        """Delete every sync record. Returns the number removed."""
        result = await self.db.execute(delete(XeroSyncRecord))
        await self.db.commit()
        return result.rowcount or 0
