"""Database models for the Invoice Ninja → Xero integration."""
from sqlalchemy import Column, String, DateTime, Text, Integer, Index, UniqueConstraint
from sqlalchemy.sql import func

from app.database import Base
from app.models.base import JSONType, generate_id


class XeroToken(Base):
    """Xero OAuth tokens for one tenant (organisation).

    Both tokens are stored AES-256-GCM encrypted, see app.xero.crypto.
    """

    __tablename__ = "xero_tokens"

    id = Column(String, primary_key=True, default=lambda: generate_id("xtok"))

    # Xero tenant info
    tenant_id = Column(String, nullable=False, unique=True, index=True)
    tenant_name = Column(String, nullable=True)

    # Encrypted OAuth tokens ("iv:tag:data" hex)
    access_token_encrypted = Column(Text, nullable=False)
    refresh_token_encrypted = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    # Metadata
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, index=True)


class XeroSyncRecord(Base):
    """One row per Invoice Ninja entity mirrored (or attempted) into Xero.

    This table is the idempotency record for the whole sync: a "synced"
    row means the entity already exists in Xero under xero_id.
    """

    __tablename__ = "xero_sync_log"

    id = Column(String, primary_key=True, default=lambda: generate_id("sync"))

    entity_type = Column(String, nullable=False)  # "client" | "invoice" | "payment"
    ninja_id = Column(String, nullable=False)
    xero_id = Column(String, nullable=True)

    status = Column(String, nullable=False, default="pending")  # "pending" | "synced" | "failed" | "skipped"
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)

    # Timing
    synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("entity_type", "ninja_id", name="uq_xero_sync_log_entity"),
        Index("ix_xero_sync_log_status", "entity_type", "status"),
    )

    def __repr__(self):
        return f"<XeroSyncRecord {self.entity_type}/{self.ninja_id} -> {self.xero_id} ({self.status})>"


class XeroSyncConfig(Base):
    """Key/value sync settings (account codes, auto-sync flag, ...)."""

    __tablename__ = "xero_sync_config"

    key = Column(String, primary_key=True)
    value = Column(JSONType, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class WebhookEvent(Base):
    """Log of inbound Invoice Ninja webhooks and the outcome of their sync."""

    __tablename__ = "invoice_ninja_webhook_log"

    id = Column(String, primary_key=True, default=lambda: generate_id("whk"))

    event_type = Column(String, nullable=False, index=True)
    entity_id = Column(String, nullable=True)
    payload = Column(JSONType, nullable=True)

    status = Column(String, nullable=False, default="received")
    # "received" | "queued" | "processed" | "error" | "ignored"
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)

    # Timing
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_invoice_ninja_webhook_log_status", "status", "created_at"),
    )
