"""
Consolidated models package.

IMPORTANT: Explicit imports only - no wildcards to prevent circular imports.
"""

# Base utilities
from app.models.base import generate_id, utcnow

# Xero integration models
from app.models.xero import XeroToken, XeroSyncRecord, XeroSyncConfig, WebhookEvent

__all__ = [
    "generate_id",
    "utcnow",
    "XeroToken",
    "XeroSyncRecord",
    "XeroSyncConfig",
    "WebhookEvent",
]
