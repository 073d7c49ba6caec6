"""Column helpers shared by the sync models."""
from datetime import datetime, timezone
import secrets

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def generate_id(prefix: str) -> str:
    """Prefixed random id, e.g. "sync_3f9a1c2b7d10"."""
    return f"{prefix}_{secrets.token_hex(6)}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
