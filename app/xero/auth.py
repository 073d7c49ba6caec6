"""Xero OAuth2 flow and token vault.

Tokens are persisted per tenant in the xero_tokens table, encrypted with
app.xero.crypto, and refreshed lazily when they are about to expire.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
import logging
import secrets
import time
import urllib.parse

import httpx
from cryptography.exceptions import InvalidTag

from app.config import settings
from app.models.base import utcnow
from app.models.xero import XeroToken
from app.xero.crypto import encrypt, decrypt


logger = logging.getLogger(__name__)


# ============================================================================
# OAUTH2 CONFIGURATION
# ============================================================================

XERO_AUTH_URL = "https://login.xero.com/identity/connect/authorize"
XERO_TOKEN_URL = "https://identity.xero.com/connect/token"
XERO_CONNECTIONS_URL = "https://api.xero.com/connections"

# Refresh tokens this long before they actually expire
EXPIRY_BUFFER_SECONDS = 300


class XeroAuthError(Exception):
    """Raised when the OAuth code exchange or tenant lookup fails."""


@dataclass
class TokenSet:
    access_token: str
    refresh_token: str
    expires_at: int  # Unix timestamp
    token_type: str = "Bearer"
    scope: str = ""

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "TokenSet":
        """Build a token set from an identity.xero.com token response."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=int(time.time()) + int(data["expires_in"]),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
        )


@dataclass
class StoredTokens:
    tenant_id: str
    tenant_name: Optional[str]
    token_set: TokenSet


def is_xero_configured() -> bool:
    """Check that OAuth credentials and the encryption key are all set."""
    return bool(
        settings.XERO_CLIENT_ID
        and settings.XERO_CLIENT_SECRET
        and settings.XERO_REDIRECT_URI
        and settings.XERO_TOKEN_ENCRYPTION_KEY
    )


def get_authorization_url(state: str) -> str:
    """Generate the Xero OAuth2 authorization URL."""
    params = {
        "response_type": "code",
        "client_id": settings.XERO_CLIENT_ID,
        "redirect_uri": settings.XERO_REDIRECT_URI,
        "scope": settings.XERO_SCOPES,
        "state": state,
    }
    return f"{XERO_AUTH_URL}?{urllib.parse.urlencode(params)}"


def generate_state() -> str:
    """Generate a secure random state for OAuth."""
    return secrets.token_urlsafe(32)


# ============================================================================
# TOKEN ENDPOINT
# ============================================================================

async def exchange_code_for_tokens(code: str) -> Tuple[TokenSet, List[Dict[str, Any]]]:
    """Exchange an authorization code for tokens and the connected tenants."""
    async with httpx.AsyncClient(timeout=30) as client:
        response = await client.post(
            XERO_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": settings.XERO_REDIRECT_URI,
            },
            auth=(settings.XERO_CLIENT_ID, settings.XERO_CLIENT_SECRET),
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )

        if response.status_code != 200:
            raise XeroAuthError(f"Token exchange failed: {response.text}")

        token_set = TokenSet.from_response(response.json())

        response = await client.get(
            XERO_CONNECTIONS_URL,
            headers={
                "Authorization": f"Bearer {token_set.access_token}",
                "Content-Type": "application/json"
            }
        )

        if response.status_code != 200:
            raise XeroAuthError(f"Failed to get tenants: {response.text}")

        return token_set, response.json()


async def request_token_refresh(refresh_token: str) -> Optional[TokenSet]:
    """Call the token endpoint with a refresh grant.

    Returns None when Xero rejects the grant or the request fails.
    """
    try:
        async with httpx.AsyncClient(timeout=30) as client:
            response = await client.post(
                XERO_TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                },
                auth=(settings.XERO_CLIENT_ID, settings.XERO_CLIENT_SECRET),
                headers={"Content-Type": "application/x-www-form-urlencoded"}
            )
    except httpx.HTTPError as e:
        logger.error(f"Token refresh request error: {e}")
        return None

    if response.status_code != 200:
        logger.error(f"Token refresh failed ({response.status_code}): {response.text}")
        return None

    try:
        return TokenSet.from_response(response.json())
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Token refresh returned an unusable body: {e!r}")
        return None


# ============================================================================
# TOKEN VAULT
# ============================================================================

async def store_tokens(
    db: AsyncSession,
    tenant_id: str,
    tenant_name: Optional[str],
    token_set: TokenSet,
) -> None:
    """Encrypt and upsert the tokens for a tenant."""
    result = await db.execute(
        select(XeroToken).where(XeroToken.tenant_id == tenant_id)
    )
    record = result.scalar_one_or_none()

    now = utcnow()
    expires_at = datetime.fromtimestamp(token_set.expires_at, tz=timezone.utc)

    if record:
        record.tenant_name = tenant_name
        record.access_token_encrypted = encrypt(token_set.access_token)
        record.refresh_token_encrypted = encrypt(token_set.refresh_token)
        record.expires_at = expires_at
        record.updated_at = now
    else:
        db.add(XeroToken(
            tenant_id=tenant_id,
            tenant_name=tenant_name,
            access_token_encrypted=encrypt(token_set.access_token),
            refresh_token_encrypted=encrypt(token_set.refresh_token),
            expires_at=expires_at,
            updated_at=now,
        ))

    await db.commit()


async def get_stored_tokens(
    db: AsyncSession,
    tenant_id: Optional[str] = None,
) -> Optional[StoredTokens]:
    """Load and decrypt the most recently updated token record.

    A record that cannot be decrypted is treated as absent.
    """
    query = select(XeroToken)
    if tenant_id:
        query = query.where(XeroToken.tenant_id == tenant_id)
    query = query.order_by(XeroToken.updated_at.desc()).limit(1)

    result = await db.execute(query)
    record = result.scalar_one_or_none()
    if not record:
        return None

    try:
        access_token = decrypt(record.access_token_encrypted)
        refresh_token = decrypt(record.refresh_token_encrypted)
    except (ValueError, InvalidTag) as e:
        logger.error(f"Failed to decrypt Xero tokens for tenant {record.tenant_id}: {e!r}")
        return None

    expires_at = record.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)

    return StoredTokens(
        tenant_id=record.tenant_id,
        tenant_name=record.tenant_name,
        token_set=TokenSet(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(expires_at.timestamp()),
            scope=settings.XERO_SCOPES,
        ),
    )


def is_token_expired(token_set: TokenSet, now: Optional[float] = None) -> bool:
    """True if the access token expires within the refresh buffer."""
    now = time.time() if now is None else now
    return token_set.expires_at <= now + EXPIRY_BUFFER_SECONDS


async def refresh_access_token(
    db: AsyncSession,
    stored: StoredTokens,
) -> Optional[TokenSet]:
    """Refresh a tenant's tokens and persist the new set."""
    refreshed = await request_token_refresh(stored.token_set.refresh_token)
    if not refreshed:
        return None

    await store_tokens(db, stored.tenant_id, stored.tenant_name, refreshed)
    logger.info(f"Refreshed Xero tokens for tenant {stored.tenant_id}")
    return refreshed


async def get_valid_tokens(
    db: AsyncSession,
    tenant_id: Optional[str] = None,
) -> Optional[StoredTokens]:
    """Get usable tokens, refreshing them first if they are about to expire.

    Returns None when there are no tokens or the refresh failed, which
    callers treat as "not connected".
    """
    stored = await get_stored_tokens(db, tenant_id)
    if not stored:
        return None

    if is_token_expired(stored.token_set):
        refreshed = await refresh_access_token(db, stored)
        if not refreshed:
            return None
        return StoredTokens(
            tenant_id=stored.tenant_id,
            tenant_name=stored.tenant_name,
            token_set=refreshed,
        )

    return stored


async def delete_tokens(db: AsyncSession, tenant_id: str) -> None:
    """Remove a tenant's tokens (disconnect)."""
    await db.execute(delete(XeroToken).where(XeroToken.tenant_id == tenant_id))
    await db.commit()


# ============================================================================
# TOKEN PROVIDERS
# ============================================================================

class TokenProvider:
    """Source of valid tokens handed to XeroClient.create()."""

    async def get_valid_tokens(self) -> Optional[StoredTokens]:
        raise NotImplementedError


class DatabaseTokenProvider(TokenProvider):
    """Reads (and refreshes) tokens from the xero_tokens table."""

    def __init__(self, db: AsyncSession, tenant_id: Optional[str] = None):
        self.db = db
        self.tenant_id = tenant_id

    async def get_valid_tokens(self) -> Optional[StoredTokens]:
        return await get_valid_tokens(self.db, self.tenant_id)


class StaticTokenProvider(TokenProvider):
    """Returns a fixed token set. Useful for scripts and tests."""

    def __init__(self, tokens: Optional[StoredTokens]):
        self.tokens = tokens

    async def get_valid_tokens(self) -> Optional[StoredTokens]:
        return self.tokens
