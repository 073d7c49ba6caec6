"""Admin session token handling (JWT in a cookie)."""
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from app.config import settings

# JWT settings
ALGORITHM = "HS256"
SESSION_EXPIRE_HOURS = 12


def create_session_token(admin_id: str, email: Optional[str] = None) -> str:
    """Create a signed admin session token."""
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": admin_id,
        "email": email,
        "role": "admin",
        "exp": now + timedelta(hours=SESSION_EXPIRE_HOURS),
        "iat": now,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_session_token(token: str) -> Optional[dict]:
    """Decode and validate an admin session token.

    Returns the payload if valid, None otherwise.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("role") != "admin" or not payload.get("sub"):
        return None
    return payload
