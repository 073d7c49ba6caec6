"""FastAPI dependencies for admin authentication."""
from dataclasses import dataclass
from typing import Optional
from fastapi import HTTPException, Request, status

from app.config import settings
from app.auth.utils import decode_session_token


@dataclass
class AdminIdentity:
    id: str
    email: Optional[str] = None


async def get_current_admin(request: Request) -> AdminIdentity:
    """
    Dependency to get the admin behind the session cookie.

    Raises 401 if the cookie is missing or its token is invalid.
    """
    token = request.cookies.get(settings.ADMIN_SESSION_COOKIE)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    payload = decode_session_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        )

    return AdminIdentity(id=payload["sub"], email=payload.get("email"))
