"""Rate limiting middleware using slowapi."""
from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.auth.utils import decode_session_token
from app.config import settings


def rate_limit_key(request: Request) -> str:
    """Limit admins per session subject, everyone else per client IP."""
    token = request.cookies.get(settings.ADMIN_SESSION_COOKIE)
    payload = decode_session_token(token) if token else None
    if payload:
        return f"admin:{payload['sub']}"
    return get_remote_address(request)


# Webhook receiver is exempt; manual sync has its own tighter limit
limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=None,  # In-memory storage, per process
)


def setup_rate_limiting(app):
    """Configure rate limiting for the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
