"""Shared rate limiter instance for use across route files."""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from app.core.config import settings


def get_user_or_ip(request: Request) -> str:
    """Rate limit by acting user id when one is sent, else by IP."""
    user_id = request.headers.get("X-User-Id") or request.query_params.get("userId")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_user_or_ip, enabled=settings.rate_limit_enabled)
