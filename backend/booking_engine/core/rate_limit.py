"""Shared rate limiter instance for use across route files.

Counters never live in this module: they are kept in the storage backend named
by ``settings.limiter_storage_uri`` (``memory://`` for a single instance,
``redis://`` when several stateless instances must share one budget).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from booking_engine.core.config import Settings, settings


def get_client_or_ip(request: Request) -> str:
    """Rate limit by the caller-supplied client id when present, else by IP."""
    client_id = request.headers.get("X-Client-Id", "").strip()
    if client_id:
        return f"client:{client_id}"
    return get_remote_address(request)


def build_limiter(config: Settings) -> Limiter:
    return Limiter(
        key_func=get_client_or_ip,
        storage_uri=config.limiter_storage_uri,
        enabled=config.rate_limit_enabled,
        headers_enabled=False,
    )


limiter = build_limiter(settings)

# Named budgets, mirroring how expensive each operation is
PUBLIC_LIMIT = settings.rate_limit_public
NORMAL_LIMIT = settings.rate_limit_normal
CRITICAL_LIMIT = settings.rate_limit_critical
