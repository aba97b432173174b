"""Rate limiting configuration for the selection API."""

import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from cabin_rotation.core.config import settings

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)
CLAIM_LIMIT = f"{settings.RATE_LIMIT_CLAIMS}/minute"


def client_key(request: Request) -> str:
    """
    Rate limit key: the client IP.

    Only trusts X-Forwarded-For when TRUST_PROXY_HEADERS=True (behind a
    reverse proxy); otherwise uses the direct peer address.
    """
    if settings.TRUST_PROXY_HEADERS:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For: client, proxy1, proxy2 - take first
            return forwarded.split(",")[0].strip()
    return get_remote_address(request)


# Shared storage (e.g. memcached://) is needed once more than one worker runs
limiter = Limiter(
    key_func=client_key,
    storage_uri="memory://" if IS_TESTING else settings.RATE_LIMIT_STORAGE_URI,
    default_limits=DEFAULT_LIMITS,
    enabled=not IS_TESTING,
)
