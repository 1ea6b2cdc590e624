"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in route modules
(to apply per-route limits with @limiter.limit()).

A single shared instance keeps every route on the same in-memory counter
store. Separate instances per module would never trigger their limits.
Limits are keyed on the client IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Per-IP limit for the password login routes, e.g. "10/minute".

    Read from settings on every check rather than at import time.
    """
    return get_settings().login_rate_limit
