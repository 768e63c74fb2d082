"""
api/limiter.py -- Shared slowapi rate limiter and the login limit provider.

One Limiter instance for the whole process: api/main.py mounts it as
middleware, api/routes/auth.py decorates the login route with it. Separate
instances would each keep their own counters and never trigger.

Counters are keyed by client IP and kept in memory, so limits are per worker
process. Put a shared storage_uri (redis://...) here when running several
workers behind a load balancer.

The login limit is per app, not per process: it comes from the Settings the
serving app was built with (create_app(settings)), so two apps with different
LOGIN_RATE_LIMIT values in one process each enforce their own.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

_KEY_SEPARATOR = "|"


def login_rate_key(request: Request) -> str:
    """Counter key for POST /api/auth/login: "<limit>|<client ip>".

    slowapi passes only this key to a dynamic limit provider, so the limit
    configured on the serving app travels inside it. Apps with different
    limits therefore never share a counter.
    """
    limit = request.app.state.settings.login_rate_limit
    return f"{limit}{_KEY_SEPARATOR}{get_remote_address(request)}"


def login_rate_limit(key: str) -> str:
    """Limit string for POST /api/auth/login, e.g. "10/minute" (LOGIN_RATE_LIMIT)."""
    return key.split(_KEY_SEPARATOR, 1)[0]
