"""
Rate limiting for expensive endpoints (MRP run submission).

A module-level limiter so routes can decorate at import time;
``apply_rate_limiting`` wires it into the app.
"""
from fastapi import FastAPI
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from mfgplan.core.settings import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


def apply_rate_limiting(app: FastAPI) -> Limiter:
    """Attach the limiter, its 429 handler and middleware to ``app``."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    return limiter
