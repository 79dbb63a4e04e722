"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted through SlowAPIMiddleware, attached as
app.state.limiter) and by api/routes/v1/auth.py (per-route limits on login and
registration via @limiter.limit()).

There must be exactly one instance: separately constructed limiters keep
separate counters and the limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
