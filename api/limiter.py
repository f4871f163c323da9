"""
api/limiter.py -- The one slowapi Limiter every Agora route shares.

Brute-force surface: login (password guessing), signup (account spam) and
refresh (token guessing) each carry a per-client-IP limit read from Settings:
LOGIN_RATE_LIMIT, SIGNUP_RATE_LIMIT, REFRESH_RATE_LIMIT.

api/main.py attaches this instance to app.state and mounts SlowAPIMiddleware;
api/routes/v1/auth.py decorates handlers with @limiter.limit(). Counters live
in process memory, so a second Limiter instance would count separately and
never trip.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
