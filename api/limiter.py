"""
api/limiter.py -- slowapi limiter for unauthenticated abuse limits.

This is separate from ratelimit/, which meters authenticated callers per
user. slowapi keys on the remote address and guards the few routes that are
cheap to spam, such as API key creation in api/routes/v1/auth.py.

api/main.py registers this same object on app.state; a second Limiter would
keep its own counters and the route limits would never trip.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
