"""Request rate limits (slowapi), keyed by client address.

The limiter is attached to ``app.state`` in main.py. Routes any
authenticated user can write through carry ``@limiter.limit(WRITE_LIMIT)``
and must accept a ``request: Request`` argument.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from clinic.config import settings

WRITE_LIMIT = settings.RATE_LIMIT_WRITES

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    enabled=settings.RATE_LIMIT_ENABLED,
)
