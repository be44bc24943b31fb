"""Rate limiting shared by every router."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from tripcore.config import settings

limiter = Limiter(key_func=get_remote_address)

# Applied to every endpoint through ``@limiter.limit(RATE_LIMIT)``
RATE_LIMIT = settings.rate_limit
