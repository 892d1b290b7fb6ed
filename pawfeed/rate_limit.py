"""Request rate limiting (slowapi)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from pawfeed.config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
