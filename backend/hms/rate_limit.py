"""
Request rate limiting.

Every API route shares the default limit through SlowAPIMiddleware; the auth
endpoints carry a stricter per-route limit on top. Exceeding either answers
429 with a Retry-After header in the usual error envelope.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from hms.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

AUTH_LIMIT_MESSAGE = "Too many login attempts, please try again later"
DEFAULT_LIMIT_MESSAGE = "Too many requests, please try again later"

# Global limiter instance reused across the app
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.api_rate_limit],
    enabled=settings.rate_limit_enabled,
)

auth_limit = limiter.limit(settings.auth_rate_limit, error_message=AUTH_LIMIT_MESSAGE)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    # Whole window length; the client waits at most this long.
    retry_after = exc.limit.limit.get_expiry()
    logger.warning(
        "Rate limit %s exceeded by %s on %s", exc.limit.limit, get_remote_address(request), request.url.path
    )
    return JSONResponse(
        status_code=429,
        content={"success": False, "message": exc.limit.error_message or DEFAULT_LIMIT_MESSAGE},
        headers={"Retry-After": str(retry_after)},
    )
