"""Per-IP HTTP rate limiting using slowapi.

This is a coarse outer limit on the unauthenticated credential endpoints
(login, code and reset requests). The per-(subject, purpose) cooldowns
live in ``wildauth.stores`` and apply regardless of client IP.

Usage in routers:
    from wildauth.core.rate_limiting import limiter

    @router.post("/login")
    @limiter.limit("10/minute")
    async def login(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from wildauth.core.config import settings

LOGIN_LIMIT = "10/minute"
EMAIL_REQUEST_LIMIT = "5/minute"
TOKEN_LIMIT = "30/minute"

_UNIT_SECONDS = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}

# In-memory storage, suitable for a single instance.
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def _retry_after_from_detail(detail: object) -> str:
    """Turn a limit like "10 per 1 minute" into the window length in seconds.

    Falls back to 60 when the detail has another shape.
    """
    try:
        _count, _per, amount, unit = str(detail).split()
        return str(int(amount) * _UNIT_SECONDS[unit.rstrip("s")])
    except (ValueError, KeyError):
        return "60"


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Return 429 with the standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and Retry-After header.
    """
    retry_after = _retry_after_from_detail(exc.detail)

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
