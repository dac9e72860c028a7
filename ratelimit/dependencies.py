"""
ratelimit/dependencies.py -- FastAPI guard for per-user rate limiting.

    router = APIRouter(dependencies=[Depends(per_user_rate_limit())])
    @router.post("/expensive", dependencies=[Depends(per_user_rate_limit(10))])

Identifier: caller id, else client IP, else "anonymous".
Limit: custom_limit, else the API key's own rate_limit, else the caller's
quota api_rate_limit, else Settings.default_api_rate_limit.

Every checked response carries X-RateLimit-Limit / -Remaining / -Reset
(ISO-8601). A denial is a 429 rate_limited with retryAfter and resetAt in the
body and Retry-After in the headers.

Failure policy: rate limiting FAILS OPEN. Any error while resolving the
limit or counting the request is logged and the request proceeds.

This guard is independent of the slowapi per-IP limits in api/limiter.py;
a route may carry both.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request, Response

from auth.dependencies import try_get_caller
from auth.models import CallerContext
from core.config import get_settings
from core.errors import RateLimited
from quota.engine import get_user_quota
from ratelimit.limiter import RateLimitResult

logger = logging.getLogger("missionguard.ratelimit")


def _resolve_limit(request: Request, caller: CallerContext, custom_limit: int | None) -> int:
    if custom_limit:
        return custom_limit
    if caller.api_key is not None and caller.api_key.rate_limit:
        return caller.api_key.rate_limit
    quota = get_user_quota(request.app.state.quotas, caller.user_id, caller.role)
    return quota.api_rate_limit or get_settings().default_api_rate_limit


def per_user_rate_limit(custom_limit: int | None = None) -> Callable[..., RateLimitResult | None]:
    def dependency(
        request: Request,
        response: Response,
        caller: CallerContext = Depends(try_get_caller),
    ) -> RateLimitResult | None:
        identifier = caller.user_id or caller.client_ip or "anonymous"
        window_ms = get_settings().rate_limit_window_seconds * 1000

        try:
            limit = _resolve_limit(request, caller, custom_limit)
            result = request.app.state.rate_limiter.check(identifier, limit, window_ms)
        except Exception:
            logger.exception("Rate limit check failed for %s; allowing request", identifier)
            return None

        if not result.allowed:
            logger.warning("Rate limit exceeded for %s (limit %d, reset %s)", identifier, limit, result.reset_at)
            raise RateLimited(
                f"Too many requests. Please try again in {result.retry_after} seconds.",
                retry_after=result.retry_after,
                reset_at=result.reset_at,
                headers=result.headers(),
            )

        for name, value in result.headers().items():
            response.headers[name] = value
        request.state.rate_limit = result
        return result

    return dependency
