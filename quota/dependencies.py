"""
quota/dependencies.py -- FastAPI guard enforcing resource quotas.

    @router.post("/sessions", dependencies=[Depends(enforce_quota(ResourceKind.SESSION))])

SUPER_ADMIN and unauthenticated callers bypass the check. A denial is a 429
quota_exceeded carrying {resource, current, max}.

Failure policy: quota enforcement FAILS OPEN. If the quota or usage lookup
raises, the error is logged and the request proceeds.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request

from auth.dependencies import try_get_caller
from auth.models import CallerContext, Role
from core.errors import QuotaExceeded
from quota.engine import check_quota
from quota.models import QuotaCheck, ResourceKind

logger = logging.getLogger("missionguard.quota")


def enforce_quota(kind: ResourceKind | str | None = None) -> Callable[..., QuotaCheck | None]:
    """Build a guard for one resource kind.

    kind=None reads the kind from the `kind` path parameter, for routes that
    serve several resource kinds.
    """

    def dependency(request: Request, caller: CallerContext = Depends(try_get_caller)) -> QuotaCheck | None:
        if caller.role == Role.SUPER_ADMIN or not caller.is_authenticated:
            return None

        resource = kind if kind is not None else request.path_params.get("kind", "")
        resource = resource.value if isinstance(resource, ResourceKind) else str(resource)

        try:
            result = check_quota(
                request.app.state.quotas,
                request.app.state.resources,
                caller.user_id,
                caller.role,
                resource,
            )
        except Exception:
            logger.exception("Quota check failed for %s on %s; allowing request", caller.user_id, resource)
            return None

        if not result.allowed:
            logger.warning(
                "Quota exceeded for %s (role %s): %s %s/%s",
                caller.user_id,
                caller.role.value,
                resource,
                result.current,
                result.maximum,
            )
            raise QuotaExceeded(
                result.reason or "Quota exceeded",
                resource=resource,
                current=result.current or 0,
                maximum=result.maximum or 0,
            )

        request.state.quota_info = result
        return result

    return dependency
