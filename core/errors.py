"""
core/errors.py -- Guard failure taxonomy.

Every guard (authentication, role, scope, ownership, quota, rate limit) ends
in exactly one of two ways: it passes control forward, or it raises a single
GuardError subclass. api/main.py registers one exception handler that turns
any GuardError into the standard error envelope:

    {"error": {"code": ..., "message": ..., <extra fields>}}

No framework imports: core/ is the kernel. The HTTP mapping lives in
api/main.py; the status code travels with the exception.

Failure policy:
  Quota and rate-limit guards FAIL OPEN: a store or counter error is logged
  and the request proceeds.
  Authentication and authorization guards FAIL CLOSED: the same error is a
  500 and access is not granted. The guards themselves implement the
  policy; this module only names the outcomes.
"""

from __future__ import annotations

from typing import Any


class GuardError(Exception):
    """Base class for structured guard failures."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        extra: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra = extra or {}
        self.headers = headers or {}

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class AuthenticationMissing(GuardError):
    status_code = 401
    code = "unauthorized"


class AuthenticationInvalid(GuardError):
    """Credential present but unusable. code carries the sub-reason:
    invalid_api_key, api_key_revoked, api_key_expired, ip_not_allowed."""

    status_code = 401
    code = "invalid_credentials"


class AuthorizationDenied(GuardError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str, *, required: Any, current: Any, code: str | None = None, **extra: Any) -> None:
        super().__init__(message, code=code, extra={"required": required, "current": current, **extra})


class InvalidRequest(GuardError):
    status_code = 400
    code = "invalid_request"


class ResourceNotFound(GuardError):
    status_code = 404
    code = "not_found"


class QuotaExceeded(GuardError):
    status_code = 429
    code = "quota_exceeded"

    def __init__(self, message: str, *, resource: str, current: int, maximum: int) -> None:
        super().__init__(message, extra={"quota": {"resource": resource, "current": current, "max": maximum}})


class RateLimited(GuardError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, *, retry_after: int, reset_at: str, headers: dict[str, str]) -> None:
        super().__init__(message, extra={"retryAfter": retry_after, "resetAt": reset_at}, headers=headers)


class EvaluationFailed(GuardError):
    """An access decision could not be computed (store unreachable, etc.).

    Raised only by fail-closed guards. Fail-open guards log and continue.
    """

    status_code = 500
    code = "evaluation_error"
