"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Three identity sources are checked in priority order:
  1. API key -- Authorization: Bearer cw_... or X-API-Key: cw_...
  2. Authentik proxy headers (X-Authentik-Uid/Username/Email/Name/Groups),
     trusted only when X-Authentik-Proxy-Secret matches the configured secret.
  3. Authorization: Bearer <JWT> -- identity tokens signed with SECRET_KEY.

All three converge on one immutable CallerContext, built once per request and
cached on request.state.caller.

try_get_caller() is the soft variant: no credentials -> anonymous context.
A credential that is present but bad still raises (an invalid API key is a
401 even on routes that allow anonymous access).
get_caller() wraps it and raises 401 if unauthenticated.
require_role() / require_admin / require_super_admin add the role check.
require_scope() restricts API-key callers to the scopes their key holds.

Failure policy: any store failure while resolving the caller FAILS CLOSED
(500 authentication_error). An identity whose role cannot be read must never
be served with a guessed role.

Layer rule: no imports from api/, access/, quota/, ratelimit/, or resources/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import hmac
import ipaddress
import logging
from collections.abc import Callable
from functools import lru_cache

from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError

from auth.apikeys import authenticate_api_key, extract_api_key, scope_allows
from auth.models import ApiKeyGrant, CallerContext, Identity, Role
from auth.roles import coerce_role, has_role, resolve_role, role_from_groups
from auth.tokens import decode_identity_token
from core.config import get_settings
from core.errors import AuthenticationInvalid, AuthenticationMissing, AuthorizationDenied, EvaluationFailed

logger = logging.getLogger("missionguard.auth")


# ---------------------------------------------------------------------------
# Client IP
# ---------------------------------------------------------------------------


def _normalize_ip(ip: str) -> str:
    return ip.strip().removeprefix("::ffff:")


@lru_cache(maxsize=8)
def _parse_networks(entries: tuple[str, ...]) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    return tuple(ipaddress.ip_network(entry, strict=False) for entry in entries)


def _is_trusted(ip: str, networks) -> bool:
    try:
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(address in network for network in networks)


def get_client_ip(request: Request, trusted_proxies: list[str] | None = None) -> str | None:
    """Return the address of the client that sent this request.

    X-Forwarded-For is only read when the socket peer is a trusted proxy. The
    chain is then walked right to left, skipping trusted hops, and the first
    untrusted address is the client. If every hop is trusted, the leftmost is
    returned. Requests from any other peer are identified by the peer itself,
    so a client cannot claim a whitelisted address by sending the header.
    """
    peer = _normalize_ip(request.client.host) if request.client is not None else None
    if trusted_proxies is None:
        trusted_proxies = get_settings().trusted_proxies
    networks = _parse_networks(tuple(trusted_proxies))

    if peer is None or not _is_trusted(peer, networks):
        return peer

    forwarded = request.headers.get("X-Forwarded-For", "")
    hops = [_normalize_ip(ip) for ip in forwarded.split(",") if ip.strip()]
    if not hops:
        return peer
    for ip in reversed(hops):
        if not _is_trusted(ip, networks):
            return ip
    return hops[0]


# ---------------------------------------------------------------------------
# Identity sources
# ---------------------------------------------------------------------------


def _identity_from_proxy(request: Request) -> Identity | None:
    """Read Authentik forward-auth headers when the proxy secret matches."""
    uid = request.headers.get("X-Authentik-Uid")
    username = request.headers.get("X-Authentik-Username")
    if not uid and not username:
        return None

    secret = get_settings().authentik_proxy_secret
    presented = request.headers.get("X-Authentik-Proxy-Secret", "")
    if not secret or not hmac.compare_digest(presented.encode(), secret.encode()):
        logger.warning("Ignored Authentik headers without a valid proxy secret (client %s)", get_client_ip(request))
        return None

    groups_header = request.headers.get("X-Authentik-Groups", "")
    groups = tuple(g.strip() for g in groups_header.split("|") if g.strip())
    return Identity(
        id=uid or username,
        email=request.headers.get("X-Authentik-Email") or None,
        name=request.headers.get("X-Authentik-Name") or None,
        username=username or None,
        groups=groups,
    )


def _identity_from_bearer(request: Request) -> Identity | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return decode_identity_token(auth_header[7:])


# ---------------------------------------------------------------------------
# Caller context
# ---------------------------------------------------------------------------


def _caller_from_api_key(request: Request, raw_key: str, client_ip: str | None) -> CallerContext:
    user_store = request.app.state.user_store
    record = authenticate_api_key(user_store, raw_key, client_ip)
    try:
        owner = user_store.get_by_id(record.user_id)
    except SQLAlchemyError as exc:
        logger.error("API key owner lookup failed for %s: %s", record.key_prefix, exc)
        raise EvaluationFailed("Failed to validate API key", code="authentication_error") from exc

    if owner is not None and not owner.is_active:
        logger.warning("API key %s belongs to a disabled account", record.key_prefix)
        raise AuthenticationInvalid("The account owning this API key is disabled", code="account_disabled")

    request.app.state.background.submit(
        user_store.record_api_key_usage, record.id, label=f"api key usage {record.key_prefix}"
    )

    if owner is None:
        identity = Identity(id=record.user_id)
        role = Role.USER
        team_id = None
    else:
        identity = Identity(
            id=owner.id, email=owner.email, name=owner.name, username=owner.username, groups=tuple(owner.groups)
        )
        role = resolve_role(owner.groups, owner.role)
        team_id = owner.team_id

    return CallerContext(
        identity=identity,
        role=role,
        team_id=team_id,
        api_key=ApiKeyGrant(
            key_id=record.id,
            key_prefix=record.key_prefix,
            scopes=tuple(record.scopes),
            rate_limit=record.rate_limit,
        ),
        client_ip=client_ip,
    )


def _caller_from_identity(request: Request, identity: Identity, client_ip: str | None) -> CallerContext:
    """Sync the user record and resolve the role (persisted wins over groups)."""
    user_store = request.app.state.user_store
    try:
        user = user_store.upsert_user(identity, role_from_groups(identity.groups))
    except SQLAlchemyError as exc:
        logger.error("User sync failed for %s: %s", identity.id, exc)
        raise EvaluationFailed("Failed to resolve caller identity", code="authentication_error") from exc

    if not user.is_active:
        logger.warning("Rejected disabled account %s", identity.id)
        raise AuthenticationInvalid("This account is disabled", code="account_disabled")

    return CallerContext(
        identity=identity,
        role=resolve_role(identity.groups, user.role),
        team_id=user.team_id,
        client_ip=client_ip,
    )


def try_get_caller(request: Request) -> CallerContext:
    """Resolve the caller for this request. Anonymous when no credential is present.

    Raises GuardError for credentials that are present but invalid, and for
    store failures (fail closed).
    """
    cached = getattr(request.state, "caller", None)
    if cached is not None:
        return cached

    client_ip = get_client_ip(request)
    raw_key = extract_api_key(request.headers.get("Authorization"), request.headers.get("X-API-Key"))

    if raw_key:
        caller = _caller_from_api_key(request, raw_key, client_ip)
    else:
        identity = _identity_from_proxy(request) or _identity_from_bearer(request)
        if identity is not None:
            caller = _caller_from_identity(request, identity, client_ip)
        else:
            caller = CallerContext(identity=None, client_ip=client_ip)

    request.state.caller = caller
    return caller


def get_caller(request: Request) -> CallerContext:
    """Require authentication. Raises 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(caller: CallerContext = Depends(get_caller)): ...
    """
    caller = try_get_caller(request)
    if not caller.is_authenticated:
        raise AuthenticationMissing("Authentication required.")
    return caller


# ---------------------------------------------------------------------------
# Role and scope guards
# ---------------------------------------------------------------------------


def require_role(*roles: Role | str) -> Callable[..., CallerContext]:
    """Build a dependency that passes when the caller holds any of the roles (or higher).

    Usage:
        @router.get("/admin", dependencies=[Depends(require_role(Role.ADMIN))])
    """
    allowed = [coerce_role(r) for r in roles] or [Role.USER]

    def dependency(caller: CallerContext = Depends(get_caller)) -> CallerContext:
        if not any(has_role(caller.role, r) for r in allowed):
            logger.warning(
                "Role check failed for %s: has %s, needs one of %s",
                caller.user_id,
                caller.role.value,
                [r.value for r in allowed],
            )
            raise AuthorizationDenied(
                "Insufficient permissions",
                required=[r.value for r in allowed],
                current=caller.role.value,
            )
        return caller

    return dependency


require_admin = require_role(Role.ADMIN)
require_super_admin = require_role(Role.SUPER_ADMIN)


def require_scope(scope: str) -> Callable[..., CallerContext]:
    """Build a dependency that restricts API-key callers to keys holding scope.

    Callers authenticated any other way pass untouched. The `admin` scope
    grants every scope.
    """

    def dependency(caller: CallerContext = Depends(get_caller)) -> CallerContext:
        if caller.api_key is None:
            return caller
        if not scope_allows(caller.api_key.scopes, scope):
            logger.warning("API key %s lacks scope %r", caller.api_key.key_prefix, scope)
            raise AuthorizationDenied(
                f"This API key does not have the '{scope}' scope",
                required=[scope],
                current=list(caller.api_key.scopes),
                code="insufficient_scope",
            )
        return caller

    return dependency
