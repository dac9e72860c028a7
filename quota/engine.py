"""
quota/engine.py -- Resource ceilings per role / per user, and the check itself.

Resolution (field by field, highest wins):
    user override row  ->  role override row  ->  built-in role profile

Check rules for a resource kind:
    SUPER_ADMIN and ceiling 0   allowed (0 is "unlimited" for SUPER_ADMIN)
    any other role, ceiling 0   denied  ("<label> creation is not allowed for your role")
    current >= ceiling          denied  ("Quota exceeded: c/m <label>")
    otherwise                   allowed, remaining = ceiling - current

Usage and quota are read fresh on every call; nothing here is cached.
Quotas are soft ceilings: the check and the subsequent create are separate
steps and a concurrent create may slip through.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from auth.models import Role
from auth.roles import coerce_role
from quota.models import Quota, QuotaCheck, ResourceKind
from quota.store import QuotaStore
from resources.models import UsageSnapshot
from resources.store import ResourceStore

logger = logging.getLogger("missionguard.quota")

_GIB = 1024**3

DEFAULT_QUOTAS: dict[Role, Quota] = {
    Role.SUPER_ADMIN: Quota(
        max_active_sessions=100,
        max_total_sessions=1000,
        max_active_agents=50,
        max_total_agents=200,
        max_prompts_library=1000,
        max_snippets=1000,
        max_folders=100,
        api_rate_limit=1000,
        agent_runs_per_hour=100,
        max_storage_bytes=0,  # unlimited
    ),
    Role.ADMIN: Quota(
        max_active_sessions=20,
        max_total_sessions=200,
        max_active_agents=10,
        max_total_agents=50,
        max_prompts_library=500,
        max_snippets=500,
        max_folders=50,
        api_rate_limit=300,
        agent_runs_per_hour=30,
        max_storage_bytes=10 * _GIB,
    ),
    Role.USER: Quota(
        max_active_sessions=5,
        max_total_sessions=50,
        max_active_agents=3,
        max_total_agents=20,
        max_prompts_library=100,
        max_snippets=100,
        max_folders=20,
        api_rate_limit=60,
        agent_runs_per_hour=10,
        max_storage_bytes=1 * _GIB,
    ),
    Role.VIEWER: Quota(
        max_active_sessions=0,
        max_total_sessions=0,
        max_active_agents=0,
        max_total_agents=0,
        max_prompts_library=0,
        max_snippets=0,
        max_folders=0,
        api_rate_limit=30,
        agent_runs_per_hour=0,
        max_storage_bytes=0,
    ),
}

# kind -> (usage reader, quota field, label)
_KIND_MAP: dict[ResourceKind, tuple[Callable[[UsageSnapshot], int], str, str]] = {
    ResourceKind.SESSION: (lambda u: u.active_sessions, "max_active_sessions", "active sessions"),
    ResourceKind.SESSION_TOTAL: (lambda u: u.total_sessions, "max_total_sessions", "total sessions"),
    ResourceKind.AGENT: (lambda u: u.total_agents, "max_total_agents", "agents"),
    ResourceKind.AGENT_RUN: (lambda u: u.active_agents, "max_active_agents", "running agents"),
    ResourceKind.PROMPT: (lambda u: u.prompts, "max_prompts_library", "prompts"),
    ResourceKind.SNIPPET: (lambda u: u.snippets, "max_snippets", "snippets"),
    ResourceKind.FOLDER: (lambda u: u.folders, "max_folders", "folders"),
}


def default_quota(role: Role | str | None) -> Quota:
    """Built-in profile for a role. Unknown roles get the USER profile."""
    return DEFAULT_QUOTAS[coerce_role(role)]


def get_user_quota(store: QuotaStore, user_id: str | None, role: Role | str | None) -> Quota:
    role = coerce_role(role)
    quota = default_quota(role).merged_with(store.get_role_override(role.value))
    if user_id:
        quota = quota.merged_with(store.get_user_override(user_id))
    return quota


def get_user_usage(resources: ResourceStore, user_id: str) -> UsageSnapshot:
    return resources.count_usage(user_id)


def evaluate_quota(quota: Quota, usage: UsageSnapshot, role: Role | str | None, kind: ResourceKind | str) -> QuotaCheck:
    """Pure quota decision. No I/O."""
    try:
        kind = ResourceKind(kind)
    except ValueError:
        return QuotaCheck(allowed=True, resource=str(kind))

    read_usage, quota_field, label = _KIND_MAP[kind]
    current = read_usage(usage)
    maximum = getattr(quota, quota_field)

    if maximum == 0:
        if coerce_role(role) == Role.SUPER_ADMIN:
            return QuotaCheck(allowed=True, resource=kind.value, current=current, maximum=0)
        return QuotaCheck(
            allowed=False,
            resource=kind.value,
            current=current,
            maximum=0,
            reason=f"{label} creation is not allowed for your role",
        )

    if current >= maximum:
        return QuotaCheck(
            allowed=False,
            resource=kind.value,
            current=current,
            maximum=maximum,
            reason=f"Quota exceeded: {current}/{maximum} {label}",
        )

    return QuotaCheck(
        allowed=True,
        resource=kind.value,
        current=current,
        maximum=maximum,
        remaining=maximum - current,
    )


def check_quota(
    store: QuotaStore,
    resources: ResourceStore,
    user_id: str,
    role: Role | str | None,
    kind: ResourceKind | str,
) -> QuotaCheck:
    quota = get_user_quota(store, user_id, role)
    usage = get_user_usage(resources, user_id)
    return evaluate_quota(quota, usage, role, kind)


def usage_percentages(quota: Quota, usage: UsageSnapshot) -> dict[str, int]:
    """Rounded percent-of-ceiling per headline resource. 0 where the ceiling is 0."""

    def pct(current: int, maximum: int) -> int:
        return round(current / maximum * 100) if maximum else 0

    return {
        "sessions": pct(usage.active_sessions, quota.max_active_sessions),
        "agents": pct(usage.total_agents, quota.max_total_agents),
        "prompts": pct(usage.prompts, quota.max_prompts_library),
        "snippets": pct(usage.snippets, quota.max_snippets),
        "folders": pct(usage.folders, quota.max_folders),
    }
