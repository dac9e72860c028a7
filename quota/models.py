"""
quota/models.py -- Quota ceilings, override rows, and check results.

Pure data containers. The engine in quota/engine.py does the work.

A ceiling of 0 means "unlimited" for SUPER_ADMIN and "forbidden" for every
other role. QuotaOverride rows come from the database and may leave any field
unset (None); unset fields inherit from the next level down
(user row -> role row -> built-in profile).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from enum import Enum


class ResourceKind(str, Enum):
    SESSION = "session"
    SESSION_TOTAL = "session_total"
    AGENT = "agent"
    AGENT_RUN = "agent_run"
    PROMPT = "prompt"
    SNIPPET = "snippet"
    FOLDER = "folder"


@dataclass(frozen=True)
class Quota:
    max_active_sessions: int
    max_total_sessions: int
    max_active_agents: int
    max_total_agents: int
    max_prompts_library: int
    max_snippets: int
    max_folders: int
    api_rate_limit: int  # requests per minute
    agent_runs_per_hour: int
    max_storage_bytes: int

    def merged_with(self, override: QuotaOverride | None) -> Quota:
        """Return a copy with every non-None field of override applied."""
        if override is None:
            return self
        changes = {name: value for name, value in override.limits().items() if value is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


QUOTA_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(Quota))


@dataclass
class QuotaOverride:
    """A stored override row. Exactly one of user_id / role is set."""

    user_id: str | None = None
    role: str | None = None
    max_active_sessions: int | None = None
    max_total_sessions: int | None = None
    max_active_agents: int | None = None
    max_total_agents: int | None = None
    max_prompts_library: int | None = None
    max_snippets: int | None = None
    max_folders: int | None = None
    api_rate_limit: int | None = None
    agent_runs_per_hour: int | None = None
    max_storage_bytes: int | None = None
    updated_at: str = ""
    id: int | None = None

    def limits(self) -> dict[str, int | None]:
        return {name: getattr(self, name) for name in QUOTA_FIELDS}


@dataclass(frozen=True)
class QuotaCheck:
    """Outcome of one quota check.

    current / maximum are None only for kinds that are not quota-tracked.
    remaining is set on allowed checks with a finite ceiling.
    """

    allowed: bool
    resource: str
    current: int | None = None
    maximum: int | None = None
    remaining: int | None = None
    reason: str | None = None
