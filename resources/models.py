"""
resources/models.py -- Domain dataclasses for the business entities guarded by MissionGuard.

These are pure data containers with zero logic. Sessions, agents, prompts,
snippets, and folders are owned by other services; MissionGuard only reads
them to make access decisions and to count usage for quotas.

owner_id None means a legacy/unowned record created before ownership was
tracked. Sessions carry no shared/public flags -- their visibility comes from
ownership and team project assignments only.
"""

from __future__ import annotations

from dataclasses import dataclass

SESSION_ACTIVE_STATUSES = ("ACTIVE", "IDLE")
EXECUTION_RUNNING = "RUNNING"

# Resource kinds that carry is_shared / is_public and are listed through the
# ownership filter. Sessions have their own filter.
OWNED_KINDS = ("agents", "prompts", "snippets", "folders")


@dataclass
class Session:
    """A terminal session. id is None before the record is written."""

    name: str = ""
    owner_id: str | None = None
    project_path: str | None = None
    status: str = "ACTIVE"  # "ACTIVE" | "IDLE" | "STOPPED" | "TERMINATED"
    created_at: str = ""  # ISO 8601, set by store on insert
    id: str | None = None


@dataclass
class Resource:
    """An agent, prompt, snippet, or folder. kind is one of OWNED_KINDS."""

    kind: str
    name: str = ""
    owner_id: str | None = None
    is_shared: bool = False
    is_public: bool = False
    project_path: str | None = None
    created_at: str = ""
    id: str | None = None


@dataclass
class AgentExecution:
    """One run of an agent. Counted against agent_run quotas while RUNNING."""

    agent_id: str
    status: str = EXECUTION_RUNNING  # "RUNNING" | "COMPLETED" | "FAILED" | "CANCELLED"
    started_at: str = ""
    id: str | None = None


@dataclass(frozen=True)
class UsageSnapshot:
    """Per-user resource counts. Computed fresh on every request, never cached."""

    active_sessions: int = 0
    total_sessions: int = 0
    active_agents: int = 0  # executions currently RUNNING for agents the user owns
    total_agents: int = 0
    prompts: int = 0
    snippets: int = 0
    folders: int = 0
