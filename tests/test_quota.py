"""Unit tests for quota/engine.py, quota/store.py, and ResourceStore.count_usage.

Covers:
- evaluate_quota: zero ceiling (SUPER_ADMIN unlimited, others forbidden),
  at-ceiling denial message, remaining on allowed checks, untracked kinds
- get_user_quota: user row -> role row -> built-in profile, field by field
- QuotaStore upserts touch only the given columns; unknown fields rejected
- count_usage: ACTIVE/IDLE sessions are active, RUNNING executions of owned
  agents are active agents, other users' rows are not counted
"""

from dataclasses import replace

import pytest

from auth.models import Role
from quota.engine import DEFAULT_QUOTAS, check_quota, evaluate_quota, get_user_quota, usage_percentages
from quota.models import ResourceKind
from quota.store import QuotaStore
from resources.models import AgentExecution, Resource, Session, UsageSnapshot
from resources.store import ResourceStore


@pytest.fixture
def quota_store():
    store = QuotaStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def resources():
    store = ResourceStore("sqlite:///:memory:")
    yield store
    store.close()


# ---------------------------------------------------------------------------
# evaluate_quota (pure)
# ---------------------------------------------------------------------------


class TestEvaluateQuota:
    def test_allowed_with_remaining(self) -> None:
        usage = UsageSnapshot(active_sessions=2)
        result = evaluate_quota(DEFAULT_QUOTAS[Role.USER], usage, Role.USER, ResourceKind.SESSION)
        assert result.allowed is True
        assert (result.current, result.maximum, result.remaining) == (2, 5, 3)

    def test_at_ceiling_denied(self) -> None:
        usage = UsageSnapshot(active_sessions=5)
        result = evaluate_quota(DEFAULT_QUOTAS[Role.USER], usage, Role.USER, "session")
        assert result.allowed is False
        assert (result.current, result.maximum) == (5, 5)
        assert result.reason == "Quota exceeded: 5/5 active sessions"

    def test_zero_ceiling_forbidden_for_viewer(self) -> None:
        result = evaluate_quota(DEFAULT_QUOTAS[Role.VIEWER], UsageSnapshot(), Role.VIEWER, "prompt")
        assert result.allowed is False
        assert result.maximum == 0
        assert result.reason == "prompts creation is not allowed for your role"

    def test_zero_ceiling_unlimited_for_super_admin(self) -> None:
        quota = replace(DEFAULT_QUOTAS[Role.SUPER_ADMIN], max_folders=0)
        result = evaluate_quota(quota, UsageSnapshot(folders=500), Role.SUPER_ADMIN, "folder")
        assert result.allowed is True
        assert result.remaining is None

    def test_agent_run_uses_running_executions(self) -> None:
        usage = UsageSnapshot(active_agents=3, total_agents=1)
        result = evaluate_quota(DEFAULT_QUOTAS[Role.USER], usage, Role.USER, "agent_run")
        assert result.allowed is False
        assert result.reason == "Quota exceeded: 3/3 running agents"

    def test_untracked_kind_is_allowed(self) -> None:
        result = evaluate_quota(DEFAULT_QUOTAS[Role.VIEWER], UsageSnapshot(), Role.VIEWER, "widgets")
        assert result.allowed is True
        assert result.current is None and result.maximum is None

    def test_percentages(self) -> None:
        usage = UsageSnapshot(active_sessions=1, total_agents=5, prompts=50)
        pct = usage_percentages(DEFAULT_QUOTAS[Role.USER], usage)
        assert pct["sessions"] == 20
        assert pct["agents"] == 25
        assert pct["prompts"] == 50
        assert usage_percentages(DEFAULT_QUOTAS[Role.VIEWER], usage)["prompts"] == 0


# ---------------------------------------------------------------------------
# Quota resolution
# ---------------------------------------------------------------------------


class TestGetUserQuota:
    def test_defaults_per_role(self, quota_store) -> None:
        assert get_user_quota(quota_store, "u-1", Role.USER) == DEFAULT_QUOTAS[Role.USER]
        assert get_user_quota(quota_store, "u-1", "ADMIN").api_rate_limit == 300

    def test_unknown_role_gets_user_profile(self, quota_store) -> None:
        assert get_user_quota(quota_store, "u-1", "OWNER") == DEFAULT_QUOTAS[Role.USER]

    def test_role_row_overrides_profile_per_field(self, quota_store) -> None:
        quota_store.upsert_role_override("USER", max_prompts_library=7)
        quota = get_user_quota(quota_store, "u-1", Role.USER)
        assert quota.max_prompts_library == 7
        assert quota.max_snippets == DEFAULT_QUOTAS[Role.USER].max_snippets

    def test_user_row_wins_over_role_row(self, quota_store) -> None:
        quota_store.upsert_role_override("USER", max_prompts_library=7, max_folders=3)
        quota_store.upsert_user_override("u-1", max_prompts_library=9)
        quota = get_user_quota(quota_store, "u-1", Role.USER)
        assert quota.max_prompts_library == 9
        assert quota.max_folders == 3, "Unset user fields must inherit from the role row"
        assert get_user_quota(quota_store, "u-2", Role.USER).max_prompts_library == 7

    def test_user_row_zero_is_applied(self, quota_store) -> None:
        quota_store.upsert_user_override("u-1", max_active_sessions=0)
        assert get_user_quota(quota_store, "u-1", Role.USER).max_active_sessions == 0


class TestQuotaStore:
    def test_upsert_only_touches_given_columns(self, quota_store) -> None:
        quota_store.upsert_user_override("u-1", max_snippets=4, max_folders=2)
        row = quota_store.upsert_user_override("u-1", max_snippets=6)
        assert (row.max_snippets, row.max_folders) == (6, 2)
        assert row.max_prompts_library is None
        assert len(quota_store.list_overrides()) == 1

    def test_unknown_field_rejected(self, quota_store) -> None:
        with pytest.raises(ValueError):
            quota_store.upsert_user_override("u-1", max_widgets=1)

    def test_role_rows_listed_first(self, quota_store) -> None:
        quota_store.upsert_user_override("u-1", max_snippets=1)
        quota_store.upsert_role_override("ADMIN", max_snippets=2)
        rows = quota_store.list_overrides()
        assert rows[0].role == "ADMIN"
        assert rows[1].user_id == "u-1"

    def test_delete_user_override(self, quota_store) -> None:
        quota_store.upsert_user_override("u-1", max_snippets=1)
        assert quota_store.delete_user_override("u-1") is True
        assert quota_store.delete_user_override("u-1") is False
        assert quota_store.get_user_override("u-1") is None


# ---------------------------------------------------------------------------
# Usage counting
# ---------------------------------------------------------------------------


class TestCountUsage:
    def test_counts_only_owned_rows(self, resources) -> None:
        resources.create_session(Session(owner_id="u-1", status="ACTIVE"))
        resources.create_session(Session(owner_id="u-1", status="IDLE"))
        resources.create_session(Session(owner_id="u-1", status="TERMINATED"))
        resources.create_session(Session(owner_id="u-2", status="ACTIVE"))
        resources.create_resource(Resource(kind="prompts", owner_id="u-1"))
        resources.create_resource(Resource(kind="folders", owner_id="u-2"))

        usage = resources.count_usage("u-1")
        assert usage.active_sessions == 2
        assert usage.total_sessions == 3
        assert usage.prompts == 1
        assert usage.folders == 0

    def test_active_agents_are_running_executions(self, resources) -> None:
        agent_id = resources.create_resource(Resource(kind="agents", owner_id="u-1"))
        other_agent = resources.create_resource(Resource(kind="agents", owner_id="u-2"))
        resources.create_execution(AgentExecution(agent_id=agent_id))
        resources.create_execution(AgentExecution(agent_id=agent_id, status="COMPLETED"))
        resources.create_execution(AgentExecution(agent_id=other_agent))

        usage = resources.count_usage("u-1")
        assert usage.total_agents == 1
        assert usage.active_agents == 1

    def test_empty_user(self, resources) -> None:
        assert resources.count_usage("nobody") == UsageSnapshot()

    def test_check_quota_end_to_end(self, quota_store, resources) -> None:
        for _ in range(5):
            resources.create_session(Session(owner_id="u-1"))
        assert check_quota(quota_store, resources, "u-1", Role.USER, "session").allowed is False
        quota_store.upsert_user_override("u-1", max_active_sessions=6)
        result = check_quota(quota_store, resources, "u-1", Role.USER, "session")
        assert result.allowed is True
        assert result.remaining == 1
