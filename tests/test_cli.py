"""
tests/test_cli.py -- Tests for the operator CLI in main.py.

Database-backed commands run against a throwaway SQLite file under tmp_path;
main.get_settings is patched so the CLI never touches ./missionguard.db.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import main as cli
from access.teams import TeamStore, check_team_project_access
from auth.models import AccessLevel
from auth.store import UserStore
from auth.tokens import hash_api_key
from ratelimit.store import RateLimitStore


@pytest.fixture
def db_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    settings = SimpleNamespace(database_url=url, rate_limit_retention_seconds=3600)
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return url


class TestRoleAndQuota:
    def test_role(self, capsys) -> None:
        assert cli.main(["role", "developers", "admins"]) == 0
        assert capsys.readouterr().out.strip() == "ADMIN"

    def test_role_without_groups(self, capsys) -> None:
        assert cli.main(["role"]) == 0
        assert capsys.readouterr().out.strip() == "USER"

    def test_quota(self, capsys) -> None:
        assert cli.main(["quota", "VIEWER"]) == 0
        out = capsys.readouterr().out
        assert "Default quota for VIEWER" in out
        assert "api_rate_limit" in out

    def test_quota_rejects_unknown_role(self) -> None:
        with pytest.raises(SystemExit):
            cli.main(["quota", "OWNER"])

    def test_no_command_prints_help(self, capsys) -> None:
        assert cli.main([]) == 0
        assert "COMMAND" in capsys.readouterr().out


class TestKeygen:
    def test_creates_usable_key(self, db_url, capsys) -> None:
        assert cli.main(["keygen", "--user", "u-cli", "--name", "CI deploy", "--scopes", "read,write"]) == 0
        out = capsys.readouterr().out
        raw = next(line.strip() for line in out.splitlines() if line.strip().startswith("cw_live_"))
        assert "No user record" in out

        store = UserStore(db_url)
        try:
            record = store.get_api_key_by_hash(hash_api_key(raw))
        finally:
            store.close()
        assert record is not None
        assert record.user_id == "u-cli"
        assert record.scopes == ["read", "write"]
        assert record.rate_limit == 60

    def test_rejects_unknown_scope(self, db_url) -> None:
        with pytest.raises(SystemExit):
            cli.main(["keygen", "--user", "u-cli", "--name", "bad", "--scopes", "read,root"])


class TestProjects:
    def test_assign_and_revoke(self, db_url, capsys) -> None:
        assert cli.main(["assign-project", "team-a", "/srv/app", "READ_WRITE"]) == 0
        store = TeamStore(db_url)
        try:
            access = check_team_project_access(store, "team-a", "/srv/app")
        finally:
            store.close()
        assert access.access_level == AccessLevel.READ_WRITE

        assert cli.main(["revoke-project", "team-a", "/srv/app"]) == 0
        assert cli.main(["revoke-project", "team-a", "/srv/app"]) == 1
        assert "has no assignment" in capsys.readouterr().out


class TestSweep:
    def test_sweep_purges_old_windows(self, db_url, capsys) -> None:
        store = RateLimitStore(db_url)
        try:
            store.upsert("u-1", 0, 3)
        finally:
            store.close()
        assert cli.main(["sweep"]) == 0
        assert "Purged 1 rate limit window(s)" in capsys.readouterr().out
