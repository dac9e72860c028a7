"""Unit tests for access/ownership.py -- SQL ownership filters.

The predicates are compiled against a real in-memory ResourceStore so the
tests check which rows the database actually returns.

Covers:
- SUPER_ADMIN sees everything
- USER sees own + shared + public + legacy
- VIEWER sees public + legacy only (no own, no shared)
- Anonymous callers see public + legacy only
- include_* flags switch branches off; no branch left -> nothing
- Session filter: ADMIN+ everything, VIEWER nothing, others own + legacy + team paths
"""

import pytest

from access.ownership import build_ownership_filter, build_session_filter
from auth.models import CallerContext, Identity, Role
from resources.models import Resource, Session
from resources.store import ResourceStore

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


def _caller(user_id: str | None, role: Role = Role.USER, team_id: str | None = None) -> CallerContext:
    identity = Identity(id=user_id) if user_id else None
    return CallerContext(identity=identity, role=role, team_id=team_id)


@pytest.fixture
def store():
    """In-memory ResourceStore with one prompt per visibility class.

    Prompts:
      - own:     owned by u-1
      - other:   owned by u-2, private
      - shared:  owned by u-2, is_shared
      - public:  owned by u-2, is_public
      - legacy:  no owner
    Sessions:
      - s-own (u-1), s-other (u-2, /srv/other), s-team (u-2, /srv/team), s-legacy (no owner)
    """
    s = ResourceStore("sqlite:///:memory:")
    s.create_resource(Resource(kind="prompts", id="own", name="own", owner_id="u-1"))
    s.create_resource(Resource(kind="prompts", id="other", name="other", owner_id="u-2"))
    s.create_resource(Resource(kind="prompts", id="shared", name="shared", owner_id="u-2", is_shared=True))
    s.create_resource(Resource(kind="prompts", id="public", name="public", owner_id="u-2", is_public=True))
    s.create_resource(Resource(kind="prompts", id="legacy", name="legacy", owner_id=None))

    s.create_session(Session(id="s-own", name="own", owner_id="u-1", project_path="/srv/mine"))
    s.create_session(Session(id="s-other", name="other", owner_id="u-2", project_path="/srv/other"))
    s.create_session(Session(id="s-team", name="team", owner_id="u-2", project_path="/srv/team"))
    s.create_session(Session(id="s-legacy", name="legacy", owner_id=None, project_path=None))
    yield s
    s.close()


def _visible(store: ResourceStore, caller: CallerContext, **flags) -> set[str]:
    where = build_ownership_filter(caller, store.table("prompts"), **flags)
    return {r.id for r in store.list_resources("prompts", where)}


def _visible_sessions(store: ResourceStore, caller: CallerContext, **kwargs) -> set[str]:
    where = build_session_filter(caller, store.sessions, **kwargs)
    return {s.id for s in store.list_sessions(where)}


# ---------------------------------------------------------------------------
# Owned resources
# ---------------------------------------------------------------------------


class TestOwnershipFilter:
    def test_super_admin_sees_everything(self, store) -> None:
        assert _visible(store, _caller("u-9", Role.SUPER_ADMIN)) == {"own", "other", "shared", "public", "legacy"}

    def test_super_admin_ignores_flags(self, store) -> None:
        caller = _caller("u-9", Role.SUPER_ADMIN)
        assert "other" in _visible(store, caller, include_shared=False, include_public=False, include_legacy=False)

    def test_user_sees_own_shared_public_legacy(self, store) -> None:
        assert _visible(store, _caller("u-1", Role.USER)) == {"own", "shared", "public", "legacy"}

    def test_admin_does_not_see_other_private(self, store) -> None:
        assert "other" not in _visible(store, _caller("u-1", Role.ADMIN))

    def test_viewer_sees_public_and_legacy_only(self, store) -> None:
        assert _visible(store, _caller("u-1", Role.VIEWER)) == {"public", "legacy"}

    def test_anonymous_sees_public_and_legacy(self, store) -> None:
        assert _visible(store, _caller(None)) == {"public", "legacy"}

    def test_anonymous_never_sees_shared(self, store) -> None:
        """Anonymous contexts carry the default USER role; it must not unlock shared rows."""
        assert _visible(store, _caller(None), include_public=False, include_legacy=False) == set()

    def test_flags_remove_branches(self, store) -> None:
        caller = _caller("u-1", Role.USER)
        assert _visible(store, caller, include_shared=False) == {"own", "public", "legacy"}
        assert _visible(store, caller, include_public=False) == {"own", "shared", "legacy"}
        assert _visible(store, caller, include_legacy=False) == {"own", "shared", "public"}

    def test_no_branches_fails_closed(self, store) -> None:
        """A viewer with every optional branch disabled must see nothing."""
        caller = _caller("u-1", Role.VIEWER)
        assert _visible(store, caller, include_shared=False, include_public=False, include_legacy=False) == set()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessionFilter:
    def test_admin_sees_all_sessions(self, store) -> None:
        assert _visible_sessions(store, _caller("u-9", Role.ADMIN)) == {"s-own", "s-other", "s-team", "s-legacy"}

    def test_viewer_sees_no_sessions(self, store) -> None:
        assert _visible_sessions(store, _caller("u-1", Role.VIEWER)) == set()

    def test_user_sees_own_and_legacy(self, store) -> None:
        assert _visible_sessions(store, _caller("u-1", Role.USER)) == {"s-own", "s-legacy"}

    def test_team_paths_extend_visibility(self, store) -> None:
        caller = _caller("u-1", Role.USER, team_id="team-a")
        visible = _visible_sessions(store, caller, team_project_paths=["/srv/team"])
        assert visible == {"s-own", "s-team", "s-legacy"}

    def test_legacy_can_be_excluded(self, store) -> None:
        assert _visible_sessions(store, _caller("u-1", Role.USER), include_legacy=False) == {"s-own"}
