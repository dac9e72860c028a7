#!/usr/bin/env python3
"""
MissionGuard -- operator CLI for the access-control and quota core.

Usage:
  python main.py role developers admins
  python main.py quota USER
  python main.py keygen --user u-123 --name "CI deploy" --scopes read,write --expires-in-days 90
  python main.py assign-project team-a /srv/app READ_WRITE
  python main.py revoke-project team-a /srv/app
  python main.py sweep

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. API key hashes depend on it.
  DATABASE_URL   SQLAlchemy URL shared by every store (default: ./missionguard.db).
"""

import argparse
import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from access.teams import TeamStore
from auth.models import AccessLevel, ApiKey, Role
from auth.roles import role_from_groups
from auth.store import UserStore
from auth.tokens import generate_api_key
from core.config import get_settings
from quota.engine import default_quota
from ratelimit.store import RateLimitStore

VALID_SCOPES = ("read", "write", "agents", "admin")


def _parse_scopes(raw: str) -> list[str]:
    """Split a comma-separated scope list, rejecting unknown scopes."""
    scopes = [s.strip() for s in raw.split(",") if s.strip()]
    unknown = [s for s in scopes if s not in VALID_SCOPES]
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown scope(s): {', '.join(unknown)}")
    return scopes


def cmd_role(args: argparse.Namespace) -> int:
    print(role_from_groups(args.groups).value)
    return 0


def cmd_quota(args: argparse.Namespace) -> int:
    quota = default_quota(args.role)
    width = max(len(name) for name in quota.to_dict())
    print(f"Default quota for {Role(args.role).value}")
    for name, value in quota.to_dict().items():
        print(f"  {name:<{width}}  {value}")
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    store = UserStore(get_settings().database_url)
    try:
        if store.get_by_id(args.user) is None:
            print(f"  [!] No user record for '{args.user}'. The key will authenticate with the USER role.")
        expires_at = None
        if args.expires_in_days:
            expires_at = (datetime.now(timezone.utc) + timedelta(days=args.expires_in_days)).isoformat()
        generated = generate_api_key()
        key_id = store.create_api_key(
            ApiKey(
                user_id=args.user,
                name=args.name,
                key_hash=generated.key_hash,
                key_prefix=generated.key_prefix,
                scopes=args.scopes,
                rate_limit=args.rate_limit,
                expires_at=expires_at,
            )
        )
    finally:
        store.close()

    print(f"API key {key_id} created for {args.user} ({generated.key_prefix}...)")
    print(f"  {generated.key}")
    print("  Save this key securely. It cannot be retrieved again.")
    return 0


def cmd_assign_project(args: argparse.Namespace) -> int:
    store = TeamStore(get_settings().database_url)
    try:
        store.assign_project(args.team, args.path, AccessLevel(args.level))
    finally:
        store.close()
    print(f"Team {args.team} now has {args.level} on {args.path}")
    return 0


def cmd_revoke_project(args: argparse.Namespace) -> int:
    store = TeamStore(get_settings().database_url)
    try:
        removed = store.revoke_project(args.team, args.path)
    finally:
        store.close()
    if not removed:
        print(f"  [!] Team {args.team} has no assignment on {args.path}")
        return 1
    print(f"Revoked {args.path} from team {args.team}")
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = RateLimitStore(settings.database_url)
    try:
        cutoff_ms = int(time.time() * 1000) - settings.rate_limit_retention_seconds * 1000
        purged = store.purge_before(cutoff_ms)
    finally:
        store.close()
    print(f"Purged {purged} rate limit window(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="missionguard",
        description="Operator tools for roles, quotas, API keys, team projects, and rate-limit data.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py role developers
  python main.py quota VIEWER
  python main.py keygen --user u-123 --name "CI deploy" --scopes read,agents
  python main.py assign-project team-a /srv/app READ_ONLY
  python main.py sweep
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_role = sub.add_parser("role", help="Resolve the role for a set of identity-provider groups")
    p_role.add_argument("groups", nargs="*", metavar="GROUP", help="Group names (case-insensitive)")
    p_role.set_defaults(func=cmd_role)

    p_quota = sub.add_parser("quota", help="Print the built-in quota profile for a role")
    p_quota.add_argument("role", choices=[r.value for r in Role], metavar="ROLE", help="VIEWER, USER, ADMIN, or SUPER_ADMIN")
    p_quota.set_defaults(func=cmd_quota)

    p_keygen = sub.add_parser("keygen", help="Create an API key and print it once")
    p_keygen.add_argument("--user", required=True, metavar="ID", help="Owning user id")
    p_keygen.add_argument("--name", required=True, metavar="NAME", help="Display name for the key")
    p_keygen.add_argument(
        "--scopes",
        type=_parse_scopes,
        default=[],
        metavar="a,b",
        help="Comma-separated scopes: read, write, agents, admin",
    )
    p_keygen.add_argument("--expires-in-days", type=int, default=None, metavar="N", help="Expire after N days")
    p_keygen.add_argument("--rate-limit", type=int, default=60, metavar="N", help="Requests per minute (default: 60)")
    p_keygen.set_defaults(func=cmd_keygen)

    p_assign = sub.add_parser("assign-project", help="Grant a team an access level on a project path")
    p_assign.add_argument("team", metavar="TEAM")
    p_assign.add_argument("path", metavar="PATH")
    p_assign.add_argument("level", choices=[a.value for a in AccessLevel], metavar="LEVEL", help="READ_ONLY, READ_WRITE, or ADMIN")
    p_assign.set_defaults(func=cmd_assign_project)

    p_revoke = sub.add_parser("revoke-project", help="Remove a team's assignment on a project path")
    p_revoke.add_argument("team", metavar="TEAM")
    p_revoke.add_argument("path", metavar="PATH")
    p_revoke.set_defaults(func=cmd_revoke_project)

    p_sweep = sub.add_parser("sweep", help="Purge durable rate-limit windows older than the retention period")
    p_sweep.set_defaults(func=cmd_sweep)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
