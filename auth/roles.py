"""
auth/roles.py -- Role resolution from identity-provider groups.

Pure functions, no I/O. The group table is ordered and matched
case-insensitively; when several groups match, the highest role wins.
Callers with no matching group are USER.

    role_from_groups(["developers", "admins"])  -> Role.ADMIN
    has_role(Role.VIEWER, Role.USER)            -> False
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.models import Role

ROLE_HIERARCHY: dict[Role, int] = {
    Role.VIEWER: 0,
    Role.USER: 1,
    Role.ADMIN: 2,
    Role.SUPER_ADMIN: 3,
}

# Authentik group name -> role. Order only matters for readability; the
# resolver always keeps the highest match.
ROLE_GROUP_MAPPING: tuple[tuple[str, Role], ...] = (
    ("authentik Admins", Role.SUPER_ADMIN),
    ("Administrators", Role.SUPER_ADMIN),
    ("admins", Role.ADMIN),
    ("Admins", Role.ADMIN),
    ("developers", Role.USER),
    ("viewers", Role.VIEWER),
)

_GROUP_LOOKUP: dict[str, Role] = {}
for _group, _role in ROLE_GROUP_MAPPING:
    _key = _group.lower()
    if _key not in _GROUP_LOOKUP or ROLE_HIERARCHY[_role] > ROLE_HIERARCHY[_GROUP_LOOKUP[_key]]:
        _GROUP_LOOKUP[_key] = _role


def coerce_role(value: Role | str | None) -> Role:
    """Map a stored role string to Role. Unknown or missing values become USER."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return Role.USER


def role_from_groups(groups: Iterable[str] | None = None) -> Role:
    """Return the highest role granted by any of the groups, defaulting to USER.

    A matching "viewers" group never lowers a caller below the USER default:
    VIEWER is only reachable through a persisted role record.
    """
    highest = Role.USER
    for group in groups or ():
        role = _GROUP_LOOKUP.get(group.lower())
        if role is not None and ROLE_HIERARCHY[role] > ROLE_HIERARCHY[highest]:
            highest = role
    return highest


def has_role(actual: Role | str | None, required: Role | str | None) -> bool:
    """True when actual sits at or above required in the hierarchy."""
    return ROLE_HIERARCHY[coerce_role(actual)] >= ROLE_HIERARCHY[coerce_role(required)]


def resolve_role(groups: Iterable[str] | None, persisted_role: Role | str | None = None) -> Role:
    """Persisted role wins when present; otherwise derive from groups."""
    if persisted_role:
        return coerce_role(persisted_role)
    return role_from_groups(groups)
