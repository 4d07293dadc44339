"""
auth/permissions.py -- Permission catalog and role-based permission evaluation.

The catalog is fixed reference data: read/create/update/delete for each
resource family. Permission ids are UUIDv5 values derived from the name, so
every deployment (and every test database) agrees on them without a lookup.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid

from auth.models import Permission
from auth.store import IdentityStore

_PERMISSION_NAMESPACE = uuid.UUID("6f1c1a52-7d0e-4f3e-9a65-3c1f4b2d8e10")

RESOURCE_FAMILIES = ("user", "role", "team")
ACTIONS = ("read", "create", "update", "delete")


def permission_id(name: str) -> str:
    return str(uuid.uuid5(_PERMISSION_NAMESPACE, name))


def _perm(name: str) -> Permission:
    return Permission(id=permission_id(name), name=name)


PERM_USER_READ = _perm("user:read")
PERM_USER_CREATE = _perm("user:create")
PERM_USER_UPDATE = _perm("user:update")
PERM_USER_DELETE = _perm("user:delete")
PERM_ROLE_READ = _perm("role:read")
PERM_ROLE_CREATE = _perm("role:create")
PERM_ROLE_UPDATE = _perm("role:update")
PERM_ROLE_DELETE = _perm("role:delete")
PERM_TEAM_READ = _perm("team:read")
PERM_TEAM_CREATE = _perm("team:create")
PERM_TEAM_UPDATE = _perm("team:update")
PERM_TEAM_DELETE = _perm("team:delete")

ALL_PERMISSIONS: list[Permission] = [_perm(f"{family}:{action}") for family in RESOURCE_FAMILIES for action in ACTIONS]


class PermissionEvaluator:
    """Answers "does this user's role grant this permission?"."""

    def __init__(self, db: IdentityStore) -> None:
        self._db = db

    def has_permission(self, user_id: int, permission_name: str) -> bool:
        """True iff exactly one (user, permission) row exists across the role join.

        A user with no role, or a role without the permission, gets False --
        never an error. Storage problems still raise StorageFailure.
        """
        return self._db.count_user_permission(user_id, permission_name) == 1
