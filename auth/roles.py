"""
auth/roles.py -- Role administration and the Admin-role backfill migration.

Invariants enforced here (not in the store):
  - A role named "Admin" is never updated or deleted, and no second role may
    take that name.
  - A role's permission set is validated against the catalog and replaced
    as a whole inside the same transaction as the role row, so a role is
    never visible with a partial permission set.
  - Roles are team-scoped: a role id from another team is RoleNotFound.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Connection

from auth.errors import AdminRoleImmutable, PermissionNotFound, RoleNotFound
from auth.models import ROLE_ADMIN, Permission, Role, User
from auth.permissions import ALL_PERMISSIONS
from auth.store import IdentityStore

logger = logging.getLogger("teamauth.roles")


class RoleService:
    def __init__(self, db: IdentityStore) -> None:
        self._db = db

    def list_by_team(self, team_id: int, offset: int = 0, limit: int = 10) -> tuple[list[Role], int]:
        return self._db.list_roles_by_team(team_id, offset=offset, limit=limit)

    def get(self, team_id: int, role_id: str) -> Role:
        role = self._db.get_role(role_id, team_id=team_id)
        if role is None:
            raise RoleNotFound()
        return role

    def create(self, team_id: int, name: str, description: str, permission_ids: list[str]) -> Role:
        if name == ROLE_ADMIN:
            raise AdminRoleImmutable("Another Admin role can't be created.")
        with self._db.transaction() as conn:
            perms = self._validated_permissions(permission_ids, conn)
            role_id = self._db.create_role(
                Role(name=name, description=description, team_id=team_id, permissions=perms), conn=conn
            )
            role = self._db.get_role(role_id, conn=conn)
        logger.info("Role created: team_id=%s role_id=%s permissions=%d", team_id, role_id, len(perms))
        return role

    def update(self, team_id: int, role_id: str, name: str, description: str, permission_ids: list[str]) -> Role:
        with self._db.transaction() as conn:
            existing = self._db.get_role(role_id, team_id=team_id, conn=conn)
            if existing is None:
                raise RoleNotFound()
            if existing.is_admin or name == ROLE_ADMIN:
                raise AdminRoleImmutable()
            perms = self._validated_permissions(permission_ids, conn)
            self._db.update_role(
                Role(id=role_id, name=name, description=description, team_id=team_id, permissions=perms), conn=conn
            )
            role = self._db.get_role(role_id, conn=conn)
        logger.info("Role updated: team_id=%s role_id=%s", team_id, role_id)
        return role

    def delete(self, team_id: int, role_id: str) -> None:
        """Delete a non-Admin role together with its permission links."""
        with self._db.transaction() as conn:
            existing = self._db.get_role(role_id, team_id=team_id, conn=conn)
            if existing is None:
                raise RoleNotFound()
            if existing.is_admin:
                raise AdminRoleImmutable("Admin role can't be deleted.")
            self._db.delete_role(role_id, conn=conn)
        logger.info("Role deleted: team_id=%s role_id=%s", team_id, role_id)

    def _validated_permissions(self, permission_ids: list[str], conn: Connection) -> list[Permission]:
        wanted = list(dict.fromkeys(permission_ids))
        if self._db.count_permissions_by_ids(wanted, conn=conn) != len(wanted):
            raise PermissionNotFound()
        return [Permission(id=pid, name="") for pid in wanted]

    # ------------------------------------------------------------------
    # Admin role backfill
    # ------------------------------------------------------------------

    def ensure_admin_role(self, user: User, conn: Connection | None = None) -> str:
        """Give a role-less user their team's Admin role. Returns the user's role id.

        Accounts created before roles existed have role_id NULL. This is the
        one-time migration for them: it reuses the team's Admin role when one
        exists, otherwise creates it with every permission, then assigns it.
        Calling it for a user who already has a role changes nothing.
        """
        if user.role_id:
            return user.role_id
        with self._db.transaction(conn) as c:
            admin = self._db.find_role_by_name(user.organization_id, ROLE_ADMIN, conn=c)
            if admin is not None:
                role_id = admin.id
            else:
                role_id = self._db.create_role(
                    Role(
                        name=ROLE_ADMIN,
                        description="Administrator",
                        team_id=user.organization_id,
                        permissions=list(ALL_PERMISSIONS),
                    ),
                    conn=c,
                )
            self._db.update_user(user.id, conn=c, role_id=role_id)
        user.role_id = role_id
        logger.info("Admin role assigned to legacy user: user_id=%s team_id=%s", user.id, user.organization_id)
        return role_id

    def migrate_all(self) -> int:
        """Run ensure_admin_role() for every role-less user. Returns users migrated."""
        users = self._db.list_users_without_role()
        for user in users:
            self.ensure_admin_role(user)
        return len(users)
