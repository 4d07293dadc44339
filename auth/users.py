"""
auth/users.py -- Sign-up and user administration.

sign_up() bootstraps a tenant: team + Admin role (every permission) + first
user, all in one transaction. Everything else operates on an existing team.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid

from auth.errors import PrincipalNotFound, RoleNotFound
from auth.models import ROLE_ADMIN, Role, Team, User, UserPatch
from auth.permissions import ALL_PERMISSIONS
from auth.store import IdentityStore
from auth.tokens import hash_password

logger = logging.getLogger("teamauth.users")


class UserService:
    def __init__(self, db: IdentityStore) -> None:
        self._db = db

    def sign_up(self, team_name: str, name: str, email: str, password: str) -> User:
        """Create a new team with its Admin role and the team's first user.

        Raises DuplicateEmail if the email is already registered; nothing is
        created in that case.
        """
        hashed = hash_password(password)
        with self._db.transaction() as conn:
            team_id = self._db.create_team(Team(name=str(uuid.uuid4()), display_name=team_name), conn=conn)
            role_id = self._db.create_role(
                Role(name=ROLE_ADMIN, description="Administrator", team_id=team_id, permissions=list(ALL_PERMISSIONS)),
                conn=conn,
            )
            user_id = self._db.create_user(
                User(
                    email=email,
                    name=name,
                    hashed_password=hashed,
                    organization_id=team_id,
                    current_team_id=team_id,
                    role_id=role_id,
                ),
                conn=conn,
            )
        logger.info("Team created by sign-up: team_id=%s user_id=%s", team_id, user_id)
        return self.get(user_id)

    def create_in_team(
        self,
        team_id: int,
        name: str,
        email: str,
        password: str,
        role_id: str,
        external_id: str = "",
    ) -> User:
        """Add a user to an existing team with one of that team's roles.

        Raises RoleNotFound if role_id is not a role of team_id, DuplicateEmail
        if the email is taken and DuplicateExternalId if another live user is
        already linked to external_id.
        """
        hashed = hash_password(password)
        with self._db.transaction() as conn:
            if self._db.get_role(role_id, team_id=team_id, conn=conn) is None:
                raise RoleNotFound()
            user_id = self._db.create_user(
                User(
                    email=email,
                    name=name,
                    hashed_password=hashed,
                    organization_id=team_id,
                    current_team_id=team_id,
                    role_id=role_id,
                    external_id=external_id,
                ),
                conn=conn,
            )
        logger.info("User added to team: team_id=%s user_id=%s", team_id, user_id)
        return self.get(user_id)

    def get(self, user_id: int) -> User:
        user = self._db.get_user(user_id, with_role=True)
        if user is None:
            raise PrincipalNotFound()
        return user

    def list_by_team(self, team_id: int, offset: int = 0, limit: int = 10) -> tuple[list[User], int]:
        return self._db.list_users_by_team(team_id, offset=offset, limit=limit)

    def update_profile(self, user_id: int, patch: UserPatch) -> User:
        """Apply the fields set in patch. An empty patch returns the user unchanged."""
        changes = patch.changes()
        if changes and not self._db.update_user(user_id, **changes):
            raise PrincipalNotFound()
        return self.get(user_id)

    def delete(self, team_id: int, user_id: int) -> None:
        """Soft-delete a user of team_id. Users of other teams are PrincipalNotFound."""
        user = self._db.get_user(user_id)
        if user is None or user.organization_id != team_id:
            raise PrincipalNotFound()
        if not self._db.soft_delete_user(user_id):
            raise PrincipalNotFound()
        logger.info("User deleted: team_id=%s user_id=%s", team_id, user_id)
