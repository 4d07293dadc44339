"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. IdentityStore is the repository; the
_row_to_* functions are the mappers. Services never touch SQL directly.

Explicit handle: IdentityStore is constructed once at process start (api
lifespan or CLI) and passed to every service. There is no module-level
engine or lazily created connection.

Transactions:
  transaction() yields a Connection inside engine.begin(); it commits when the
  block exits normally and rolls back on any exception. Every write method
  takes an optional conn so a service can run several writes in one unit:

      with store.transaction() as conn:
          tokens.record_issued(refresh, conn=conn)
          store.add_activity(user.id, ACTIVITY_LOGIN, conn=conn)

  Any SQLAlchemyError that escapes a block is re-raised as StorageFailure.
  Duplicate emails are the one integrity violation translated to a domain
  error (DuplicateEmail).

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps are stored as ISO 8601 UTC strings (same convention as the rest
of the schema) and mapped back to aware datetimes.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmail, DuplicateExternalId, StorageFailure
from auth.models import ActivityLog, PasswordReset, Permission, Role, Team, User
from core.config import get_settings

logger = logging.getLogger("teamauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_teams = Table(
    "teams",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(64), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("organization_id", Integer, nullable=False, index=True),
    Column("current_team_id", Integer, nullable=False, index=True),
    Column("name", String(191), nullable=False, server_default=""),
    Column("email", String(191), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role_id", String(36)),  # NULL for accounts created before roles existed
    Column("phone_number", String(191)),
    Column("lang", String(16)),
    Column("external_id", String(255), nullable=False, server_default=""),
    Column("email_verified_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),  # soft delete
)

_roles = Table(
    "roles",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("team_id", Integer, nullable=False, index=True),
    Column("name", String(128), nullable=False),
    Column("description", String(1024), nullable=False, server_default=""),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(64), nullable=False, unique=True),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", String(36), nullable=False),
    Column("permission_id", String(36), nullable=False),
    Column("created_at", String(32), nullable=False),
    PrimaryKeyConstraint("role_id", "permission_id"),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(512), nullable=False, unique=True),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_password_resets = Table(
    "password_resets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # No UNIQUE on email: one-record-per-email is kept by delete-then-create.
    Column("email", String(191), nullable=False, index=True),
    Column("token", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_activity_logs = Table(
    "activity_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("activity_type", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    return value.isoformat(timespec="microseconds") if value is not None else None


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for teams, users, roles, permissions, password resets and activity logs.

    Refresh tokens live in the same database but are owned by
    auth.token_store.TokenStore, which borrows this store's engine and
    transactions.

    clock is the single source of "now" for every timestamp written here and
    for every expiry check made by the services; tests replace it to move
    time forward.
    """

    def __init__(self, db_url: str | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self.clock = clock
        metadata.create_all(self.engine)

    def now(self) -> datetime:
        return self.clock()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, conn: Connection | None = None) -> Iterator[Connection]:
        """Yield a connection inside one atomic unit.

        When conn is given the caller already owns a transaction; it is reused
        as-is and commit/rollback stay with the caller.
        """
        if conn is not None:
            yield conn
            return
        try:
            with self.engine.begin() as new_conn:
                yield new_conn
        except SQLAlchemyError as exc:
            logger.error("Storage failure (%s): %s", exc.__class__.__name__, exc)
            raise StorageFailure(detail=exc.__class__.__name__) from exc

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def seed_permissions(self, permissions: list[Permission]) -> int:
        """Insert any catalog permission that is not yet stored. Returns rows added.

        Idempotent -- safe to call on every startup.
        """
        added = 0
        with self.transaction() as conn:
            existing = {row.id for row in conn.execute(select(_permissions.c.id))}
            for perm in permissions:
                if perm.id not in existing:
                    conn.execute(_permissions.insert().values(id=perm.id, name=perm.name))
                    added += 1
        return added

    def list_permissions(self) -> list[Permission]:
        with self.transaction() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.name)).fetchall()
        return [Permission(id=r.id, name=r.name) for r in rows]

    def count_permissions_by_ids(self, permission_ids: list[str], conn: Connection | None = None) -> int:
        """Return how many of the given ids exist in the permission catalog."""
        if not permission_ids:
            return 0
        with self.transaction(conn) as c:
            return c.execute(
                select(func.count()).select_from(_permissions).where(_permissions.c.id.in_(set(permission_ids)))
            ).scalar_one()

    def count_user_permission(self, user_id: int, permission_name: str) -> int:
        """Count (user, permission) rows across the user -> role -> permission join."""
        stmt = (
            select(func.count())
            .select_from(
                _users.join(_roles, _users.c.role_id == _roles.c.id)
                .join(_role_permissions, _role_permissions.c.role_id == _roles.c.id)
                .join(_permissions, _permissions.c.id == _role_permissions.c.permission_id)
            )
            .where(
                (_users.c.id == user_id)
                & (_users.c.deleted_at.is_(None))
                & (_permissions.c.name == permission_name)
            )
        )
        with self.transaction() as conn:
            return conn.execute(stmt).scalar_one()

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def create_team(self, team: Team, conn: Connection | None = None) -> int:
        with self.transaction(conn) as c:
            result = c.execute(
                _teams.insert().values(
                    name=team.name,
                    display_name=team.display_name,
                    created_at=to_iso(self.now()),
                )
            )
            return result.inserted_primary_key[0]

    def get_team(self, team_id: int) -> Team | None:
        with self.transaction() as conn:
            row = conn.execute(_teams.select().where(_teams.c.id == team_id)).fetchone()
        return _row_to_team(row) if row is not None else None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, conn: Connection | None = None) -> int:
        """Insert a user and return its ID. Raises DuplicateEmail on an email clash
        and DuplicateExternalId when another live user already holds external_id.

        The email is lowercased here so no caller can bypass normalization.
        """
        now = to_iso(self.now())
        with self.transaction(conn) as c:
            _check_external_id(c, user.external_id)
            try:
                result = c.execute(
                    _users.insert().values(
                        organization_id=user.organization_id,
                        current_team_id=user.current_team_id or user.organization_id,
                        name=user.name,
                        email=user.email.lower(),
                        hashed_password=user.hashed_password,
                        role_id=user.role_id,
                        phone_number=user.phone_number,
                        lang=user.lang,
                        external_id=user.external_id or "",
                        created_at=now,
                        updated_at=now,
                    )
                )
            except IntegrityError as exc:
                raise DuplicateEmail() from exc
            return result.inserted_primary_key[0]

    def get_user(self, user_id: int, with_role: bool = False) -> User | None:
        """Look up a live (not soft-deleted) user by primary key."""
        with self.transaction() as conn:
            row = conn.execute(_live_users().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            user = _row_to_user(row)
            if with_role and user.role_id:
                user.role = self._load_role(conn, user.role_id)
        return user

    def get_user_by_email(self, email: str) -> User | None:
        with self.transaction() as conn:
            row = conn.execute(_live_users().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_external_id(self, external_id: str) -> User | None:
        if not external_id:
            return None
        with self.transaction() as conn:
            row = conn.execute(_live_users().where(_users.c.external_id == external_id).order_by(_users.c.id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users_by_team(self, team_id: int, offset: int = 0, limit: int = 10) -> tuple[list[User], int]:
        """Return one page of a team's users (newest first) and the team's total user count."""
        where = (_users.c.organization_id == team_id) & (_users.c.deleted_at.is_(None))
        with self.transaction() as conn:
            total = conn.execute(select(func.count()).select_from(_users).where(where)).scalar_one()
            rows = conn.execute(
                _users.select().where(where).order_by(_users.c.created_at.desc(), _users.c.id.desc()).offset(offset).limit(limit)
            ).fetchall()
            users = [_row_to_user(r) for r in rows]
            roles: dict[str, Role | None] = {}
            for user in users:
                if user.role_id:
                    if user.role_id not in roles:
                        roles[user.role_id] = self._load_role(conn, user.role_id)
                    user.role = roles[user.role_id]
        return users, total

    def list_users_without_role(self) -> list[User]:
        with self.transaction() as conn:
            rows = conn.execute(_live_users().where(_users.c.role_id.is_(None)).order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, conn: Connection | None = None, **fields) -> bool:
        """Update columns on a live user. Returns False if no such user.

        Callers pass only known column names (UserPatch.changes(), or a
        service-computed hashed_password / role_id). Raises DuplicateEmail when
        a changed email collides and DuplicateExternalId when a changed
        external_id is held by another live user.
        """
        if "email" in fields and fields["email"] is not None:
            fields["email"] = fields["email"].lower()
        fields["updated_at"] = to_iso(self.now())
        with self.transaction(conn) as c:
            if fields.get("external_id"):
                _check_external_id(c, fields["external_id"], exclude_user_id=user_id)
            try:
                result = c.execute(
                    _users.update().where((_users.c.id == user_id) & (_users.c.deleted_at.is_(None))).values(**fields)
                )
            except IntegrityError as exc:
                raise DuplicateEmail() from exc
        return result.rowcount > 0

    def soft_delete_user(self, user_id: int) -> bool:
        now = to_iso(self.now())
        with self.transaction() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.deleted_at.is_(None)))
                .values(deleted_at=now, updated_at=now)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role, conn: Connection | None = None) -> str:
        """Insert a role and its permission links. Returns the role ID."""
        role_id = role.id or str(uuid.uuid4())
        now = to_iso(self.now())
        with self.transaction(conn) as c:
            c.execute(
                _roles.insert().values(
                    id=role_id,
                    team_id=role.team_id,
                    name=role.name,
                    description=role.description,
                    created_at=now,
                    updated_at=now,
                )
            )
            self.replace_role_permissions(role_id, [p.id for p in role.permissions], conn=c)
        return role_id

    def get_role(self, role_id: str, team_id: int | None = None, conn: Connection | None = None) -> Role | None:
        """Fetch a role with its permissions. team_id, when given, scopes the lookup."""
        with self.transaction(conn) as c:
            role = self._load_role(c, role_id)
        if role is None or (team_id is not None and role.team_id != team_id):
            return None
        return role

    def find_role_by_name(self, team_id: int, name: str, conn: Connection | None = None) -> Role | None:
        with self.transaction(conn) as c:
            row = c.execute(
                _roles.select().where((_roles.c.team_id == team_id) & (_roles.c.name == name)).order_by(_roles.c.created_at)
            ).first()
            if row is None:
                return None
            return self._load_role(c, row.id)

    def list_roles_by_team(self, team_id: int, offset: int = 0, limit: int = 10) -> tuple[list[Role], int]:
        with self.transaction() as conn:
            total = conn.execute(
                select(func.count()).select_from(_roles).where(_roles.c.team_id == team_id)
            ).scalar_one()
            rows = conn.execute(
                _roles.select()
                .where(_roles.c.team_id == team_id)
                .order_by(_roles.c.created_at.desc(), _roles.c.name)
                .offset(offset)
                .limit(limit)
            ).fetchall()
            roles = [_row_to_role(r, self._role_permissions(conn, r.id)) for r in rows]
        return roles, total

    def update_role(self, role: Role, conn: Connection | None = None) -> bool:
        """Overwrite name/description and replace the permission set. Returns False if missing."""
        with self.transaction(conn) as c:
            result = c.execute(
                _roles.update()
                .where(_roles.c.id == role.id)
                .values(name=role.name, description=role.description, updated_at=to_iso(self.now()))
            )
            if result.rowcount == 0:
                return False
            self.replace_role_permissions(role.id, [p.id for p in role.permissions], conn=c)
        return True

    def replace_role_permissions(self, role_id: str, permission_ids: list[str], conn: Connection | None = None) -> None:
        now = to_iso(self.now())
        with self.transaction(conn) as c:
            c.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            for perm_id in dict.fromkeys(permission_ids):
                c.execute(_role_permissions.insert().values(role_id=role_id, permission_id=perm_id, created_at=now))

    def delete_role(self, role_id: str, conn: Connection | None = None) -> bool:
        """Delete a role, its permission links, and unassign it from users."""
        with self.transaction(conn) as c:
            c.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            c.execute(_users.update().where(_users.c.role_id == role_id).values(role_id=None))
            result = c.execute(_roles.delete().where(_roles.c.id == role_id))
        return result.rowcount > 0

    def _load_role(self, conn: Connection, role_id: str) -> Role | None:
        row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        if row is None:
            return None
        return _row_to_role(row, self._role_permissions(conn, role_id))

    def _role_permissions(self, conn: Connection, role_id: str) -> list[Permission]:
        rows = conn.execute(
            select(_permissions.c.id, _permissions.c.name)
            .select_from(_permissions.join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id))
            .where(_role_permissions.c.role_id == role_id)
            .order_by(_permissions.c.name)
        ).fetchall()
        return [Permission(id=r.id, name=r.name) for r in rows]

    # ------------------------------------------------------------------
    # Password resets
    # ------------------------------------------------------------------

    def get_password_reset(self, email: str, token: str | None = None) -> PasswordReset | None:
        """Return the reset record for email (and token, if given), oldest first."""
        cond = _password_resets.c.email == email
        if token is not None:
            cond = cond & (_password_resets.c.token == token)
        with self.transaction() as conn:
            row = conn.execute(
                _password_resets.select().where(cond).order_by(_password_resets.c.created_at)
            ).first()
        return _row_to_password_reset(row) if row is not None else None

    def create_password_reset(self, email: str, token: str, conn: Connection | None = None) -> PasswordReset:
        now = self.now()
        with self.transaction(conn) as c:
            c.execute(
                _password_resets.insert().values(email=email, token=token, created_at=to_iso(now), updated_at=to_iso(now))
            )
        return PasswordReset(email=email, token=token, created_at=now, updated_at=now)

    def delete_password_resets(self, email: str, token: str | None = None, conn: Connection | None = None) -> int:
        """Delete the record for (email, token), or every record for email when token is None."""
        cond = _password_resets.c.email == email
        if token is not None:
            cond = cond & (_password_resets.c.token == token)
        with self.transaction(conn) as c:
            result = c.execute(_password_resets.delete().where(cond))
        return result.rowcount

    def purge_password_resets(self, created_before: datetime) -> int:
        with self.transaction() as conn:
            result = conn.execute(
                _password_resets.delete().where(_password_resets.c.created_at < to_iso(created_before))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def add_activity(self, user_id: int, activity_type: str, conn: Connection | None = None) -> int:
        with self.transaction(conn) as c:
            result = c.execute(
                _activity_logs.insert().values(
                    user_id=user_id,
                    activity_type=activity_type,
                    created_at=to_iso(self.now()),
                )
            )
            return result.inserted_primary_key[0]

    def list_activity(self, user_id: int) -> list[ActivityLog]:
        with self.transaction() as conn:
            rows = conn.execute(
                _activity_logs.select().where(_activity_logs.c.user_id == user_id).order_by(_activity_logs.c.id)
            ).fetchall()
        return [
            ActivityLog(id=r.id, user_id=r.user_id, activity_type=r.activity_type, created_at=from_iso(r.created_at))
            for r in rows
        ]


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def _live_users():
    return _users.select().where(_users.c.deleted_at.is_(None))


def _check_external_id(conn: Connection, external_id: str | None, exclude_user_id: int | None = None) -> None:
    """Raise DuplicateExternalId if a live user other than exclude_user_id holds external_id."""
    if not external_id:
        return
    query = select(_users.c.id).where(
        (_users.c.external_id == external_id) & (_users.c.deleted_at.is_(None))
    )
    if exclude_user_id is not None:
        query = query.where(_users.c.id != exclude_user_id)
    if conn.execute(query.limit(1)).first() is not None:
        raise DuplicateExternalId()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_team(row) -> Team:
    return Team(
        id=row.id,
        name=row.name,
        display_name=row.display_name,
        created_at=from_iso(row.created_at),
    )


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        organization_id=row.organization_id,
        current_team_id=row.current_team_id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role_id=row.role_id,
        phone_number=row.phone_number,
        lang=row.lang,
        external_id=row.external_id or "",
        email_verified_at=from_iso(row.email_verified_at),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_role(row, permissions: list[Permission]) -> Role:
    return Role(
        id=row.id,
        team_id=row.team_id,
        name=row.name,
        description=row.description,
        permissions=permissions,
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )


def _row_to_password_reset(row) -> PasswordReset:
    return PasswordReset(
        email=row.email,
        token=row.token,
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
