"""
auth/token_store.py -- Persistence of issued refresh tokens and their revocation state.

A refresh token is Active from record_issued() until revoke(); Revoked is
terminal. Rows are never physically removed on logout -- they form the audit
trail of issued sessions. purge() exists only for explicit retention runs
from the admin CLI.

Revocation state is always read from the database. Nothing here caches a
revocation decision.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.engine import Connection

from auth.errors import TokenNotFound
from auth.models import RefreshToken
from auth.store import IdentityStore, from_iso, refresh_tokens, to_iso


class TokenStore:
    """Repository for RefreshToken records, sharing IdentityStore's engine and transactions."""

    def __init__(self, db: IdentityStore) -> None:
        self._db = db

    def record_issued(self, token: str, conn: Connection | None = None) -> None:
        now = to_iso(self._db.now())
        with self._db.transaction(conn) as c:
            c.execute(refresh_tokens.insert().values(token=token, revoked=0, created_at=now, updated_at=now))

    def get(self, token: str, conn: Connection | None = None) -> RefreshToken:
        """Return the record for token. Raises TokenNotFound if it was never issued."""
        with self._db.transaction(conn) as c:
            row = c.execute(
                select(refresh_tokens.c.token, refresh_tokens.c.revoked, refresh_tokens.c.created_at).where(
                    refresh_tokens.c.token == token
                )
            ).fetchone()
        if row is None:
            raise TokenNotFound()
        return RefreshToken(token=row.token, revoked=bool(row.revoked), created_at=from_iso(row.created_at))

    def is_revoked(self, token: str, conn: Connection | None = None) -> bool:
        return self.get(token, conn=conn).revoked

    def revoke(self, token: str, conn: Connection | None = None) -> None:
        """Mark token Revoked. Revoking an already revoked token is a no-op.

        The UPDATE matches on the token alone (not on revoked=0) so two
        concurrent logouts both succeed and both leave the row revoked.
        """
        with self._db.transaction(conn) as c:
            result = c.execute(
                refresh_tokens.update()
                .where(refresh_tokens.c.token == token)
                .values(revoked=1, updated_at=to_iso(self._db.now()))
            )
            if result.rowcount == 0:
                raise TokenNotFound()

    def purge(self, created_before: datetime) -> int:
        """Delete records created before the cut-off. Returns rows removed."""
        with self._db.transaction() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.created_at < to_iso(created_before)))
        return result.rowcount
