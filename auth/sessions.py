"""
auth/sessions.py -- Login, token refresh, logout and federated login.

State per refresh token: Active (recorded at login) -> Revoked (logout).
Revoked is terminal and is checked against the database on every refresh.

Atomic units (one IdentityStore.transaction each):
  login / login_federated: refresh token record + "login" activity
  logout:                  revoke + "logout" activity
If any write in a unit fails, none of them is committed.

Users without a role (accounts older than roles) log in with no permissions
until an operator runs the "migrate-roles" CLI command.

Lifetimes come from Settings (30 days access, 30 days refresh, 7 days refresh
for federated logins). A client may ask login() for a non-expiring access
token; that is honoured only while Settings.long_lived_tokens_enabled is on
and is logged at WARNING every time.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.errors import PrincipalNotFound, TokenRevoked
from auth.models import ACCESS, ACTIVITY_LOGIN, ACTIVITY_LOGOUT, REFRESH, TokenPair, User
from auth.store import IdentityStore
from auth.token_store import TokenStore
from auth.tokens import TokenIssuer, verify_credentials
from core.config import Settings

logger = logging.getLogger("teamauth.sessions")


class SessionService:
    def __init__(
        self,
        db: IdentityStore,
        tokens: TokenStore,
        issuer: TokenIssuer,
        settings: Settings,
    ) -> None:
        self._db = db
        self._tokens = tokens
        self._issuer = issuer
        self._settings = settings

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, long_lived: bool = False) -> TokenPair:
        """Verify credentials and open a session.

        Raises CredentialInvalid for an unknown email or wrong password.
        """
        user = verify_credentials(self._db, email, password)

        access_expiry: datetime | None = self._expiry(self._settings.access_token_ttl_seconds)
        if long_lived:
            if self._settings.long_lived_tokens_enabled:
                access_expiry = None
                logger.warning("Issuing non-expiring access token: user_id=%s", user.id)
            else:
                logger.info("Long-lived token requested but disabled: user_id=%s", user.id)

        return self._open_session(user, access_expiry, self._settings.refresh_token_ttl_seconds)

    def login_federated(self, external_id: str) -> TokenPair:
        """Open a session for the user linked to an external identity.

        An unknown external_id raises PrincipalNotFound; provisioning a new
        account is the caller's decision, never done here.
        """
        user = self._db.get_user_by_external_id(external_id)
        if user is None:
            raise PrincipalNotFound("No user is linked to this external identity.")
        return self._open_session(
            user,
            self._expiry(self._settings.access_token_ttl_seconds),
            self._settings.federated_refresh_token_ttl_seconds,
        )

    def _open_session(self, user: User, access_expiry: datetime | None, refresh_ttl: int) -> TokenPair:
        access_token = self._issuer.issue(user.id, ACCESS, access_expiry)
        refresh_token = self._issuer.issue(user.id, REFRESH, self._expiry(refresh_ttl))

        with self._db.transaction() as conn:
            self._tokens.record_issued(refresh_token, conn=conn)
            self._db.add_activity(user.id, ACTIVITY_LOGIN, conn=conn)

        logger.info("Login: user_id=%s team_id=%s", user.id, user.organization_id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> str:
        """Exchange an Active refresh token for a new access token.

        The refresh token itself is left untouched and stays usable until it
        is revoked or expires.

        Raises TokenNotFound, TokenRevoked, TokenExpired, TokenMalformed or
        TokenWrongPurpose.
        """
        if self._tokens.is_revoked(refresh_token):
            raise TokenRevoked()
        claims = self._issuer.parse(refresh_token, REFRESH)
        return self._issuer.issue(claims.subject, ACCESS, self._expiry(self._settings.access_token_ttl_seconds))

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str) -> None:
        """Revoke a refresh token and record the logout.

        Expiry is not enforced here: an expired refresh token can still be
        revoked, but its signature and purpose must be valid so the owning
        user can be resolved. Raises TokenNotFound for a token never issued.
        """
        self._tokens.get(refresh_token)
        claims = self._issuer.parse(refresh_token, REFRESH, verify_expiry=False)
        user = self._db.get_user(claims.subject)
        if user is None:
            raise PrincipalNotFound()

        with self._db.transaction() as conn:
            self._tokens.revoke(refresh_token, conn=conn)
            self._db.add_activity(user.id, ACTIVITY_LOGOUT, conn=conn)

        logger.info("Logout: user_id=%s", user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _expiry(ttl_seconds: int) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
