"""
auth/passwords.py -- Password reset lifecycle.

Per email there is at most one usable reset record:

  NoRecord --request_reset--> Pending --(ttl passes)--> Expired --> deleted
                                 |  ^
                                 |  +-- request_reset while unexpired: same
                                 |      token is re-sent, no new record
                                 +-- complete_reset: password changed, record deleted

Expiry is measured from the record's created_at (re-sending does not extend
it). An expired record is deleted the moment anything looks at it through
check_expired() or request_reset(), and by the periodic purge.

Nothing is stored or sent for an unknown email. The API answers it with the
same body as a known one, but with 200 instead of 201, so the status code
does reveal whether an account exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.errors import InvalidResetToken, PrincipalNotFound, ResetCleanupFailed, StorageFailure
from auth.mailer import PasswordResetNotifier, redact_email
from auth.models import ACTIVITY_PASSWORD_CHANGE_REQUEST, PasswordReset
from auth.store import IdentityStore
from auth.tokens import generate_reset_token, hash_password

logger = logging.getLogger("teamauth.passwords")

RESET_SKIPPED = "skipped"  # no such account; nothing stored, nothing sent
RESET_RESENT = "resent"  # unexpired record re-used
RESET_CREATED = "created"  # new record (first request, or previous one expired)


class PasswordResetManager:
    def __init__(
        self,
        db: IdentityStore,
        notifier: PasswordResetNotifier,
        ttl_seconds: int = 3600,
        token_bytes: int = 128,
    ) -> None:
        self._db = db
        self._notifier = notifier
        self._ttl = timedelta(seconds=ttl_seconds)
        self._token_bytes = token_bytes

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def request_reset(self, email: str) -> str:
        """Start (or continue) a reset for email and send the notification.

        Returns RESET_SKIPPED, RESET_RESENT or RESET_CREATED. Raises
        NotificationFailed if the email could not be handed to the mail
        provider; a freshly created record is kept in that case so the next
        request re-sends it.
        """
        email = email.strip().lower()
        user = self._db.get_user_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email %s -- ignored", redact_email(email))
            return RESET_SKIPPED

        existing = self._db.get_password_reset(email)
        if existing is not None and not self._is_expired(existing):
            self._notifier.send_password_reset(existing)
            logger.info("Password reset re-sent: user_id=%s", user.id)
            return RESET_RESENT

        with self._db.transaction() as conn:
            if existing is not None:
                self._db.delete_password_resets(email, conn=conn)
            record = self._db.create_password_reset(email, generate_reset_token(self._token_bytes), conn=conn)
            self._db.add_activity(user.id, ACTIVITY_PASSWORD_CHANGE_REQUEST, conn=conn)

        self._notifier.send_password_reset(record)
        logger.info("Password reset created: user_id=%s replaced_expired=%s", user.id, existing is not None)
        return RESET_CREATED

    # ------------------------------------------------------------------
    # Validation / expiry
    # ------------------------------------------------------------------

    def validate(self, email: str, token: str) -> bool:
        """True iff a record for exactly (email, token) exists and is unexpired."""
        record = self._db.get_password_reset(email.strip().lower(), token)
        return record is not None and not self._is_expired(record)

    def check_expired(self, email: str, token: str) -> bool:
        """Return whether (email, token) is expired, deleting the record if so.

        A pair with no record counts as expired: there is nothing left to use.
        """
        email = email.strip().lower()
        record = self._db.get_password_reset(email, token)
        if record is None:
            return True
        if not self._is_expired(record):
            return False
        self._db.delete_password_resets(email, token)
        return True

    def _is_expired(self, record: PasswordReset) -> bool:
        return self._db.now() - record.created_at > self._ttl

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def complete_reset(self, email: str, token: str, new_password: str) -> None:
        """Set a new password using a valid reset record, then delete the record.

        Raises:
            InvalidResetToken:  (email, token) is unknown or expired.
            PrincipalNotFound:  the account disappeared after the reset was requested.
            ResetCleanupFailed: the password WAS changed but the record could
                                not be deleted; retry with delete_record().
        """
        email = email.strip().lower()
        if not self.validate(email, token):
            raise InvalidResetToken()

        user = self._db.get_user_by_email(email)
        if user is None:
            raise PrincipalNotFound()
        if not self._db.update_user(user.id, hashed_password=hash_password(new_password)):
            raise PrincipalNotFound()
        logger.info("Password reset completed: user_id=%s", user.id)

        try:
            self.delete_record(email, token)
        except StorageFailure as exc:
            logger.error("Password reset cleanup failed: user_id=%s", user.id)
            raise ResetCleanupFailed(detail=exc.detail) from exc

    def delete_record(self, email: str, token: str) -> int:
        return self._db.delete_password_resets(email.strip().lower(), token)

    def purge_expired(self) -> int:
        """Delete every record older than the expiry window. Returns rows removed."""
        removed = self._db.purge_password_resets(self._db.now() - self._ttl)
        if removed:
            logger.info("Purged %d expired password reset record(s)", removed)
        return removed
