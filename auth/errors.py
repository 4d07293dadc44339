"""
auth/errors.py -- Exception taxonomy for the identity and access layer.

Every error carries an HTTP status_code and a stable error_code so api/main.py
can render all of them through one exception handler. Services raise these
directly; nothing in auth/ catches and discards them.

The Auth Gate (auth/dependencies.py) deliberately collapses every
AuthenticationFailure subclass into one generic 401 so callers cannot tell a
bad signature from an unknown user. StorageFailure is never collapsed.

Layer rule: stdlib only.
"""

from __future__ import annotations


class IdentityError(Exception):
    """Base class for identity-layer exceptions mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "bad_request"
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthenticationFailure(IdentityError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication failed."


class CredentialInvalid(AuthenticationFailure):
    error_code = "bad_credentials"
    default_message = "Invalid email or password."


class TokenMalformed(AuthenticationFailure):
    error_code = "token_malformed"
    default_message = "Token is invalid."


class TokenExpired(AuthenticationFailure):
    error_code = "token_expired"
    default_message = "Token has expired."


class TokenWrongPurpose(AuthenticationFailure):
    error_code = "token_wrong_type"
    default_message = "Token type is not accepted here."


class TokenRevoked(AuthenticationFailure):
    error_code = "token_revoked"
    default_message = "Token has been revoked."


# ---------------------------------------------------------------------------
# Lookup / state
# ---------------------------------------------------------------------------


class TokenNotFound(IdentityError):
    status_code = 404
    error_code = "token_not_found"
    default_message = "Refresh token not found."


class PrincipalNotFound(IdentityError):
    status_code = 404
    error_code = "user_not_found"
    default_message = "User not found."


class InvalidResetToken(IdentityError):
    status_code = 400
    error_code = "invalid_reset_token"
    default_message = "Email and/or token is invalid."


class RoleNotFound(IdentityError):
    status_code = 404
    error_code = "role_not_found"
    default_message = "Role not found."


class AdminRoleImmutable(IdentityError):
    status_code = 409
    error_code = "admin_role_immutable"
    default_message = "Admin role can't be modified."


class PermissionNotFound(IdentityError):
    status_code = 404
    error_code = "permission_not_found"
    default_message = "Permission(s) not found."


class DuplicateEmail(IdentityError):
    status_code = 409
    error_code = "email_taken"
    default_message = "Email already taken."


class DuplicateExternalId(IdentityError):
    status_code = 409
    error_code = "external_id_taken"
    default_message = "External identity already linked to another user."


class PermissionDenied(IdentityError):
    status_code = 403
    error_code = "forbidden"
    default_message = "Permission denied."


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class StorageFailure(IdentityError):
    status_code = 500
    error_code = "storage_failure"
    default_message = "A storage error occurred."


class ResetCleanupFailed(StorageFailure):
    """The password was changed but the used reset record could not be deleted.

    The password change stands. Callers may retry the cleanup with
    PasswordResetManager.delete_record().
    """

    error_code = "reset_cleanup_failed"
    default_message = "Password updated but the reset token could not be cleared."


class NotificationFailed(IdentityError):
    status_code = 502
    error_code = "notification_failed"
    default_message = "Could not send the notification."
