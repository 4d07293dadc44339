"""
auth/tokens.py -- JWT issuing/parsing, password hashing, credential checks, reset tokens.

Security design decisions:
  JWT: python-jose with HS256. Every token carries sub (user id), type
       (purpose: "access" or "refresh"), jti (unique id) and iat. exp is
       present unless the caller explicitly passes expires_at=None, which is
       the opt-in non-expiring access token. parse() maps every failure to a
       specific IdentityError so services can tell expiry from tampering; the
       Auth Gate hides that distinction from HTTP clients.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in verify_credentials() so response time
       does not reveal whether an email is registered.

  Reset tokens: 128 bytes from secrets, URL-safe base64 encoded.

  Signing key: passed in by whoever constructs TokenIssuer (api lifespan,
       CLI, tests). It always comes from Settings.secret_key, never from a
       request.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import CredentialInvalid, TokenExpired, TokenMalformed, TokenWrongPurpose
from auth.models import ACCESS, REFRESH, TokenClaims

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import IdentityStore

logger = logging.getLogger("teamauth.auth")

_ALGORITHM = "HS256"
_PURPOSES = (ACCESS, REFRESH)

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------

_BCRYPT_ROUNDS = 10
MAX_PASSWORD_BYTES = 72


def password_fits(plain: str) -> bool:
    """Return True if bcrypt accepts the password as-is."""
    return len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt refuses input longer than MAX_PASSWORD_BYTES once UTF-8 encoded
    (ValueError). Callers check password_fits() first; the API models do.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("teamauth_timing_dummy")


def verify_credentials(store: IdentityStore, email: str, password: str) -> User:
    """Return the user owning (email, password) or raise CredentialInvalid.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    No side effects on failure.
    """
    user = store.get_user_by_email(email.strip().lower())
    if user is None or not user.hashed_password:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        raise CredentialInvalid()
    if not verify_password(password, user.hashed_password):
        raise CredentialInvalid()
    return user


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


def generate_reset_token(num_bytes: int = 128) -> str:
    """Return num_bytes of CSPRNG output as URL-safe base64 (padding kept)."""
    return base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).decode("ascii")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies signed access/refresh tokens with one signing key."""

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("TokenIssuer requires a signing key")
        self._secret_key = secret_key

    def issue(self, subject: int, purpose: str, expires_at: datetime | None) -> str:
        """Encode a signed token for subject.

        expires_at is required on purpose: passing None omits the exp claim and
        yields a token that is valid until the signing key changes. Only
        SessionService.login does that, and only when the client asked for a
        long-lived token and Settings.long_lived_tokens_enabled is on.
        """
        if purpose not in _PURPOSES:
            raise ValueError(f"Unknown token purpose: {purpose!r}")
        now = datetime.now(timezone.utc)
        payload: dict = {
            "sub": str(subject),
            "type": purpose,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
        }
        if expires_at is not None:
            payload["exp"] = int(expires_at.timestamp())
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def parse(self, token: str, purpose: str, verify_expiry: bool = True) -> TokenClaims:
        """Verify token and return its claims.

        Raises:
            TokenExpired:      exp is present and in the past.
            TokenMalformed:    bad signature, wrong algorithm, or missing/garbled claims.
            TokenWrongPurpose: the type claim is not the purpose this caller needs.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": verify_expiry},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            raise TokenMalformed(detail=str(exc)) from exc

        token_purpose = payload.get("type")
        if token_purpose not in _PURPOSES:
            raise TokenMalformed(detail="missing or unknown type claim")
        if token_purpose != purpose:
            raise TokenWrongPurpose()
        try:
            subject = int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenMalformed(detail="missing or invalid sub claim") from exc

        exp = payload.get("exp")
        return TokenClaims(
            subject=subject,
            purpose=token_purpose,
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp is not None else None,
            token_id=payload.get("jti"),
        )
