"""
api/routes/v1/auth.py -- Login, token refresh, logout, sign-up and federated login.

Routes:
  POST   /api/v1/auth/login                      -- password login; token pair
  POST   /api/v1/auth/refresh-token              -- new access token from a refresh token
  DELETE /api/v1/auth/logout                     -- revoke a refresh token
  POST   /api/v1/auth/register                   -- new team + Admin role + first user
  GET    /api/v1/auth/providers                  -- configured federated providers (public)
  GET    /api/v1/auth/oauth/{provider}/login     -- redirect to the provider
  GET    /api/v1/auth/oauth/{provider}/callback  -- exchange code; token pair

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  verify_credentials() provides timing equalization; wrong email and wrong
  password produce the same "bad_credentials" response.
  Cache-Control: no-store on every response carrying tokens.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    AccessTokenResponse,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    RefreshTokenRequest,
    RegisterRequest,
    TokenPairResponse,
    UserResponse,
)
from auth.errors import AuthenticationFailure
from auth.models import TokenPair
from auth.oauth import get_enabled_providers, get_external_id
from auth.sessions import SessionService
from auth.users import UserService
from core.config import get_settings

logger = logging.getLogger("teamauth.api.auth")

# Auth policy: every route in this module is public. The refresh and logout
# routes authenticate by the refresh token in the body, not a bearer header.
router = APIRouter()


def _token_response(pair: TokenPair, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Password login / sessions
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenPairResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return an access/refresh token pair."""
    sessions: SessionService = request.app.state.session_service
    pair = sessions.login(body.email, body.password, long_lived=body.is_long_live_token)
    return _token_response(pair)


@router.post("/auth/refresh-token", response_model=AccessTokenResponse)
def refresh_token(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    """Exchange a non-revoked refresh token for a new access token."""
    sessions: SessionService = request.app.state.session_service
    access = sessions.refresh(body.refresh_token)
    resp = JSONResponse(content=AccessTokenResponse(access_token=access).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.delete("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshTokenRequest) -> MessageResponse:
    """Revoke the refresh token. Revoking it twice is not an error."""
    sessions: SessionService = request.app.state.session_service
    sessions.logout(body.refresh_token)
    return MessageResponse(message="Logged out.")


@limiter.limit(login_limit)
@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create a new team and its first user, who holds the team's Admin role."""
    users: UserService = request.app.state.user_service
    user = users.sign_up(body.team_name, body.name, body.email, body.password)
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Federated login
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured federated login providers (empty when none)."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(get_settings())]


def _require_provider(provider: str) -> None:
    enabled = {p["name"] for p in get_enabled_providers(get_settings())}
    if provider not in enabled:
        raise HTTPException(
            status_code=404,
            detail={"code": "unknown_provider", "message": f"Provider {provider!r} is not configured."},
        )


@router.get("/auth/oauth/{provider}/login")
async def oauth_login(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled list first so a spoofed
    name can never produce a redirect to an arbitrary URL.
    """
    _require_provider(provider)
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback", response_model=TokenPairResponse)
async def oauth_callback(request: Request, provider: str) -> JSONResponse:
    """Exchange the authorization code and log the linked user in.

    An identity that is not linked to any user is a 404 (user_not_found);
    no account is created here.
    """
    _require_provider(provider)
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("OAuth token exchange failed for provider %r: %s", provider, exc.error)
        raise AuthenticationFailure("Federated login failed.") from exc

    try:
        external_id = get_external_id(provider, token)
    except ValueError as exc:
        logger.warning("OAuth login rejected for provider %r: %s", provider, exc)
        raise AuthenticationFailure("Federated login failed.") from exc

    sessions: SessionService = request.app.state.session_service
    return _token_response(sessions.login_federated(external_id))
