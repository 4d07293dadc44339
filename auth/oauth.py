"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration for federated login.

build_oauth() is called once by the API lifespan with the resolved Settings
and the registry is stored on app.state. Only providers with both client ID
and secret configured get registered.

Supported providers:
  line -- LINE Login v2.1, OIDC discovery.
  oidc -- Generic OIDC discovery (Okta, Azure AD, Keycloak, Authentik, etc.)

The callback route exchanges the code, calls get_external_id() and hands the
provider subject to SessionService.login_federated(). No account is ever
created from a federated login; an unlinked subject is PrincipalNotFound.

Security notes:
  OAuth state parameter (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware; the session stores the state between the authorization
  redirect and the callback.

  When a provider reports an email together with email_verified=false the
  login is refused, even though only the subject is used for the lookup: an
  account whose provider-side email is unconfirmed is not trusted.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import Settings

logger = logging.getLogger("teamauth.oauth")

LINE_DISCOVERY_URL = "https://access.line.me/.well-known/openid-configuration"


def build_oauth(settings: Settings) -> OAuth:
    """Return an OAuth registry with every configured provider registered."""
    oauth = OAuth()

    if settings.line_client_id and settings.line_client_secret:
        oauth.register(
            name="line",
            client_id=settings.line_client_id,
            client_secret=settings.line_client_secret,
            server_metadata_url=LINE_DISCOVERY_URL,
            client_kwargs={"scope": "openid profile email"},
        )
        logger.info("LINE OAuth provider registered")

    if settings.oidc_client_id and settings.oidc_client_secret and settings.oidc_discovery_url:
        oauth.register(
            name="oidc",
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            server_metadata_url=settings.oidc_discovery_url,
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Generic OIDC provider registered (display name: %s)", settings.oidc_display_name)

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return [{"name", "label"}] for every configured provider.

    Used by GET /api/v1/auth/providers so clients can render login buttons.
    """
    providers: list[dict] = []
    if settings.line_client_id and settings.line_client_secret:
        providers.append({"name": "line", "label": "LINE"})
    if settings.oidc_client_id and settings.oidc_client_secret and settings.oidc_discovery_url:
        providers.append({"name": "oidc", "label": settings.oidc_display_name})
    return providers


def get_external_id(provider: str, token: dict) -> str:
    """Extract the provider subject (the user's external_id) from a token response.

    Raises:
        ValueError: no userinfo/sub in the response, or the provider reports
            an unverified email.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if userinfo.get("email") and userinfo.get("email_verified") is False:
        raise ValueError(f"{provider} OAuth: email is not verified")

    subject = userinfo.get("sub")
    if not subject:
        raise ValueError(f"{provider} OAuth: missing sub claim in userinfo")
    return str(subject)
