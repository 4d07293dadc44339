"""
auth/dependencies.py -- FastAPI Depends() helpers: the Auth Gate.

Every protected route depends on get_request_context(), which:
  1. Reads "Authorization: Bearer <token>".
  2. Parses it as an ACCESS token (signature, expiry, purpose).
  3. Resolves the subject to a live user and that user's team.
  4. Returns a RequestContext(user, team) the handler receives explicitly.

Any failure in steps 1-3 (missing header, bad signature, expired, refresh
token presented, deleted user, user without a team) becomes the same generic
401 so a client cannot tell which check failed. StorageFailure is never
collapsed: it propagates to the 500 handler.

require_permission(name) layers the Permission Evaluator on top (403), and
require_team_member() checks a {team_id} path parameter against the caller.

Services are built once in the API lifespan and read from app.state; nothing
here holds global state.

Layer rule: auth/dependencies.py may import from fastapi (Depends/Request)
because it is part of the FastAPI dependency injection system. It does not
import from api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, Request

from auth.errors import AuthenticationFailure, PermissionDenied
from auth.models import ACCESS, Permission, Team, User

logger = logging.getLogger("teamauth.gate")


@dataclass
class RequestContext:
    """The authenticated caller, threaded explicitly into handlers."""

    user: User
    team: Team


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_request_context(request: Request) -> RequestContext:
    """Authenticate the request. Raises a generic 401 AuthenticationFailure.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(ctx: RequestContext = Depends(get_request_context)): ...
    """
    state = request.app.state
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationFailure("Authentication required.")

    try:
        claims = state.token_issuer.parse(token, ACCESS)
    except AuthenticationFailure as exc:
        logger.info("Rejected bearer token: %s", exc.error_code)
        raise AuthenticationFailure("Authentication required.") from None

    user = state.identity_store.get_user(claims.subject, with_role=True)
    team = state.identity_store.get_team(user.organization_id) if user is not None else None
    if user is None or team is None:
        logger.info("Rejected bearer token: subject %s not resolvable", claims.subject)
        raise AuthenticationFailure("Authentication required.")

    return RequestContext(user=user, team=team)


def require_permission(permission: Permission):
    """Dependency factory: the caller's role must grant permission, else 403.

        @router.get("/teams/{team_id}/users")
        def route(ctx: RequestContext = Depends(require_permission(PERM_USER_READ))): ...
    """

    def _check(request: Request, ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
        if not request.app.state.permission_evaluator.has_permission(ctx.user.id, permission.name):
            logger.info("Permission denied: user_id=%s permission=%s", ctx.user.id, permission.name)
            raise PermissionDenied(f"Missing permission {permission.name}.")
        return ctx

    return _check


def require_team_member(team_id: int, ctx: RequestContext) -> None:
    """Raise 403 unless the {team_id} in the path is the caller's own team."""
    if ctx.team.id != team_id:
        raise PermissionDenied("You are not a member of this team.")
