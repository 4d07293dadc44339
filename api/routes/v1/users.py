"""
api/routes/v1/users.py -- Current-user profile and team user administration.

Routes:
  GET    /api/v1/users/info                         -- caller + team (any authenticated user)
  PATCH  /api/v1/users                              -- update own profile (user:update)
  GET    /api/v1/teams/{team_id}/users              -- list team users (user:read)
  POST   /api/v1/teams/{team_id}/users              -- add a user to the team (user:create)
  DELETE /api/v1/teams/{team_id}/users/{user_id}    -- soft-delete a user (user:delete)

Every /teams/{team_id} route also requires team_id to be the caller's team.
A user cannot delete their own account through this API.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import TeamResponse, UserCreate, UserInfoResponse, UserListResponse, UserPatchRequest, UserResponse
from auth.dependencies import RequestContext, get_request_context, require_permission, require_team_member
from auth.models import UserPatch
from auth.permissions import PERM_USER_CREATE, PERM_USER_DELETE, PERM_USER_READ, PERM_USER_UPDATE
from auth.users import UserService

router = APIRouter()


@router.get("/users/info", response_model=UserInfoResponse)
def user_info(ctx: RequestContext = Depends(get_request_context)) -> UserInfoResponse:
    return UserInfoResponse(user=UserResponse.from_user(ctx.user), team=TeamResponse.from_team(ctx.team))


@router.patch("/users", response_model=UserResponse)
def update_profile(
    request: Request,
    body: UserPatchRequest,
    ctx: RequestContext = Depends(require_permission(PERM_USER_UPDATE)),
) -> UserResponse:
    users: UserService = request.app.state.user_service
    user = users.update_profile(ctx.user.id, UserPatch(**body.model_dump(exclude_unset=True)))
    return UserResponse.from_user(user)


@router.get("/teams/{team_id}/users", response_model=UserListResponse)
def list_team_users(
    request: Request,
    team_id: int,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    ctx: RequestContext = Depends(require_permission(PERM_USER_READ)),
) -> UserListResponse:
    require_team_member(team_id, ctx)
    users: UserService = request.app.state.user_service
    items, total = users.list_by_team(team_id, offset=offset, limit=limit)
    return UserListResponse(
        items=[UserResponse.from_user(u) for u in items],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.post("/teams/{team_id}/users", response_model=UserResponse, status_code=201)
def create_team_user(
    request: Request,
    team_id: int,
    body: UserCreate,
    ctx: RequestContext = Depends(require_permission(PERM_USER_CREATE)),
) -> UserResponse:
    require_team_member(team_id, ctx)
    users: UserService = request.app.state.user_service
    user = users.create_in_team(
        team_id,
        name=body.name,
        email=body.email,
        password=body.password,
        role_id=body.role_id,
        external_id=body.external_id,
    )
    return UserResponse.from_user(user)


@router.delete("/teams/{team_id}/users/{user_id}", status_code=204)
def delete_team_user(
    request: Request,
    team_id: int,
    user_id: int,
    ctx: RequestContext = Depends(require_permission(PERM_USER_DELETE)),
) -> None:
    require_team_member(team_id, ctx)
    if user_id == ctx.user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "cannot_delete_self", "message": "You cannot delete your own account."},
        )
    users: UserService = request.app.state.user_service
    users.delete(team_id, user_id)
