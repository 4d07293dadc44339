"""
api/routes/v1/roles.py -- Team role administration and the permission catalog.

Routes:
  GET    /api/v1/teams/{team_id}/roles             -- list roles (role:read)
  POST   /api/v1/teams/{team_id}/roles             -- create a role (role:create)
  PUT    /api/v1/teams/{team_id}/roles/{role_id}   -- replace name/description/permissions (role:update)
  DELETE /api/v1/teams/{team_id}/roles/{role_id}   -- delete a role (role:delete)
  GET    /api/v1/permissions                       -- the permission catalog (any authenticated user)

The Admin role is refused by PUT and DELETE with 409 admin_role_immutable.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import PermissionResponse, RoleListResponse, RoleResponse, RoleWrite
from auth.dependencies import RequestContext, get_request_context, require_permission, require_team_member
from auth.permissions import PERM_ROLE_CREATE, PERM_ROLE_DELETE, PERM_ROLE_READ, PERM_ROLE_UPDATE
from auth.roles import RoleService

router = APIRouter()


@router.get("/teams/{team_id}/roles", response_model=RoleListResponse)
def list_roles(
    request: Request,
    team_id: int,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    ctx: RequestContext = Depends(require_permission(PERM_ROLE_READ)),
) -> RoleListResponse:
    require_team_member(team_id, ctx)
    roles: RoleService = request.app.state.role_service
    items, total = roles.list_by_team(team_id, offset=offset, limit=limit)
    return RoleListResponse(
        items=[RoleResponse.from_role(r) for r in items],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.post("/teams/{team_id}/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    team_id: int,
    body: RoleWrite,
    ctx: RequestContext = Depends(require_permission(PERM_ROLE_CREATE)),
) -> RoleResponse:
    require_team_member(team_id, ctx)
    roles: RoleService = request.app.state.role_service
    return RoleResponse.from_role(roles.create(team_id, body.name, body.description, body.permission_ids))


@router.put("/teams/{team_id}/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    team_id: int,
    role_id: str,
    body: RoleWrite,
    ctx: RequestContext = Depends(require_permission(PERM_ROLE_UPDATE)),
) -> RoleResponse:
    require_team_member(team_id, ctx)
    roles: RoleService = request.app.state.role_service
    return RoleResponse.from_role(roles.update(team_id, role_id, body.name, body.description, body.permission_ids))


@router.delete("/teams/{team_id}/roles/{role_id}", status_code=204)
def delete_role(
    request: Request,
    team_id: int,
    role_id: str,
    ctx: RequestContext = Depends(require_permission(PERM_ROLE_DELETE)),
) -> None:
    require_team_member(team_id, ctx)
    roles: RoleService = request.app.state.role_service
    roles.delete(team_id, role_id)


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
) -> list[PermissionResponse]:
    return [PermissionResponse.from_permission(p) for p in request.app.state.identity_store.list_permissions()]
