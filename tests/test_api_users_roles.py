"""
tests/test_api_users_roles.py -- Integration tests for user and role administration.

Coverage:
  - Auth Gate: missing, garbage and refresh-as-bearer tokens all give one
    uniform 401; a soft-deleted user's access token stops working; a
    storage failure while resolving the caller is a 500, not a 401
  - /users/info and PATCH /users (unknown keys are a 422)
  - team guard: another team's id is 403 even for an Admin
  - permission guard: a role without the permission is 403
  - team user listing, creation and deletion (self-delete refused)
  - role CRUD with the Admin role protected, and /permissions
"""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from auth.errors import StorageFailure
from auth.permissions import ALL_PERMISSIONS, PERM_USER_READ


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient, email: str, password: str = "pw123") -> dict:
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


@pytest.fixture
def admin(api_client) -> dict:
    """Register a fresh team and return its Admin user plus headers."""
    client, _store, _notifier = api_client
    email = f"admin-{uuid.uuid4().hex[:8]}@example.com"
    resp = client.post(
        "/api/v1/auth/register",
        json={"team_name": "Acme", "name": "Admin", "email": email, "password": "pw123"},
    )
    assert resp.status_code == 201, resp.text
    user = resp.json()
    tokens = _login(client, email)
    return {"user": user, "team_id": user["organization_id"], "headers": _bearer(tokens["access_token"]), **tokens}


def _create_role(client: TestClient, admin: dict, name: str, permission_ids: list[str]) -> dict:
    resp = client.post(
        f"/api/v1/teams/{admin['team_id']}/roles",
        json={"name": name, "description": "", "permission_ids": permission_ids},
        headers=admin["headers"],
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _create_member(client: TestClient, admin: dict, role_id: str) -> dict:
    email = f"member-{uuid.uuid4().hex[:8]}@example.com"
    resp = client.post(
        f"/api/v1/teams/{admin['team_id']}/users",
        json={"name": "Member", "email": email, "password": "pw123", "role_id": role_id},
        headers=admin["headers"],
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestAuthGate:
    def test_missing_header(self, api_client) -> None:
        client, _store, _notifier = api_client
        resp = client.get("/api/v1/users/info")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_and_refresh_tokens_look_the_same(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        garbage = client.get("/api/v1/users/info", headers=_bearer("not.a.jwt"))
        wrong_type = client.get("/api/v1/users/info", headers=_bearer(admin["refresh_token"]))
        assert garbage.status_code == wrong_type.status_code == 401
        assert garbage.json() == wrong_type.json()
        assert garbage.json()["error"]["code"] == "unauthorized"

    def test_non_bearer_scheme(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.get("/api/v1/users/info", headers={"Authorization": f"Basic {admin['access_token']}"})
        assert resp.status_code == 401

    def test_deleted_user_token_stops_working(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        role = _create_role(client, admin, "Reader", [PERM_USER_READ.id])
        member = _create_member(client, admin, role["id"])
        member_headers = _bearer(_login(client, member["email"])["access_token"])
        assert client.get("/api/v1/users/info", headers=member_headers).status_code == 200

        resp = client.delete(f"/api/v1/teams/{admin['team_id']}/users/{member['id']}", headers=admin["headers"])
        assert resp.status_code == 204
        assert client.get("/api/v1/users/info", headers=member_headers).status_code == 401

    def test_storage_failure_is_500_not_401(self, api_client, admin, monkeypatch) -> None:
        client, store, _notifier = api_client

        def broken_get_user(*args, **kwargs):
            raise StorageFailure(detail="simulated")

        monkeypatch.setattr(store, "get_user", broken_get_user)
        resp = client.get("/api/v1/users/info", headers=admin["headers"])
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "storage_failure"
        assert resp.json()["error"]["detail"] is None


class TestCurrentUser:
    def test_info(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.get("/api/v1/users/info", headers=admin["headers"])
        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["id"] == admin["user"]["id"]
        assert body["team"]["id"] == admin["team_id"]
        assert body["team"]["display_name"] == "Acme"
        assert body["user"]["role"]["name"] == "Admin"

    def test_patch_profile(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.patch("/api/v1/users", json={"lang": "ja", "phone_number": "+81-3"}, headers=admin["headers"])
        assert resp.status_code == 200
        assert resp.json()["lang"] == "ja"
        assert resp.json()["name"] == "Admin"

    def test_patch_external_id_linked_elsewhere_is_409(self, api_client, admin) -> None:
        client, store, _notifier = api_client
        subject = f"line-{uuid.uuid4().hex[:8]}"
        role = _create_role(client, admin, "Reader", [])
        resp = client.post(
            f"/api/v1/teams/{admin['team_id']}/users",
            json={"name": "Linked", "email": f"{subject}@example.com", "password": "pw", "role_id": role["id"], "external_id": subject},
            headers=admin["headers"],
        )
        assert resp.status_code == 201, resp.text
        member_id = resp.json()["id"]

        resp = client.patch("/api/v1/users", json={"external_id": subject}, headers=admin["headers"])
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "external_id_taken"
        assert store.get_user_by_external_id(subject).id == member_id

    def test_patch_unknown_key_is_422(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.patch("/api/v1/users", json={"role_id": "x"}, headers=admin["headers"])
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestTeamUsers:
    def test_list_and_create(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        role = _create_role(client, admin, "Reader", [PERM_USER_READ.id])
        member = _create_member(client, admin, role["id"])

        resp = client.get(f"/api/v1/teams/{admin['team_id']}/users", headers=admin["headers"])
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert {u["id"] for u in body["items"]} == {admin["user"]["id"], member["id"]}

    def test_other_team_is_forbidden(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.get(f"/api/v1/teams/{admin['team_id'] + 1000}/users", headers=admin["headers"])
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_role_without_permission_is_forbidden(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        role = _create_role(client, admin, "Reader", [PERM_USER_READ.id])
        member = _create_member(client, admin, role["id"])
        member_headers = _bearer(_login(client, member["email"])["access_token"])

        listing = client.get(f"/api/v1/teams/{admin['team_id']}/users", headers=member_headers)
        assert listing.status_code == 200
        delete = client.delete(f"/api/v1/teams/{admin['team_id']}/users/{admin['user']['id']}", headers=member_headers)
        assert delete.status_code == 403

    def test_duplicate_member_email(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        role = _create_role(client, admin, "Reader", [])
        resp = client.post(
            f"/api/v1/teams/{admin['team_id']}/users",
            json={"name": "Dup", "email": admin["user"]["email"], "password": "pw", "role_id": role["id"]},
            headers=admin["headers"],
        )
        assert resp.status_code == 409

    def test_cannot_delete_self(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.delete(f"/api/v1/teams/{admin['team_id']}/users/{admin['user']['id']}", headers=admin["headers"])
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "cannot_delete_self"


class TestRoles:
    def test_role_crud(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        base = f"/api/v1/teams/{admin['team_id']}/roles"
        role = _create_role(client, admin, "Reader", [PERM_USER_READ.id])
        assert [p["name"] for p in role["permissions"]] == ["user:read"]

        updated = client.put(
            f"{base}/{role['id']}",
            json={"name": "Auditor", "description": "read only", "permission_ids": []},
            headers=admin["headers"],
        )
        assert updated.status_code == 200
        assert updated.json()["name"] == "Auditor"
        assert updated.json()["permissions"] == []

        listing = client.get(base, headers=admin["headers"]).json()
        assert {r["name"] for r in listing["items"]} == {"Admin", "Auditor"}

        assert client.delete(f"{base}/{role['id']}", headers=admin["headers"]).status_code == 204
        assert client.delete(f"{base}/{role['id']}", headers=admin["headers"]).status_code == 404

    def test_unknown_permission_id_is_404(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.post(
            f"/api/v1/teams/{admin['team_id']}/roles",
            json={"name": "Bad", "permission_ids": ["does-not-exist"]},
            headers=admin["headers"],
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "permission_not_found"

    def test_admin_role_is_immutable(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        admin_role_id = admin["user"]["role_id"]
        base = f"/api/v1/teams/{admin['team_id']}/roles/{admin_role_id}"

        deleted = client.delete(base, headers=admin["headers"])
        renamed = client.put(base, json={"name": "Boss", "permission_ids": []}, headers=admin["headers"])
        assert deleted.status_code == renamed.status_code == 409
        assert deleted.json()["error"]["code"] == "admin_role_immutable"

    def test_permission_catalog(self, api_client, admin) -> None:
        client, _store, _notifier = api_client
        resp = client.get("/api/v1/permissions", headers=admin["headers"])
        assert resp.status_code == 200
        assert {p["id"] for p in resp.json()} == {p.id for p in ALL_PERMISSIONS}

    def test_permission_catalog_requires_auth(self, api_client) -> None:
        client, _store, _notifier = api_client
        assert client.get("/api/v1/permissions").status_code == 401
