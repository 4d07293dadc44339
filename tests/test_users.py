"""
tests/test_users.py -- UserService: sign-up, team membership, profile, delete.
"""

from __future__ import annotations

import pytest

from auth.errors import DuplicateEmail, DuplicateExternalId, PrincipalNotFound, RoleNotFound
from auth.models import ROLE_ADMIN, UserPatch
from auth.permissions import ALL_PERMISSIONS
from auth.store import IdentityStore
from auth.users import UserService


class TestSignUp:
    def test_creates_team_admin_role_and_user(self, users: UserService, store: IdentityStore) -> None:
        user = users.sign_up("Acme", "Alice", "Alice@Example.com", "pw123")

        assert user.email == "alice@example.com"
        assert store.get_team(user.organization_id).display_name == "Acme"
        assert user.role.name == ROLE_ADMIN
        assert len(user.role.permissions) == len(ALL_PERMISSIONS)
        assert user.hashed_password != "pw123"

    def test_duplicate_email_creates_nothing(self, users: UserService, store: IdentityStore) -> None:
        first = users.sign_up("Acme", "Alice", "alice@example.com", "pw123")
        with pytest.raises(DuplicateEmail):
            users.sign_up("Globex", "Alice Again", "ALICE@example.com", "pw")
        # The rolled-back team never got an id, so the next one follows the first.
        second = users.sign_up("Initech", "Bob", "bob@example.com", "pw")
        assert store.get_team(first.organization_id + 1).display_name == "Initech"
        assert second.organization_id == first.organization_id + 1


class TestTeamMembers:
    def test_create_in_team_with_team_role(self, users: UserService, roles, signup) -> None:
        admin = signup()
        role = roles.create(admin.organization_id, "Viewer", "", [])
        member = users.create_in_team(admin.organization_id, "Bob", "bob@example.com", "pw", role.id, external_id="line-9")
        assert member.organization_id == admin.organization_id
        assert member.role_id == role.id
        assert member.external_id == "line-9"

    def test_external_id_already_linked_refused(self, users: UserService, roles, store: IdentityStore, signup) -> None:
        admin = signup()
        role = roles.create(admin.organization_id, "Viewer", "", [])
        bob = users.create_in_team(admin.organization_id, "Bob", "bob@example.com", "pw", role.id, external_id="line-9")
        with pytest.raises(DuplicateExternalId):
            users.create_in_team(admin.organization_id, "Eve", "eve@example.com", "pw", role.id, external_id="line-9")
        assert store.get_user_by_email("eve@example.com") is None
        assert store.get_user_by_external_id("line-9").id == bob.id

    def test_external_id_freed_by_delete(self, users: UserService, roles, signup) -> None:
        admin = signup()
        role = roles.create(admin.organization_id, "Viewer", "", [])
        bob = users.create_in_team(admin.organization_id, "Bob", "bob@example.com", "pw", role.id, external_id="line-9")
        users.delete(admin.organization_id, bob.id)
        eve = users.create_in_team(admin.organization_id, "Eve", "eve@example.com", "pw", role.id, external_id="line-9")
        assert eve.external_id == "line-9"

    def test_role_from_other_team_refused(self, users: UserService, roles, signup) -> None:
        alice = signup("alice@example.com", team_name="Acme")
        bob = signup("bob@example.com", team_name="Globex")
        foreign = roles.create(bob.organization_id, "Viewer", "", [])
        with pytest.raises(RoleNotFound):
            users.create_in_team(alice.organization_id, "Eve", "eve@example.com", "pw", foreign.id)

    def test_list_by_team(self, users: UserService, roles, signup) -> None:
        admin = signup()
        role = roles.create(admin.organization_id, "Viewer", "", [])
        users.create_in_team(admin.organization_id, "Bob", "bob@example.com", "pw", role.id)
        signup("carol@example.com", team_name="Other")
        items, total = users.list_by_team(admin.organization_id)
        assert total == 2
        assert {u.email for u in items} == {"alice@example.com", "bob@example.com"}

    def test_delete_is_soft_and_team_scoped(self, users: UserService, roles, store: IdentityStore, signup) -> None:
        admin = signup()
        other = signup("zed@example.com", team_name="Other")
        role = roles.create(admin.organization_id, "Viewer", "", [])
        bob = users.create_in_team(admin.organization_id, "Bob", "bob@example.com", "pw", role.id)

        with pytest.raises(PrincipalNotFound):
            users.delete(other.organization_id, bob.id)

        users.delete(admin.organization_id, bob.id)
        with pytest.raises(PrincipalNotFound):
            users.get(bob.id)
        with pytest.raises(PrincipalNotFound):
            users.delete(admin.organization_id, bob.id)


class TestProfile:
    def test_patch_sets_only_given_fields(self, users: UserService, signup) -> None:
        alice = signup()
        updated = users.update_profile(alice.id, UserPatch(phone_number="+81-90-0000-0000", lang="ja"))
        assert updated.phone_number == "+81-90-0000-0000"
        assert updated.lang == "ja"
        assert updated.name == alice.name

    def test_empty_patch_is_a_no_op(self, users: UserService, signup) -> None:
        alice = signup()
        assert users.update_profile(alice.id, UserPatch()).email == "alice@example.com"

    def test_email_change_normalized_and_unique(self, users: UserService, signup) -> None:
        alice = signup()
        signup("bob@example.com", team_name="Other")
        assert users.update_profile(alice.id, UserPatch(email="Alice.New@Example.com")).email == "alice.new@example.com"
        with pytest.raises(DuplicateEmail):
            users.update_profile(alice.id, UserPatch(email="BOB@example.com"))

    def test_external_id_change_must_be_unlinked(self, users: UserService, store: IdentityStore, signup) -> None:
        alice = signup()
        bob = signup("bob@example.com", team_name="Other")
        users.update_profile(bob.id, UserPatch(external_id="oidc-1"))
        with pytest.raises(DuplicateExternalId):
            users.update_profile(alice.id, UserPatch(external_id="oidc-1"))
        assert store.get_user_by_external_id("oidc-1").id == bob.id
        # Re-saving your own subject is not a clash.
        assert users.update_profile(bob.id, UserPatch(external_id="oidc-1", lang="en")).lang == "en"

    def test_patch_missing_user(self, users: UserService) -> None:
        with pytest.raises(PrincipalNotFound):
            users.update_profile(999, UserPatch(name="Ghost"))
