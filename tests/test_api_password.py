"""
tests/test_api_password.py -- Integration tests for /api/v1/password routes.

The notifier in app.state is a MagicMock, so the reset token is read back
from the call it received instead of from an inbox.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auth.errors import NotificationFailed


def _register(client: TestClient, email: str, password: str = "pw123") -> None:
    resp = client.post(
        "/api/v1/auth/register",
        json={"team_name": "Acme", "name": "Someone", "email": email, "password": password},
    )
    assert resp.status_code == 201, resp.text


def _sent_token(notifier) -> str:
    return notifier.send_password_reset.call_args.args[0].token


@pytest.fixture
def fresh_notifier(api_client):
    _client, _store, notifier = api_client
    notifier.reset_mock(side_effect=True)
    return notifier


class TestRequestReset:
    def test_unknown_email_is_200_and_sends_nothing(self, api_client, fresh_notifier) -> None:
        client, store, _ = api_client
        resp = client.post("/api/v1/password/password-reset", params={"email": "bob@example.com"})
        assert resp.status_code == 200
        fresh_notifier.send_password_reset.assert_not_called()
        assert store.get_password_reset("bob@example.com") is None

    def test_known_email_is_201_with_same_message(self, api_client, fresh_notifier) -> None:
        client, _store, _ = api_client
        _register(client, "known@example.com")
        known = client.post("/api/v1/password/password-reset", params={"email": "known@example.com"})
        unknown = client.post("/api/v1/password/password-reset", params={"email": "nobody@example.com"})
        assert known.status_code == 201
        assert known.json() == unknown.json()
        fresh_notifier.send_password_reset.assert_called_once()

    def test_invalid_email_is_422(self, api_client, fresh_notifier) -> None:
        client, _store, _ = api_client
        resp = client.post("/api/v1/password/password-reset", params={"email": "nope"})
        assert resp.status_code == 422

    def test_mail_failure_is_502(self, api_client, fresh_notifier) -> None:
        client, store, _ = api_client
        _register(client, "bounce@example.com")
        fresh_notifier.send_password_reset.side_effect = NotificationFailed()
        resp = client.post("/api/v1/password/password-reset", params={"email": "bounce@example.com"})
        assert resp.status_code == NotificationFailed.status_code
        assert resp.json()["error"]["code"] == "notification_failed"
        assert store.get_password_reset("bounce@example.com") is not None


class TestResetFlow:
    def test_full_reset_then_login_with_new_password(self, api_client, fresh_notifier) -> None:
        client, _store, _ = api_client
        _register(client, "flow@example.com", "old-pw")
        client.post("/api/v1/password/password-reset", params={"email": "flow@example.com"})
        token = _sent_token(fresh_notifier)
        query = {"email": "flow@example.com", "token": token}

        assert client.get("/api/v1/password/validate-password-reset", params=query).json() == {"valid": True}
        assert client.get("/api/v1/password/check-password-reset-expire", params=query).json() == {"expired": False}

        resp = client.patch(
            "/api/v1/password/password",
            json={"email": "flow@example.com", "token": token, "password": "new-pw"},
        )
        assert resp.status_code == 200

        old = client.post("/api/v1/auth/login", json={"email": "flow@example.com", "password": "old-pw"})
        new = client.post("/api/v1/auth/login", json={"email": "flow@example.com", "password": "new-pw"})
        assert old.status_code == 401
        assert new.status_code == 200

        # The record was consumed.
        assert client.get("/api/v1/password/validate-password-reset", params=query).json() == {"valid": False}
        assert client.get("/api/v1/password/check-password-reset-expire", params=query).json() == {"expired": True}

    def test_wrong_token_is_rejected(self, api_client, fresh_notifier) -> None:
        client, _store, _ = api_client
        _register(client, "forged@example.com", "old-pw")
        client.post("/api/v1/password/password-reset", params={"email": "forged@example.com"})
        resp = client.patch(
            "/api/v1/password/password",
            json={"email": "forged@example.com", "token": "forged", "password": "new-pw"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_reset_token"

    def test_validate_requires_token(self, api_client, fresh_notifier) -> None:
        client, _store, _ = api_client
        resp = client.get("/api/v1/password/validate-password-reset", params={"email": "a@example.com"})
        assert resp.status_code == 422
