"""
Tests for accounts, password hashing and bearer tokens.
"""
from datetime import datetime, timedelta, timezone

import jwt
import pytest

import errand_bot.config as config_mod
from errand_bot.auth import create_access_token, decode_access_token, hash_password, verify_password
from errand_bot.errors import AuthenticationError, ConfigurationError


class TestPasswordHashing:
    """Tests for hash_password / verify_password."""

    def test_round_trip(self):
        stored = hash_password("correct horse")
        assert stored.startswith("pbkdf2_sha256$")
        assert verify_password("correct horse", stored)
        assert not verify_password("wrong horse", stored)

    def test_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_garbage_hash(self):
        assert not verify_password("anything", "not-a-hash")
        assert not verify_password("anything", "md5$1$salt$abc")


class TestTokens:
    """Tests for create_access_token / decode_access_token."""

    def test_round_trip(self, jwt_secret):
        assert decode_access_token(create_access_token(42)) == 42

    def test_expired(self, jwt_secret):
        token = create_access_token(42, expires_minutes=-1)
        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(token)
        assert exc_info.value.message == "Not authorized, token expired"

    def test_wrong_secret(self, jwt_secret):
        token = jwt.encode(
            {"sub": "42", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
            "another-secret",
            algorithm="HS256",
        )
        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(token)
        assert exc_info.value.message == "Not authorized, token failed"

    def test_missing_secret(self, monkeypatch):
        monkeypatch.setattr(config_mod, "JWT_SECRET", "")
        with pytest.raises(ConfigurationError):
            create_access_token(42)


# =============================================================================
# /auth routes
# =============================================================================

class TestAuthRoutes:
    """Tests for /auth/register, /auth/login and /auth/me."""

    def test_register(self, client):
        resp = client.post("/auth/register", json={"email": "New.User@Mailbox.org", "password": "hunter22"})

        assert resp.status_code == 201
        data = resp.json()
        assert data["success"] is True
        assert data["user"]["email"] == "new.user@mailbox.org"
        assert decode_access_token(data["token"]) == data["user"]["id"]

    def test_register_duplicate(self, client, auth_headers):
        resp = client.post("/auth/register", json={"email": "errand.user@mailbox.org", "password": "another1"})

        assert resp.status_code == 400
        assert resp.json()["message"] == "User already exists"

    def test_register_short_password(self, client):
        resp = client.post("/auth/register", json={"email": "short@mailbox.org", "password": "abc"})
        assert resp.status_code == 400

    def test_register_invalid_email(self, client):
        resp = client.post("/auth/register", json={"email": "not-an-email", "password": "hunter22"})
        assert resp.status_code == 400

    def test_login(self, client, auth_headers):
        resp = client.post("/auth/login", json={"email": "errand.user@mailbox.org", "password": "s3cret-pass"})

        assert resp.status_code == 200
        assert resp.json()["token"]

    def test_login_wrong_password(self, client, auth_headers):
        resp = client.post("/auth/login", json={"email": "errand.user@mailbox.org", "password": "nope-nope"})

        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid credentials"

    def test_login_unknown_user(self, client):
        resp = client.post("/auth/login", json={"email": "ghost@mailbox.org", "password": "whatever"})
        assert resp.status_code == 401

    def test_me(self, client, auth_headers):
        headers, user_id = auth_headers

        resp = client.get("/auth/me", headers=headers)

        assert resp.status_code == 200
        assert resp.json()["user"] == {"id": user_id, "email": "errand.user@mailbox.org"}

    def test_me_without_token(self, client):
        resp = client.get("/auth/me")

        assert resp.status_code == 401
        assert resp.json()["detail"] == "Not authorized, no token"

    def test_me_for_deleted_user(self, client):
        headers = {"Authorization": f"Bearer {create_access_token(999)}"}
        assert client.get("/auth/me", headers=headers).status_code == 401
