"""
Auth Tests — password hashing, JWTs and the auth endpoints.

Tests cover:
  - bcrypt hashing + werkzeug legacy hashes
  - JWT pair generation, refresh, expiry
  - login / refresh / set-password / me
  - disabled accounts and bad tokens
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import jwt as pyjwt
from werkzeug.security import generate_password_hash

from conftest import TEST_PASSWORD, auth_headers

from buildtrack.models import db
from buildtrack.models.audit import AuditLog
from buildtrack.services import user_service
from buildtrack.services.jwt_service import ALGORITHM, decode_access_token, generate_token_pair
from buildtrack.utils.crypto import hash_password, hash_token, verify_password


# ═══════════════════════════════════════════════════════════════
# Crypto
# ═══════════════════════════════════════════════════════════════

class TestPasswordHashing:
    def test_bcrypt_roundtrip(self):
        hashed = hash_password("s3cret-pass")
        assert hashed.startswith("$2b$")
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_legacy_werkzeug_hash(self):
        hashed = generate_password_hash("legacy-pass")
        assert verify_password("legacy-pass", hashed)

    def test_empty_hash_never_verifies(self):
        assert not verify_password("anything", None)


class TestTokens:
    def test_pair_contains_both_tokens(self, app):
        pair = generate_token_pair("uid-1", "staff")
        assert pair["token_type"] == "Bearer"
        payload = decode_access_token(pair["access_token"])
        assert payload["sub"] == "uid-1"
        assert payload["role"] == "staff"
        assert payload["type"] == "access"

    def test_refresh_token_is_not_an_access_token(self, client, staff):
        pair = generate_token_pair(staff.uid, staff.role)
        res = client.get("/api/v1/auth/me",
                         headers={"Authorization": f"Bearer {pair['refresh_token']}"})
        assert res.status_code == 401


# ═══════════════════════════════════════════════════════════════
# Endpoints
# ═══════════════════════════════════════════════════════════════

class TestLogin:
    def test_login_success(self, client, staff):
        res = client.post("/api/v1/auth/login",
                          json={"email": "staff@example.com", "password": TEST_PASSWORD})
        assert res.status_code == 200
        data = res.get_json()
        assert data["user"]["uid"] == staff.uid
        assert data["access_token"] and data["refresh_token"]
        assert db.session.get(type(staff), staff.uid).last_sign_in_at is not None

    def test_login_email_case_insensitive(self, client, staff):
        res = client.post("/api/v1/auth/login",
                          json={"email": "STAFF@Example.com", "password": TEST_PASSWORD})
        assert res.status_code == 200

    def test_bad_password(self, client, staff):
        res = client.post("/api/v1/auth/login",
                          json={"email": "staff@example.com", "password": "nope-nope"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_unknown_email(self, client):
        res = client.post("/api/v1/auth/login",
                          json={"email": "ghost@example.com", "password": TEST_PASSWORD})
        assert res.status_code == 401

    def test_missing_fields(self, client):
        res = client.post("/api/v1/auth/login", json={"email": "staff@example.com"})
        assert res.status_code == 400

    def test_disabled_user_cannot_login(self, client, staff):
        staff.disabled = True
        db.session.commit()
        res = client.post("/api/v1/auth/login",
                          json={"email": "staff@example.com", "password": TEST_PASSWORD})
        assert res.status_code == 401

    def test_client_login_records_activity(self, client, client_user):
        client.post("/api/v1/auth/login",
                    json={"email": "jo@example.com", "password": TEST_PASSWORD})
        assert AuditLog.query.filter_by(actor_uid=client_user.uid, action="login").count() == 1


class TestRefresh:
    def test_refresh_issues_new_pair(self, client, staff):
        pair = generate_token_pair(staff.uid, staff.role)
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": pair["refresh_token"]})
        assert res.status_code == 200
        assert res.get_json()["user"]["email"] == "staff@example.com"

    def test_access_token_rejected_for_refresh(self, client, staff):
        pair = generate_token_pair(staff.uid, staff.role)
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": pair["access_token"]})
        assert res.status_code == 401

    def test_expired_refresh(self, app, client, staff):
        now = datetime.now(timezone.utc)
        token = pyjwt.encode(
            {"sub": staff.uid, "type": "refresh", "iat": now - timedelta(days=10),
             "exp": now - timedelta(days=1)},
            app.config.get("JWT_SECRET_KEY") or app.config["SECRET_KEY"],
            algorithm=ALGORITHM,
        )
        res = client.post("/api/v1/auth/refresh", json={"refresh_token": token})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Refresh token expired"


class TestSetPassword:
    def _link_token(self, user):
        link = user_service.issue_password_reset_link(user)
        db.session.commit()
        return parse_qs(urlparse(link).query)["token"][0], link

    def test_link_shape(self, client_user):
        _, link = self._link_token(client_user)
        assert link.startswith("https://portal.test.local/login?")
        assert "mode=setPassword" in link

    def test_set_password_then_login(self, client, client_user):
        token, _ = self._link_token(client_user)
        res = client.post("/api/v1/auth/set-password",
                          json={"token": token, "password": "brand-new-pass"})
        assert res.status_code == 200
        assert res.get_json()["user"]["email_verified"] is True

        res = client.post("/api/v1/auth/login",
                          json={"email": "jo@example.com", "password": "brand-new-pass"})
        assert res.status_code == 200

    def test_token_is_single_use(self, client, client_user):
        token, _ = self._link_token(client_user)
        client.post("/api/v1/auth/set-password", json={"token": token, "password": "brand-new-pass"})
        res = client.post("/api/v1/auth/set-password",
                          json={"token": token, "password": "another-pass"})
        assert res.status_code == 400

    def test_only_hash_is_stored(self, client_user):
        token, _ = self._link_token(client_user)
        assert client_user.password_reset_token_hash == hash_token(token)
        assert token not in (client_user.password_reset_token_hash or "")

    def test_expired_link(self, client, client_user):
        token, _ = self._link_token(client_user)
        client_user.password_reset_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.session.commit()
        res = client.post("/api/v1/auth/set-password",
                          json={"token": token, "password": "brand-new-pass"})
        assert res.status_code == 400
        assert res.get_json()["error"] == "Link has expired"

    def test_short_password(self, client, client_user):
        token, _ = self._link_token(client_user)
        res = client.post("/api/v1/auth/set-password", json={"token": token, "password": "abc"})
        assert res.status_code == 400


class TestMe:
    def test_me_returns_capabilities(self, client, staff, staff_headers):
        res = client.get("/api/v1/auth/me", headers=staff_headers)
        assert res.status_code == 200
        data = res.get_json()
        assert data["uid"] == staff.uid
        assert "guitars.advance_stage" in data["capabilities"]
        assert "users.set_role" not in data["capabilities"]

    def test_client_has_no_capabilities(self, client, client_headers):
        res = client.get("/api/v1/auth/me", headers=client_headers)
        assert res.get_json()["capabilities"] == []

    def test_no_token(self, client):
        res = client.get("/api/v1/auth/me")
        assert res.status_code == 401

    def test_garbage_token(self, client):
        res = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_disabled_user_token_rejected(self, client, staff):
        headers = auth_headers(staff)
        staff.disabled = True
        db.session.commit()
        res = client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 401
