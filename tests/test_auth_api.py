"""Tests for authentication endpoints"""
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from artplatform.api.deps import get_oauth_client
from artplatform.config import settings
from artplatform.main import app
from artplatform.models.account import Account
from artplatform.services.credentials import ExternalProfile
from artplatform.services.oauth import OAuthError


def _register_and_verify(client: TestClient, outbox, data: dict) -> dict:
    client.post("/api/auth/register", json=data)
    response = client.get("/api/auth/verify-email", params={"token": outbox.token("verify-email")})
    assert response.status_code == 200
    return response.json()["data"]


def _login(client: TestClient, identifier: str = "alice", password: str = "Secret123!"):
    return client.post("/api/auth/login", json={"identifier": identifier, "password": password})


def _bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


def test_register(client: TestClient, outbox, sample_user_data: dict):
    """Test registration returns the public identity and sends a verification email"""
    response = client.post("/api/auth/register", json=sample_user_data)
    assert response.status_code == 201

    data = response.json()
    assert data["success"] is True
    assert data["data"]["user"]["email"] == "a@x.com"
    assert data["data"]["user"]["username"] == "alice"
    assert "password" not in data["data"]["user"]

    sent = outbox.for_template("verify-email")
    assert len(sent) == 1
    assert sent[0]["to"] == "a@x.com"
    assert sent[0]["context"]["verificationLink"].startswith("http://testserver/api/auth/verify-email?token=")


def test_register_duplicate(client: TestClient, sample_user_data: dict):
    client.post("/api/auth/register", json=sample_user_data)

    response = client.post("/api/auth/register", json={**sample_user_data, "username": "bob"})
    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": {"kind": "validation", "message": "Registration failed"},
    }


def test_register_rejects_short_password(client: TestClient, sample_user_data: dict):
    response = client.post("/api/auth/register", json={**sample_user_data, "password": "short"})
    assert response.status_code == 422


def test_register_rejects_password_over_72_bytes(client: TestClient, sample_user_data: dict):
    """Test 40 two-byte characters pass the length check but are still refused with a 400"""
    response = client.post("/api/auth/register", json={**sample_user_data, "password": "é" * 40})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Password must be at most 72 bytes"


def test_login_before_verification(client: TestClient, sample_user_data: dict):
    client.post("/api/auth/register", json=sample_user_data)

    response = _login(client)
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Please verify your email first"


def test_verify_then_login(client: TestClient, outbox, sample_user_data: dict):
    """Test the full register, verify, login flow"""
    data = _register_and_verify(client, outbox, sample_user_data)
    assert data["user"]["role"] == "user"
    assert data["tokens"]["access_token"]
    assert len(outbox.for_template("welcome")) == 1

    response = _login(client, "a@x.com")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["access_token"] and body["refresh_token"]


def test_verify_email_missing_token(client: TestClient):
    response = client.get("/api/auth/verify-email")
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Verification token is required"


def test_verify_email_bad_token(client: TestClient):
    response = client.get("/api/auth/verify-email", params={"token": "deadbeef"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid or expired verification token"


def test_resend_verification_same_response(client: TestClient, outbox, sample_user_data: dict):
    """Test resend does not reveal whether the email is registered"""
    client.post("/api/auth/register", json=sample_user_data)

    known = client.post("/api/auth/resend-verification", json={"email": "a@x.com"})
    unknown = client.post("/api/auth/resend-verification", json={"email": "nobody@x.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(outbox.for_template("verify-email")) == 2


def test_login_missing_fields(client: TestClient):
    response = client.post("/api/auth/login", json={"identifier": "alice"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Both identifier and password are required"


def test_login_unknown_user(client: TestClient):
    response = _login(client, "ghost")
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid credentials"


def test_login_unknown_user_with_long_password(client: TestClient):
    response = _login(client, "ghost", "€" * 30)
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid credentials"


def test_lockout(client: TestClient, db, outbox, sample_user_data: dict):
    """Test three wrong passwords lock the account, even against the right password"""
    _register_and_verify(client, outbox, sample_user_data)

    for _ in range(3):
        response = _login(client, password="wrong-password")
        assert response.status_code == 401

    response = _login(client)
    assert response.status_code == 403
    assert response.json()["error"]["message"].startswith("Account temporarily locked")

    account = db.query(Account).filter(Account.username == "alice").first()
    db.refresh(account)
    assert account.failed_login_attempts == 3


def test_refresh_rotation_and_logout(client: TestClient, outbox, sample_user_data: dict):
    """Test refresh rotates the pair and logout revokes the session"""
    _register_and_verify(client, outbox, sample_user_data)
    tokens = _login(client).json()

    response = client.post("/api/auth/refresh-token", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 200
    rotated = response.json()
    assert rotated["refresh_token"] != tokens["refresh_token"]

    replay = client.post("/api/auth/refresh-token", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401

    response = client.post("/api/auth/logout", json={"refresh_token": rotated["refresh_token"]})
    assert response.status_code == 200
    assert response.json()["message"] == "Logged out successfully"

    response = client.post("/api/auth/refresh-token", json={"refresh_token": rotated["refresh_token"]})
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Token has been revoked"

    response = client.get("/api/auth/me", headers=_bearer(rotated["access_token"]))
    assert response.status_code == 401


def test_refresh_missing_token(client: TestClient):
    response = client.post("/api/auth/refresh-token", json={})
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Invalid refresh token"


def test_logout_invalid_token(client: TestClient):
    response = client.post("/api/auth/logout", json={"refresh_token": "nope"})
    assert response.status_code == 401


def test_me(client: TestClient, outbox, sample_user_data: dict):
    data = _register_and_verify(client, outbox, sample_user_data)

    response = client.get("/api/auth/me", headers=_bearer(data["tokens"]["access_token"]))
    assert response.status_code == 200
    assert response.json() == {
        "id": data["user"]["id"],
        "email": "a@x.com",
        "username": "alice",
        "role": "user",
    }


def test_me_requires_token(client: TestClient):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Not authenticated, token missing"


def test_me_rejects_refresh_token(client: TestClient, outbox, sample_user_data: dict):
    data = _register_and_verify(client, outbox, sample_user_data)
    response = client.get("/api/auth/me", headers=_bearer(data["tokens"]["refresh_token"]))
    assert response.status_code == 401


def test_forgot_password_same_response(client: TestClient, outbox, sample_user_data: dict):
    """Test forgot-password does not reveal whether the email is registered"""
    _register_and_verify(client, outbox, sample_user_data)

    known = client.post("/api/auth/forgot-password", json={"email": "a@x.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@x.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(outbox.for_template("reset-password")) == 1


def test_reset_password_flow(client: TestClient, outbox, sample_user_data: dict):
    """Test password reset invalidates old refresh tokens and the old password"""
    _register_and_verify(client, outbox, sample_user_data)
    old_tokens = _login(client).json()
    client.post("/api/auth/forgot-password", json={"email": "a@x.com"})
    token = outbox.token("reset-password")

    response = client.post(
        "/api/auth/reset-password",
        params={"token": token},
        json={"new_password": "NewSecret456!", "confirm_password": "NewSecret456!"},
    )
    assert response.status_code == 200

    response = client.post("/api/auth/refresh-token", json={"refresh_token": old_tokens["refresh_token"]})
    assert response.status_code == 401
    assert _login(client).status_code == 401
    assert _login(client, password="NewSecret456!").status_code == 200


def test_reset_password_mismatch(client: TestClient):
    response = client.post(
        "/api/auth/reset-password",
        params={"token": "anything"},
        json={"new_password": "NewSecret456!", "confirm_password": "Different789!"},
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Passwords do not match"


def test_reset_password_requires_token(client: TestClient):
    response = client.post(
        "/api/auth/reset-password",
        json={"new_password": "NewSecret456!", "confirm_password": "NewSecret456!"},
    )
    assert response.status_code == 400


def test_reset_password_bad_token(client: TestClient):
    response = client.post(
        "/api/auth/reset-password",
        params={"token": "deadbeef"},
        json={"new_password": "NewSecret456!", "confirm_password": "NewSecret456!"},
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid or expired token"


def test_update_password(client: TestClient, outbox, sample_user_data: dict):
    data = _register_and_verify(client, outbox, sample_user_data)
    headers = _bearer(data["tokens"]["access_token"])

    wrong = client.patch(
        "/api/auth/update-password",
        json={"current_password": "wrong-password", "new_password": "NewSecret456!"},
        headers=headers,
    )
    assert wrong.status_code == 401

    response = client.patch(
        "/api/auth/update-password",
        json={"current_password": "Secret123!", "new_password": "NewSecret456!"},
        headers=headers,
    )
    assert response.status_code == 200

    response = client.post("/api/auth/refresh-token", json={"refresh_token": data["tokens"]["refresh_token"]})
    assert response.status_code == 401
    assert _login(client, password="NewSecret456!").status_code == 200


def test_update_password_requires_auth(client: TestClient):
    response = client.patch(
        "/api/auth/update-password",
        json={"current_password": "Secret123!", "new_password": "NewSecret456!"},
    )
    assert response.status_code == 401


def test_set_role_requires_admin(client: TestClient, outbox, sample_user_data: dict):
    data = _register_and_verify(client, outbox, sample_user_data)

    response = client.patch(
        f"/api/auth/users/{data['user']['id']}/role",
        params={"role": "artist"},
        headers=_bearer(data["tokens"]["access_token"]),
    )
    assert response.status_code == 403


def test_set_role_as_admin(client: TestClient, db, outbox, sample_user_data: dict):
    """Test an admin can promote a user; the new role appears in the next token"""
    user = _register_and_verify(client, outbox, sample_user_data)
    _register_and_verify(client, outbox, {"email": "root@x.com", "username": "root", "password": "Admin123!"})
    admin = db.query(Account).filter(Account.username == "root").first()
    admin.role = "admin"
    db.commit()
    admin_token = _login(client, "root", "Admin123!").json()["access_token"]

    response = client.patch(
        f"/api/auth/users/{user['user']['id']}/role",
        params={"role": "artist"},
        headers=_bearer(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["role"] == "artist"

    tokens = _login(client).json()
    me = client.get("/api/auth/me", headers=_bearer(tokens["access_token"]))
    assert me.json()["role"] == "artist"

    missing = client.patch("/api/auth/users/missing/role", params={"role": "artist"}, headers=_bearer(admin_token))
    assert missing.status_code == 404


def test_google_not_configured(client: TestClient):
    response = client.get("/api/auth/google", follow_redirects=False)
    assert response.status_code == 503


def _google_client(**fetch) -> MagicMock:
    oauth = MagicMock()
    oauth.authorization_url.return_value = "https://accounts.google.com/o/oauth2/v2/auth?client_id=x"
    for name, value in fetch.items():
        setattr(oauth.fetch_profile, name, value)
    app.dependency_overrides[get_oauth_client] = lambda: oauth
    return oauth


def _start_google(client: TestClient, oauth: MagicMock, redirect: str = None) -> str:
    params = {"redirect": redirect} if redirect else {}
    response = client.get("/api/auth/google", params=params, follow_redirects=False)
    assert response.status_code in (302, 307)
    return oauth.authorization_url.call_args.args[0]


def test_google_sets_state_cookie(client: TestClient):
    oauth = _google_client()

    response = client.get("/api/auth/google", follow_redirects=False)

    assert response.headers["location"].startswith("https://accounts.google.com/")
    cookie = response.headers["set-cookie"]
    assert cookie.startswith("oauth_state=")
    assert "HttpOnly" in cookie
    assert "samesite=lax" in cookie.lower()
    state, challenge = oauth.authorization_url.call_args.args
    assert len(state) >= 32
    assert challenge


def test_google_callback_creates_account(client: TestClient, db):
    """Test the callback hands a token pair to the frontend"""
    oauth = _google_client(return_value=ExternalProfile(provider_id="g-1", email="g@x.com", first_name="G"))
    state = _start_google(client, oauth)

    response = client.get("/api/auth/google/callback", params={"code": "abc", "state": state}, follow_redirects=False)

    assert response.status_code in (302, 307)
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}" == settings.FRONTEND_URL.rstrip("/")
    query = parse_qs(location.query)
    assert query["access_token"] and query["refresh_token"]

    code, verifier = oauth.fetch_profile.call_args.args
    assert code == "abc"
    assert verifier

    account = db.query(Account).filter(Account.email == "g@x.com").first()
    assert account.is_google_user is True
    assert account.is_verified is True


def test_google_callback_without_state_cookie_is_rejected(client: TestClient, db):
    """Test a callback URL opened without starting the flow in this browser signs nobody in"""
    oauth = _google_client(return_value=ExternalProfile(provider_id="g-2", email="mallory@x.com"))

    response = client.get(
        "/api/auth/google/callback",
        params={"code": "attacker-code", "state": "attacker-state"},
        follow_redirects=False,
    )

    assert "error=authentication_failed" in response.headers["location"]
    assert "access_token" not in response.headers["location"]
    oauth.fetch_profile.assert_not_called()
    assert db.query(Account).filter(Account.email == "mallory@x.com").first() is None


def test_google_callback_state_mismatch_is_rejected(client: TestClient):
    oauth = _google_client(return_value=ExternalProfile(provider_id="g-3", email="g3@x.com"))
    _start_google(client, oauth)

    response = client.get(
        "/api/auth/google/callback",
        params={"code": "abc", "state": "not-the-issued-state"},
        follow_redirects=False,
    )

    assert "error=authentication_failed" in response.headers["location"]
    oauth.fetch_profile.assert_not_called()


def test_google_callback_failure_redirects_with_error(client: TestClient):
    oauth = _google_client(side_effect=OAuthError("rejected"))
    state = _start_google(client, oauth, redirect="https://evil.example.com/steal")

    response = client.get("/api/auth/google/callback", params={"code": "abc", "state": state}, follow_redirects=False)

    location = response.headers["location"]
    assert location.startswith(settings.FRONTEND_URL)
    assert "error=authentication_failed" in location
    assert "evil.example.com" not in location


def test_register_verify_login_scenario(client: TestClient, outbox, sample_user_data: dict):
    """Test a wrong verification token fails and the right one unlocks login"""
    assert client.post("/api/auth/register", json=sample_user_data).status_code == 201

    wrong = client.get("/api/auth/verify-email", params={"token": "0" * 64})
    assert wrong.status_code == 400

    right = client.get("/api/auth/verify-email", params={"token": outbox.token("verify-email")})
    assert right.status_code == 200

    response = _login(client, "alice")
    assert response.status_code == 200
    assert response.json()["access_token"]
