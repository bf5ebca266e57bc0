"""Registration, login, logout revocation and password reset."""
from datetime import timedelta

import auth
from conftest import PASSWORD, auth_header
from database import utcnow
from security import create_access_token, hash_token

URL = "/api/v1/auth"

REGISTRATION = {
    "name": "Jane Doe",
    "email": "Jane.Doe@Example.com",
    "password": PASSWORD,
    "passwordConfirm": PASSWORD,
}


def test_register(client, db):
    res = client.post(f"{URL}/register", json={**REGISTRATION, "role": "admin"})
    assert res.status_code == 201
    body = res.json()
    assert body["message"] == "User registered successfully"
    assert body["token"]
    assert body["data"]["email"] == "jane.doe@example.com"
    assert body["data"]["role"] == "user"
    assert "password" not in body["data"]

    stored = db["user"].find_one({"email": "jane.doe@example.com"})
    assert stored["password"] != PASSWORD


def test_register_rejections(client, user):
    cases = [
        ({**REGISTRATION, "passwordConfirm": "Different@123"}, "Passwords do not match"),
        ({**REGISTRATION, "password": "weak", "passwordConfirm": "weak"}, auth.PASSWORD_RULE_MESSAGE),
        ({**REGISTRATION, "email": "USER@example.com"}, "Email already in use"),
        ({"email": "new@example.com", "password": PASSWORD}, "All fields are required"),
    ]
    for body, message in cases:
        res = client.post(f"{URL}/register", json=body)
        assert res.status_code == 400
        assert res.json() == {"success": False, "error": message}


def test_login(client, user):
    res = client.post(f"{URL}/login", json={"email": "User@Example.com", "password": PASSWORD})
    assert res.status_code == 200
    assert res.json()["data"]["id"] == str(user["_id"])

    token = res.json()["token"]
    me = client.get(f"{URL}/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["data"]["email"] == "user@example.com"


def test_login_failures(client, user, make_user):
    bad = client.post(f"{URL}/login", json={"email": "user@example.com", "password": "Wrong@1234"})
    assert bad.status_code == 401
    assert bad.json()["error"] == "Invalid email or password"

    unknown = client.post(f"{URL}/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert unknown.status_code == 401

    missing = client.post(f"{URL}/login", json={"email": "user@example.com"})
    assert missing.status_code == 400

    make_user("sleepy@example.com", active=False)
    inactive = client.post(f"{URL}/login", json={"email": "sleepy@example.com", "password": PASSWORD})
    assert inactive.status_code == 401
    assert inactive.json()["error"] == "User account is deactivated"


def test_logout_revokes_token(client, db, user):
    headers = auth_header(user)
    res = client.post(f"{URL}/logout", headers=headers)
    assert res.status_code == 200
    assert res.json()["message"] == "Successfully logged out"

    token = headers["Authorization"].split(" ")[1]
    entry = db["revoked_token"].find_one({"tokenHash": hash_token(token)})
    assert entry is not None
    assert db["revoked_token"].count_documents({"expiresAt": {"$gt": utcnow()}}) == 1

    res = client.get(f"{URL}/me", headers=headers)
    assert res.status_code == 401
    assert res.json()["error"] == "This token is invalid as the user has logged out."

    # a fresh login still works
    assert client.get(f"{URL}/me", headers=auth_header(user)).status_code == 200


def test_bad_tokens(client, user):
    res = client.get(f"{URL}/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.json()["error"] == "Token verification failed. Please provide a valid token."

    expired = create_access_token({"sub": str(user["_id"])}, expires_delta=timedelta(minutes=-1))
    res = client.get(f"{URL}/me", headers={"Authorization": f"Bearer {expired}"})
    assert res.status_code == 401

    orphan = create_access_token({"sub": "5f1d7f3e9d1b2c3a4b5c6d7e"})
    res = client.get(f"{URL}/me", headers={"Authorization": f"Bearer {orphan}"})
    assert res.json()["error"] == "User associated with this token not found."


def test_refresh_token_issues_new_token(client, user):
    headers = auth_header(user)
    res = client.post(f"{URL}/refresh-token", headers=headers)
    assert res.status_code == 200
    assert res.json()["token"] != headers["Authorization"].split(" ")[1]


def test_password_reset_flow(client, db, user, monkeypatch):
    sent = {}
    monkeypatch.setattr(auth, "send_reset_token", lambda u, token: sent.update(token=token))

    res = client.post(f"{URL}/forgot-password", json={"email": "user@example.com"})
    assert res.status_code == 200
    assert "token" not in res.json()
    stored = db["user"].find_one({"_id": user["_id"]})
    assert stored["resetPasswordToken"] == hash_token(sent["token"])

    new_password = "Brand@New123"
    res = client.put(f"{URL}/reset-password/{sent['token']}", json={"password": new_password})
    assert res.status_code == 200
    assert res.json()["token"]
    assert "resetPasswordToken" not in db["user"].find_one({"_id": user["_id"]})

    login = client.post(f"{URL}/login", json={"email": "user@example.com", "password": new_password})
    assert login.status_code == 200

    reused = client.put(f"{URL}/reset-password/{sent['token']}", json={"password": new_password})
    assert reused.status_code == 400
    assert reused.json()["error"] == "Invalid token"


def test_forgot_password_unknown_email(client):
    res = client.post(f"{URL}/forgot-password", json={"email": "ghost@example.com"})
    assert res.status_code == 404


def test_expired_reset_token(client, db, user):
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"resetPasswordToken": hash_token("abc"), "resetPasswordExpire": utcnow() - timedelta(minutes=1)}},
    )
    res = client.put(f"{URL}/reset-password/abc", json={"password": "Brand@New123"})
    assert res.status_code == 400
