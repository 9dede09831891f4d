from datetime import timedelta

from database import USERS
from security import create_access_token, decode_token, hash_password, verify_password

from conftest import PASSWORD


def register(client, email="new@example.com", password="s3cret"):
    return client.post("/register", json={"name": "New User", "email": email, "password": password})


def test_password_hash_roundtrip():
    hashed = hash_password("hunter2")
    assert hashed != "hunter2"
    assert verify_password("hunter2", hashed)
    assert not verify_password("hunter3", hashed)


def test_token_carries_email_and_role(settings):
    identity = decode_token(create_access_token("a@example.com", "admin", settings), settings)
    assert identity.email == "a@example.com"
    assert identity.is_admin


def test_register_creates_unverified_user_and_sends_verification(client, db, mailer):
    response = register(client)
    assert response.status_code == 201

    user = db[USERS].find_one({"email": "new@example.com"})
    assert user["role"] == "user"
    assert user["is_verified"] is False
    assert user["verification_token"]
    assert user["password"] != "s3cret"

    assert mailer.subjects() == ["Verify Your Email"]
    assert f"/verify?token={user['verification_token']}" in mailer.sent[0].body


def test_register_rejects_duplicate_email(client, test_user):
    response = register(client, email=test_user["email"])
    assert response.status_code == 400
    assert response.json()["detail"] == "User already exists"


def test_register_fails_when_verification_email_fails(client, mailer):
    mailer.fail = True
    response = register(client)
    assert response.status_code == 500


def test_verify_then_login(client, db):
    register(client)
    token = db[USERS].find_one({"email": "new@example.com"})["verification_token"]

    assert client.post("/login", json={"email": "new@example.com", "password": "s3cret"}).status_code == 401

    response = client.get("/verify", params={"token": token})
    assert response.status_code == 200
    user = db[USERS].find_one({"email": "new@example.com"})
    assert user["is_verified"] is True
    assert not user["verification_token"]

    # Single use
    assert client.get("/verify", params={"token": token}).status_code == 400

    response = client.post("/login", json={"email": "new@example.com", "password": "s3cret"})
    assert response.status_code == 200
    assert response.json()["token"]


def test_verify_rejects_missing_and_garbage_tokens(client):
    assert client.get("/verify").status_code == 400
    assert client.get("/verify", params={"token": "not-a-jwt"}).status_code == 400


def test_login_wrong_password(client, test_user):
    response = client.post("/login", json={"email": test_user["email"], "password": "wrong"})
    assert response.status_code == 401


def test_login_unknown_user(client):
    response = client.post("/login", json={"email": "ghost@example.com", "password": PASSWORD})
    assert response.status_code == 401


def test_profile_strips_secrets(client, db, test_user, auth_headers):
    db[USERS].update_one({"_id": test_user["_id"]}, {"$set": {"verification_token": "leftover"}})
    response = client.get("/profile", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == test_user["email"]
    assert body["address"]["city"] == "Springfield"
    assert "password" not in body
    assert "verification_token" not in body


def test_protected_route_requires_token(client):
    assert client.get("/profile").status_code == 401
    assert client.get("/profile", headers={"Authorization": "Token abc"}).status_code == 401
    assert client.get("/profile", headers={"Authorization": "Bearer abc"}).status_code == 401


def test_expired_token_is_rejected(client, test_user, settings):
    token = create_access_token(test_user["email"], "user", settings, expires_delta=timedelta(seconds=-1))
    response = client.get("/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_token_signed_with_other_secret_is_rejected(client, test_user, settings):
    other = settings.model_copy(update={"JWT_SECRET": "someone-else"})
    token = create_access_token(test_user["email"], "user", other)
    response = client.get("/profile", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
