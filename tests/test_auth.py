"""
Tests for registration, login and session resolution
"""
import datetime as dt

import jwt

from signflow.config import JWT_SECRET


def register_and_login(client, email="ada@signflow.dev", password="correct horse battery"):
    assert client.post("/auth/register", json={"email": email, "password": password}).status_code == 200
    return client.post("/auth/login", data={"username": email, "password": password})


def test_register_then_login_returns_token_and_cookie(client):
    response = register_and_login(client)

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    claims = jwt.decode(body["access_token"], JWT_SECRET, algorithms=["HS256"])
    assert claims["email"] == "ada@signflow.dev"
    assert claims["provider"] == "email"
    assert "access_token" in response.cookies

def test_duplicate_registration_is_rejected(client):
    payload = {"email": "ada@signflow.dev", "password": "pw-one"}
    client.post("/auth/register", json=payload)

    response = client.post("/auth/register", json=payload)

    assert response.status_code == 400

def test_wrong_password_is_rejected(client):
    register_and_login(client)

    response = client.post("/auth/login", data={"username": "ada@signflow.dev", "password": "nope"})

    assert response.status_code == 401

def test_session_cookie_authenticates_requests(client):
    register_and_login(client)

    response = client.get("/billing/status")

    assert response.status_code == 200
    assert response.json()["plan"] == "Basic"

def test_bearer_header_authenticates_requests(client):
    token = register_and_login(client).json()["access_token"]
    client.cookies.clear()

    response = client.get("/usage/limits", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200

def test_expired_token_is_rejected(client, make_user):
    user = make_user()
    expired = jwt.encode(
        {"sub": str(user.id), "exp": dt.datetime.now(dt.timezone.utc) - dt.timedelta(minutes=1)},
        JWT_SECRET,
        algorithm="HS256",
    )

    response = client.get("/usage/limits", headers={"Authorization": f"Bearer {expired}"})

    assert response.status_code == 401

def test_inactive_user_is_rejected(client, db, make_user):
    user = make_user()
    user.is_active = False
    db.commit()
    token = jwt.encode({"sub": str(user.id)}, JWT_SECRET, algorithm="HS256")

    response = client.get("/usage/limits", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401

def test_logout_clears_cookie(client):
    register_and_login(client)

    response = client.post("/auth/logout")

    assert response.status_code == 200
    assert "max-age=0" in response.headers["set-cookie"].lower()
