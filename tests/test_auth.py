"""Authentication flow tests: register, login, sessions, refresh and account changes."""

import datetime as dt
import secrets

from app.models import File, User, UserSession, utcnow
from app.security import create_token

API = "/api/v1"


def _sessions(session_factory):
    session = session_factory()
    try:
        return session.query(UserSession).all()
    finally:
        session.close()


def test_register_returns_user_and_token(client, session_factory):
    resp = client.post(
        f"{API}/auth/register",
        json={
            "firstname": "Alice",
            "lastname": "Liddell",
            "username": "alice",
            "email": "Alice@Example.com",
            "password": "wonderland",
            "password_confirmation": "wonderland",
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 24 * 3600
    assert data["user"]["username"] == "alice"
    assert data["user"]["email"] == "alice@example.com"
    assert "password_hash" not in data["user"]
    assert len(_sessions(session_factory)) == 1


def test_register_rejects_duplicates_and_bad_confirmation(client, register):
    register("bob")
    resp = client.post(
        f"{API}/auth/register",
        json={
            "firstname": "Bob",
            "lastname": "Two",
            "username": "bob",
            "email": "BOB@example.com",
            "password": "password1",
            "password_confirmation": "password1",
        },
    )
    assert resp.status_code == 422
    errors = resp.json()["data"]
    assert "username" in errors and "email" in errors

    resp = client.post(
        f"{API}/auth/register",
        json={
            "firstname": "Carol",
            "lastname": "C",
            "username": "carol",
            "email": "carol@example.com",
            "password": "password1",
            "password_confirmation": "password2",
        },
    )
    assert resp.status_code == 422
    assert "password_confirmation" in resp.json()["data"]


def test_register_requires_long_password(client):
    resp = client.post(
        f"{API}/auth/register",
        json={
            "firstname": "D",
            "lastname": "D",
            "username": "dave",
            "email": "dave@example.com",
            "password": "short",
            "password_confirmation": "short",
        },
    )
    assert resp.status_code == 422
    assert "password" in resp.json()["data"]


def test_login_with_email_or_username(client, register):
    register("erin", password="erin-password")
    for ident in ("erin@example.com", "erin"):
        resp = client.post(f"{API}/auth/login", json={"email": ident, "password": "erin-password"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["token"]


def test_login_invalid_credentials(client, register, session_factory):
    register("frank", password="right-password")
    before = len(_sessions(session_factory))
    for ident, pw in (("frank@example.com", "wrong-password"), ("nobody@example.com", "right-password")):
        resp = client.post(f"{API}/auth/login", json={"email": ident, "password": pw})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid credentials"
    assert len(_sessions(session_factory)) == before


def test_me_requires_token(client, register):
    assert client.get(f"{API}/auth/me").status_code == 401
    bad = client.get(f"{API}/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid token"

    u = register("gina")
    resp = client.get(f"{API}/auth/me", headers=u["headers"])
    assert resp.status_code == 200
    assert resp.json()["data"]["username"] == "gina"


def test_logout_revokes_token(client, register):
    u = register("hank")
    assert client.post(f"{API}/auth/logout", headers=u["headers"]).status_code == 200
    resp = client.get(f"{API}/auth/me", headers=u["headers"])
    assert resp.status_code == 401
    assert resp.json()["message"] == "Session revoked or missing"


def test_refresh_rotates_session(client, register):
    u = register("ivy")
    resp = client.post(f"{API}/auth/refresh", headers=u["headers"])
    assert resp.status_code == 200
    new_token = resp.json()["data"]["token"]
    assert new_token != u["token"]
    assert client.get(f"{API}/auth/me", headers=u["headers"]).status_code == 401
    assert client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {new_token}"}).status_code == 200


def test_expired_token_can_refresh_within_window(client, register, session_factory):
    u = register("jack")
    session = session_factory()
    try:
        jti = secrets.token_urlsafe(16)
        session.add(UserSession(user_id=u["user"]["id"], jti=jti))
        session.commit()
    finally:
        session.close()
    stale = create_token(u["user"]["id"], jti, issued_at=utcnow() - dt.timedelta(hours=30))
    headers = {"Authorization": f"Bearer {stale}"}

    resp = client.get(f"{API}/auth/me", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["message"] == "Token expired"

    resp = client.post(f"{API}/auth/refresh", headers=headers)
    assert resp.status_code == 200

    ancient = create_token(u["user"]["id"], jti, issued_at=utcnow() - dt.timedelta(days=30))
    resp = client.post(f"{API}/auth/refresh", headers={"Authorization": f"Bearer {ancient}"})
    assert resp.status_code == 401


def test_update_account(client, register):
    u = register("kate", password="old-password")
    register("taken")

    resp = client.put(f"{API}/auth/update-account", json={"username": "taken"}, headers=u["headers"])
    assert resp.status_code == 422
    assert "username" in resp.json()["data"]

    resp = client.put(
        f"{API}/auth/update-account",
        json={"password": "new-password", "password_confirmation": "new-password", "current_password": "nope-nope"},
        headers=u["headers"],
    )
    assert resp.status_code == 401
    assert resp.json()["message"] == "Current password is incorrect"

    resp = client.put(
        f"{API}/auth/update-account",
        json={
            "firstname": "Katherine",
            "password": "new-password",
            "password_confirmation": "new-password",
            "current_password": "old-password",
        },
        headers=u["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["firstname"] == "Katherine"
    assert client.post(f"{API}/auth/login", json={"email": "kate", "password": "new-password"}).status_code == 200


def test_delete_account_removes_user_and_bytes(client, register, upload, storage, session_factory):
    u = register("liam")
    f = upload(u["headers"], "notes.txt", b"bytes")
    session = session_factory()
    try:
        key = session.get(File, f["id"]).file_path
    finally:
        session.close()
    assert storage.object_exists(key)

    resp = client.request("DELETE", f"{API}/auth/delete-account", json={"password": "wrong-one"}, headers=u["headers"])
    assert resp.status_code == 401
    assert resp.json()["message"] == "Incorrect password"

    resp = client.request("DELETE", f"{API}/auth/delete-account", json={"password": u["password"]}, headers=u["headers"])
    assert resp.status_code == 200
    assert not storage.object_exists(key)

    session = session_factory()
    try:
        assert session.get(User, u["user"]["id"]) is None
        assert session.query(File).count() == 0
    finally:
        session.close()
