from conftest import register

from codestakes.auth import hash_password, verify_password
from codestakes.models.user import User


def test_register_login_and_me(client):
    resp = register(client)
    assert resp.status_code == 201
    data = resp.json()
    assert data["user"]["id"] > 0
    assert data["user"]["username"] == "bob"
    assert data["token_type"] == "bearer"
    assert "password_hash" not in data["user"]

    client.cookies.clear()
    resp = client.post("/api/auth/login", json={"username": "bob", "password": "pw123456"})
    assert resp.status_code == 200
    assert "sid" in resp.cookies

    resp = client.get("/api/auth/me")
    assert resp.status_code == 200
    me = resp.json()
    assert me["username"] == "bob"
    assert me["email"] == "bob@x.com"


def test_register_sets_session_cookie(client):
    resp = register(client)
    set_cookie = resp.headers["set-cookie"]
    assert "sid=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "samesite=lax" in set_cookie.lower()
    assert client.get("/api/auth/me").json()["username"] == "bob"


def test_login_with_email(client):
    register(client)
    client.cookies.clear()
    resp = client.post("/api/auth/login", json={"email": "BOB@x.com", "password": "pw123456"})
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "bob"


def test_register_duplicate_username_or_email(client):
    assert register(client).status_code == 201

    resp = register(client, email="other@x.com")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Username or email already registered"

    resp = register(client, username="robert")
    assert resp.status_code == 400


def test_register_rejects_malformed_input(client):
    assert register(client, username="b").status_code == 400
    assert register(client, email="not-an-email").status_code == 400
    assert register(client, password="123").status_code == 400

    resp = client.post("/api/auth/register", json={"username": "bob"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid request body"


def test_login_bad_credentials(client):
    register(client)
    client.cookies.clear()

    resp = client.post("/api/auth/login", json={"username": "bob", "password": "wrong-pass"})
    assert resp.status_code == 401
    assert resp.json() == {"message": "Invalid credentials"}

    resp = client.post("/api/auth/login", json={"username": "nobody", "password": "pw123456"})
    assert resp.status_code == 401
    assert "sid" not in client.cookies


def test_login_rejects_github_only_account(client, session_factory):
    db = session_factory()
    db.add(User(github_id="7", username="ghuser", display_name="ghuser"))
    db.commit()
    db.close()

    resp = client.post("/api/auth/login", json={"username": "ghuser", "password": "anything"})
    assert resp.status_code == 401


def test_me_requires_authentication(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json() == {"message": "Not authenticated"}

    client.cookies.set("sid", "made-up-session")
    assert client.get("/api/auth/me").status_code == 401


def test_me_with_bearer_token(client):
    token = register(client).json()["access_token"]
    client.cookies.clear()

    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["username"] == "bob"

    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_logout_invalidates_session(client):
    register(client)
    old_sid = client.cookies["sid"]

    resp = client.post("/api/auth/logout")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Logged out successfully"}
    assert "sid" not in client.cookies

    client.cookies.set("sid", old_sid)
    assert client.get("/api/auth/me").status_code == 401


def test_logout_without_session(client):
    assert client.post("/api/auth/logout").status_code == 200


def test_session_for_deleted_user_is_unauthenticated(client, session_factory):
    register(client)
    db = session_factory()
    db.query(User).filter(User.username == "bob").delete()
    db.commit()
    db.close()

    assert client.get("/api/auth/me").status_code == 401


def test_relogin_replaces_previous_session(client):
    register(client)
    first_sid = client.cookies["sid"]
    client.post("/api/auth/login", json={"username": "bob", "password": "pw123456"})
    assert client.cookies["sid"] != first_sid

    client.cookies.clear()
    client.cookies.set("sid", first_sid)
    assert client.get("/api/auth/me").status_code == 401


def test_password_hash_roundtrip():
    hashed = hash_password("pw123456")
    assert hashed.startswith("pbkdf2_sha256$")
    assert verify_password("pw123456", hashed)
    assert not verify_password("pw1234567", hashed)
    assert hash_password("pw123456") != hashed
    assert not verify_password("pw123456", None)
    assert not verify_password("pw123456", "garbage")
