import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Must be set before config is imported
_TMP = tempfile.mkdtemp(prefix="firmen-todo-tests-")
os.environ["TODO_DATABASE_URL"] = "sqlite://"
os.environ["TODO_UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["TODO_LOG_DIR"] = os.path.join(_TMP, "logs")

from fastapi.testclient import TestClient  # noqa: E402

import config  # noqa: E402
import models  # noqa: E402
import sessions  # noqa: E402
from database import engine, SessionLocal  # noqa: E402
from main import app  # noqa: E402

PASSWORD = "geheim-123"


@pytest.fixture(autouse=True)
def fresh_db(monkeypatch):
    """Empty schema, upload folder and session store for every test."""
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    sessions.sessions.clear()
    shutil.rmtree(config.UPLOAD_DIR, ignore_errors=True)
    monkeypatch.setattr(config, "ALLOW_PUBLIC_REGISTRATION", True)
    monkeypatch.setattr(config, "ALLOW_USER_CREATE_COMPANY", False)
    yield
    sessions.sessions.clear()


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client():
    return TestClient(app)


class Api:
    """Small helper around TestClient for the multi-user scenarios."""

    def __init__(self, client):
        self.client = client

    def register(self, username, full_name=None, email=None):
        r = self.client.post("/users", json={
            "username": username,
            "password": PASSWORD,
            "full_name": full_name,
            "email": email or f"{username}@example.com",
        })
        assert r.status_code == 200, r.text
        return r.json()

    def login(self, username):
        r = self.client.post("/login", json={"username": username, "password": PASSWORD})
        assert r.status_code == 200, r.text
        return {config.SESSION_HEADER: r.json()["session_token"]}

    def user(self, username, full_name=None):
        """Register and log in; returns (user dict, auth headers)."""
        user = self.register(username, full_name=full_name)
        return user, self.login(username)

    def company(self, headers, slug, name=None):
        r = self.client.post("/companies", json={"name": name or slug.title(), "slug": slug}, headers=headers)
        assert r.status_code == 200, r.text
        return r.json()

    def add_member(self, headers, slug, user_id, role="user"):
        r = self.client.post(
            f"/companies/{slug}/members",
            json={"user_id": user_id, "role": role},
            headers=headers,
        )
        assert r.status_code == 200, r.text
        return r.json()

    def todo(self, headers, slug, title, **fields):
        r = self.client.post(f"/companies/{slug}/todos", json={"title": title, **fields}, headers=headers)
        assert r.status_code == 200, r.text
        return r.json()


@pytest.fixture()
def api(client):
    return Api(client)


@pytest.fixture()
def acme(api):
    """
    Company "acme" with one user per role:
    admin (creator), gl, superuser, and two plain users.
    """
    admin, admin_h = api.user("admin", "Anna Admin")
    api.company(admin_h, "acme", "Acme GmbH")

    people = {"admin": (admin, admin_h)}
    for username, role in (("gl", "gl"), ("superuser", "superuser"), ("alice", "user"), ("bob", "user")):
        user, headers = api.user(username, username.title())
        api.add_member(admin_h, "acme", user["id"], role)
        people[username] = (user, headers)
    return people
