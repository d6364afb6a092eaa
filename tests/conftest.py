import os
import tempfile

# Keep module-level engine and storage away from the working directory.
_TMP = tempfile.mkdtemp(prefix="cloudbox-tests-")
os.environ.setdefault("CLOUDBOX_CONFIG", os.path.join(_TMP, "missing.toml"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP}/cloudbox.db")
os.environ.setdefault("STORAGE_BASE_PATH", os.path.join(_TMP, "storage"))
os.environ.setdefault("JWT_SECRET", "test-secret")

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db import Base, get_db
from app.local_s3 import LocalS3Client
from app.main import app
from app.s3 import get_storage

API = "/api/v1"


@pytest.fixture()
def session_factory(tmp_path):
    """Provide an isolated SQLite database for each test."""

    db_path = tmp_path / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}", connect_args={"check_same_thread": False}
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)

    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def storage(tmp_path):
    return LocalS3Client(tmp_path / "objects")


@pytest.fixture()
def client(session_factory, storage):
    """FastAPI test client bound to the isolated database and storage root."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_storage, None)


@pytest.fixture()
def register(client):
    """Register a user and return ``{"headers", "token", "user", "password"}``."""

    def _register(username: str | None = None, email: str | None = None, password: str = "s3cret-pass"):
        username = username or f"user-{uuid.uuid4().hex[:8]}"
        email = email or f"{username}@example.com"
        resp = client.post(
            f"{API}/auth/register",
            json={
                "firstname": username.capitalize(),
                "lastname": "Tester",
                "username": username,
                "email": email,
                "password": password,
                "password_confirmation": password,
            },
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()["data"]
        return {
            "headers": {"Authorization": f"Bearer {data['token']}"},
            "token": data["token"],
            "user": data["user"],
            "password": password,
        }

    return _register


@pytest.fixture()
def make_folder(client):
    def _make_folder(headers, name: str, parent_id: int | None = None, **extra):
        resp = client.post(f"{API}/folder/new", json={"name": name, "parent_id": parent_id, **extra}, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    return _make_folder


@pytest.fixture()
def upload(client):
    def _upload(headers, name: str, content: bytes = b"hello world", folder_id: int | None = None, content_type: str = "text/plain"):
        data = {"folder_id": str(folder_id)} if folder_id is not None else {}
        resp = client.post(
            f"{API}/folder/upload",
            data=data,
            files=[("files", (name, content, content_type))],
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]["uploaded"][0]

    return _upload
