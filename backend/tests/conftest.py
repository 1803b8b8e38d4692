from __future__ import annotations

import io
import os
import tempfile

# Configure the app before it is imported: the engine is built from DATABASE_URL at import time.
_TMP = tempfile.mkdtemp(prefix="immobilier-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["UPLOADS_DIR"] = os.path.join(_TMP, "uploads")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ADMIN_EMAIL"] = "admin@immo.test"
os.environ["ADMIN_PASSWORD"] = "Admin@123"
os.environ["LOGIN_RATE_LIMIT"] = "1000"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402

from immobilier.db import ENGINE, SessionLocal  # noqa: E402
from immobilier.main import app  # noqa: E402
from immobilier.models import Base  # noqa: E402
from immobilier.rate_limit import login_throttle  # noqa: E402


ADMIN_EMAIL = "admin@immo.test"
ADMIN_PASSWORD = "Admin@123"
PASSWORD = "s3cret-pass"


@pytest.fixture(autouse=True)
def fresh_state(tmp_path, monkeypatch):
    monkeypatch.setenv("UPLOADS_DIR", str(tmp_path / "uploads"))
    Base.metadata.drop_all(ENGINE)
    Base.metadata.create_all(ENGINE)
    login_throttle.reset()
    yield


@pytest.fixture
def uploads_path(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def client():
    # Entering the context runs startup (uploads dir + admin seed).
    with TestClient(app) as c:
        yield c


@pytest.fixture
def other_client(client):
    # Separate cookie jar for a second user; startup already ran via `client`.
    return TestClient(app)


@pytest.fixture
def admin_client(client):
    c = TestClient(app)
    res = c.post("/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert res.status_code == 200, res.text
    return c


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def signup(c: TestClient, email: str, *, password: str = PASSWORD, first_name: str = "Alice", phone: str = "0600000000"):
    return c.post(
        "/signup",
        json={
            "first_name": first_name,
            "last_name": "Martin",
            "email": email,
            "password": password,
            "phone": phone,
        },
    )


def login(c: TestClient, email: str, *, password: str = PASSWORD):
    return c.post("/login", json={"email": email, "password": password})


def register_and_login(c: TestClient, email: str, **kwargs) -> dict:
    assert signup(c, email, **kwargs).status_code == 201
    res = login(c, email)
    assert res.status_code == 200, res.text
    return res.json()["user"]


def image_bytes(color=(255, 0, 0), fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buf, format=fmt)
    return buf.getvalue()


def listing_form(**overrides) -> dict:
    data = {
        "title": "Appartement T3",
        "description": "Lumineux, proche centre",
        "price": "250000",
        "surface": "68.5",
        "rooms": "3",
        "type": "apartment",
        "address": "12 rue des Lilas, Lyon",
        "category": "sell",
    }
    data.update(overrides)
    return {k: v for k, v in data.items() if v is not None}


def publish(c: TestClient, *, photos=None, **overrides):
    files = [("photos", item) for item in (photos or [])]
    return c.post("/properties", data=listing_form(**overrides), files=files or None)
