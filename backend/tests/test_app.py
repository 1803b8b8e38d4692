from __future__ import annotations

import pytest
from sqlalchemy import select

from conftest import ADMIN_EMAIL
from immobilier import config
from immobilier.main import seed_admin_user
from immobilier.models import Role, User


def test_health_and_security_headers(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"ok": True}
    assert res.headers["x-content-type-options"] == "nosniff"
    assert res.headers["x-frame-options"] == "DENY"


def test_startup_seeds_a_single_admin(client, db_session):
    admins = db_session.execute(select(User).where(User.role == Role.ADMIN.value)).scalars().all()
    assert [a.email for a in admins] == [ADMIN_EMAIL]

    # Seeding is idempotent.
    assert seed_admin_user(db_session).id == admins[0].id
    db_session.commit()
    assert len(db_session.execute(select(User)).scalars().all()) == 1


def test_production_refuses_default_admin_password(monkeypatch):
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("ADMIN_PASSWORD", config.DEFAULT_ADMIN_PASSWORD)
    with pytest.raises(RuntimeError):
        config.enforce_secure_secrets()

    monkeypatch.setenv("ADMIN_PASSWORD", "a-real-secret")
    config.enforce_secure_secrets()


def test_database_url_normalizes_postgres_scheme(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://u:p@db/immo")
    assert config.database_url() == "postgresql://u:p@db/immo"


def test_session_cookie_is_secure_outside_local(monkeypatch):
    monkeypatch.delenv("SESSION_COOKIE_SECURE", raising=False)
    monkeypatch.setenv("APP_ENV", "prod")
    assert config.session_cookie_secure() is True
    monkeypatch.setenv("APP_ENV", "test")
    assert config.session_cookie_secure() is False
