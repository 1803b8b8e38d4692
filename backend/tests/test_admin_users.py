from __future__ import annotations

from sqlalchemy import select

from conftest import ADMIN_EMAIL, image_bytes, login, publish, register_and_login
from immobilier.models import Favorite, Message, Property, User, UserSession


def test_user_listing_is_admin_only(client, admin_client):
    assert client.get("/users").status_code == 401

    register_and_login(client, "a@x.com")
    assert client.get("/users").status_code == 403

    res = admin_client.get("/users")
    assert res.status_code == 200
    emails = [u["email"] for u in res.json()]
    assert emails == [ADMIN_EMAIL, "a@x.com"]
    assert all("password_hash" not in u for u in res.json())


def test_promotion_is_reflected_at_next_login(client, admin_client):
    me = register_and_login(client, "a@x.com")
    assert me["role"] == "user"

    res = admin_client.put(f"/users/role/{me['id']}", json={"role": "admin"})
    assert res.status_code == 200
    assert res.json()["user"]["role"] == "admin"

    # Admin capability comes from the stored role, so it applies immediately.
    assert client.get("/users").status_code == 200

    assert client.post("/logout").status_code == 200
    relog = login(client, "a@x.com")
    assert relog.json()["user"]["role"] == "admin"

    # And back again.
    assert admin_client.put(f"/users/role/{me['id']}", json={"role": "user"}).status_code == 200
    assert client.get("/users").status_code == 403


def test_change_role_validation(client, admin_client):
    me = register_and_login(client, "a@x.com")
    assert admin_client.put(f"/users/role/{me['id']}", json={"role": "owner"}).status_code == 400
    assert admin_client.put("/users/role/9999", json={"role": "admin"}).status_code == 404
    assert client.put(f"/users/role/{me['id']}", json={"role": "admin"}).status_code == 403


def test_delete_user_checks(client, admin_client):
    register_and_login(client, "a@x.com")
    assert admin_client.delete("/users/9999").status_code == 404

    admin_id = admin_client.get("/getUserData").json()["id"]
    assert admin_client.delete(f"/users/{admin_id}").status_code == 400
    assert client.delete(f"/users/{admin_id}").status_code == 403


def test_delete_user_cascades(client, other_client, admin_client, uploads_path, db_session):
    agent = register_and_login(client, "agent@x.com")
    prop = publish(client, photos=[("p.png", image_bytes(), "image/png")]).json()["property"]
    photo = uploads_path / prop["photos"][0]
    assert photo.exists()

    buyer = register_and_login(other_client, "buyer@x.com")
    assert other_client.post("/favorite", json={"propertyId": prop["id"]}).status_code == 201
    assert other_client.post("/messages", json={"propertyId": prop["id"], "content": "Visite ?"}).status_code == 201

    res = admin_client.delete(f"/users/{agent['id']}")
    assert res.status_code == 200

    assert db_session.get(User, agent["id"]) is None
    assert db_session.execute(select(Property)).first() is None
    assert db_session.execute(select(Favorite)).first() is None
    assert db_session.execute(select(Message)).first() is None
    assert db_session.execute(select(UserSession).where(UserSession.user_id == agent["id"])).first() is None
    assert not photo.exists()

    # The deleted agent's session is gone; the buyer is untouched.
    assert client.get("/checkAuth").status_code == 401
    assert db_session.get(User, buyer["id"]) is not None
    assert other_client.get("/favorites").json() == []
