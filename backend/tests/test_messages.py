from __future__ import annotations

from conftest import publish, register_and_login


def test_contact_agent_about_listing(client, other_client):
    agent = register_and_login(other_client, "agent@x.com")
    prop = publish(other_client).json()["property"]
    buyer = register_and_login(client, "buyer@x.com")

    res = client.post("/messages", json={"propertyId": prop["id"], "content": "  Toujours disponible ?  "})
    assert res.status_code == 201
    sent = res.json()["data"]
    assert sent["senderId"] == buyer["id"]
    assert sent["receiverId"] == agent["id"]
    assert sent["content"] == "Toujours disponible ?"

    inbox = other_client.get("/messages").json()
    assert [m["id"] for m in inbox] == [sent["id"]]
    assert [m["id"] for m in client.get("/messages").json()] == [sent["id"]]


def test_message_validation(client, other_client):
    assert client.get("/messages").status_code == 401

    register_and_login(other_client, "agent@x.com")
    prop = publish(other_client).json()["property"]
    register_and_login(client, "buyer@x.com")

    assert client.post("/messages", json={"propertyId": prop["id"], "content": "   "}).status_code == 400
    assert client.post("/messages", json={"content": "hello"}).status_code == 400
    assert client.post("/messages", json={"propertyId": 9999, "content": "hello"}).status_code == 404
    own = other_client.post("/messages", json={"propertyId": prop["id"], "content": "hello"})
    assert own.status_code == 400
