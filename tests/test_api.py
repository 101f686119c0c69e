"""Tests for the HTTP and WebSocket boundary."""

import pytest
from starlette.websockets import WebSocketDisconnect

from tests.conftest import ALICE_WALLET, BOB_WALLET, CAROL_WALLET


def _register(client, wallet, username, email):
    response = client.post("/auth/register", json={
        "wallet_address": wallet,
        "username": username,
        "email": email
    })
    assert response.status_code == 200
    body = response.json()
    return body["user"], {"Authorization": f"Bearer {body['token']}"}


@pytest.fixture
def alice_api(client):
    return _register(client, ALICE_WALLET, "alice", "alice@example.com")


@pytest.fixture
def bob_api(client):
    return _register(client, BOB_WALLET, "bob", "bob@example.com")


def test_root(client):
    assert client.get("/").json()["status"] == "running"


def test_register_login_logout(client, alice_api):
    user, headers = alice_api

    assert client.get("/auth/verify", headers=headers).json()["user_id"] == user["id"]
    assert client.get("/users/me", headers=headers).json()["username"] == "alice"

    response = client.post("/auth/login", json={"wallet_address": ALICE_WALLET})
    assert response.status_code == 200
    # The new session replaces the old one
    assert client.get("/auth/verify", headers=headers).status_code == 401

    fresh = {"Authorization": f"Bearer {response.json()['token']}"}
    assert client.post("/auth/logout", headers=fresh).json() == {"success": True}
    assert client.get("/auth/verify", headers=fresh).status_code == 401


def test_unknown_login_and_missing_token(client):
    assert client.post("/auth/login", json={"wallet_address": "nobody"}).status_code == 404
    assert client.get("/users/me").status_code in (401, 403)
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.get("/users/me", headers=bad).status_code == 401


def test_email_login_is_refused(client, alice_api):
    _, headers = alice_api

    response = client.post("/auth/login", json={"wallet_address": "alice@example.com"})
    assert response.status_code == 404
    assert client.get("/auth/verify", headers=headers).status_code == 200


def test_register_existing_wallet_needs_its_session(client, alice_api, bob_api):
    alice, alice_headers = alice_api
    _, bob_headers = bob_api
    takeover = {"wallet_address": ALICE_WALLET, "username": "mallory", "email": "mallory@example.com"}

    assert client.post("/auth/register", json=takeover).status_code == 403
    assert client.post("/auth/register", json=takeover, headers=bob_headers).status_code == 403
    assert client.get("/users/me", headers=alice_headers).json()["username"] == "alice"

    response = client.post("/auth/register", json={
        "wallet_address": ALICE_WALLET, "username": "Alice"
    }, headers=alice_headers)
    assert response.status_code == 200
    assert response.json()["user"]["id"] == alice["id"]
    assert response.json()["user"]["username"] == "Alice"


def test_register_validation(client, alice_api):
    response = client.post("/auth/register", json={"wallet_address": BOB_WALLET, "username": "bob"})
    assert response.status_code == 400

    response = client.post("/auth/register", json={
        "wallet_address": CAROL_WALLET, "username": "carol", "email": "alice@example.com"
    })
    assert response.status_code == 409


def test_profile_and_lookup(client, alice_api, bob_api):
    _, headers = alice_api
    bob, _ = bob_api

    response = client.patch("/users/me", json={"username": "Alice"}, headers=headers)
    assert response.json()["username"] == "Alice"

    found = client.get("/users/lookup", params={"identifier": BOB_WALLET}, headers=headers)
    assert found.json()["id"] == bob["id"]
    missing = client.get("/users/lookup", params={"identifier": "x@y.z"}, headers=headers)
    assert missing.status_code == 404


def test_friend_flow(client, alice_api, bob_api):
    alice, alice_headers = alice_api
    bob, bob_headers = bob_api

    response = client.post("/friends/requests", json={"identifier": BOB_WALLET}, headers=alice_headers)
    assert response.status_code == 200
    request_id = response.json()["id"]

    again = client.post("/friends/requests", json={"identifier": BOB_WALLET}, headers=alice_headers)
    assert again.status_code == 409
    self_request = client.post("/friends/requests", json={"identifier": ALICE_WALLET}, headers=alice_headers)
    assert self_request.status_code == 400

    pending = client.get("/friends/requests", headers=bob_headers).json()
    assert pending[0]["requester"]["username"] == "alice"
    assert len(client.get("/friends/requests/sent", headers=alice_headers).json()) == 1

    forbidden = client.post(f"/friends/requests/{request_id}/accept", headers=alice_headers)
    assert forbidden.status_code == 403
    accepted = client.post(f"/friends/requests/{request_id}/accept", headers=bob_headers)
    assert accepted.json()["status"] == "accepted"

    assert [f["id"] for f in client.get("/friends", headers=alice_headers).json()] == [bob["id"]]
    assert client.delete(f"/friends/{alice['id']}", headers=bob_headers).json() == {"success": True}
    assert client.get("/friends", headers=alice_headers).json() == []
    assert client.delete(f"/friends/{alice['id']}", headers=bob_headers).status_code == 404


def test_subscription_flow(client, alice_api, bob_api):
    alice, alice_headers = alice_api
    bob, bob_headers = bob_api

    response = client.post("/subscriptions", json={
        "name": "Netflix", "cost": "15.99", "due_date": "2026-11-01"
    }, headers=alice_headers)
    assert response.status_code == 200
    subscription = response.json()
    assert subscription["billing_cycle"] == "monthly"

    invited = client.post(
        f"/subscriptions/{subscription['id']}/invitations",
        json={"user_id": bob["id"]},
        headers=alice_headers
    )
    assert invited.json()["status"] == "pending"
    assert client.get(f"/subscriptions/{subscription['id']}", headers=bob_headers).status_code == 403

    invitations = client.get("/subscriptions/invitations", headers=bob_headers).json()
    assert invitations[0]["content"]["subscriptionName"] == "Netflix"

    joined = client.post(
        f"/subscriptions/invitations/{invitations[0]['id']}/accept", headers=bob_headers
    ).json()
    assert sorted(float(m["share"]) for m in joined["members"]) == [7.995, 7.995]

    members = client.get(f"/subscriptions/{subscription['id']}/members", headers=bob_headers).json()
    assert {m["user"]["username"] for m in members} == {"alice", "bob"}

    edited = client.patch(
        f"/subscriptions/{subscription['id']}", json={"billing_cycle": "yearly"}, headers=alice_headers
    )
    assert edited.json()["billing_cycle"] == "yearly"
    assert client.patch(
        f"/subscriptions/{subscription['id']}", json={"name": "Mine"}, headers=bob_headers
    ).status_code == 403

    left = client.post(f"/subscriptions/{subscription['id']}/leave", headers=alice_headers).json()
    assert left == {"success": True, "deleted": False, "owner_id": bob["id"]}

    left = client.post(f"/subscriptions/{subscription['id']}/leave", headers=bob_headers).json()
    assert left["deleted"] is True
    assert client.get("/subscriptions", headers=bob_headers).json() == []


def test_subscription_validation(client, alice_api):
    _, headers = alice_api
    response = client.post("/subscriptions", json={"name": "Netflix", "cost": "-1"}, headers=headers)
    assert response.status_code == 422
    response = client.delete("/subscriptions/00000000-0000-0000-0000-000000000000", headers=headers)
    assert response.status_code == 404


def test_notifications_and_payments(client, alice_api, bob_api):
    alice, alice_headers = alice_api
    bob, bob_headers = bob_api

    subscription = client.post(
        "/subscriptions", json={"name": "Spotify", "cost": "10"}, headers=alice_headers
    ).json()
    client.post(
        f"/subscriptions/{subscription['id']}/invitations", json={"user_id": bob["id"]}, headers=alice_headers
    )
    invitation = client.get("/subscriptions/invitations", headers=bob_headers).json()[0]
    client.post(f"/subscriptions/invitations/{invitation['id']}/accept", headers=bob_headers)

    reminder = client.post("/payments/reminders", json={
        "subscription_id": subscription["id"], "receiver_id": bob["id"], "amount": "5"
    }, headers=alice_headers)
    assert reminder.json()["type"] == "payment_reminder"
    assert client.get("/notifications/unread-count", headers=bob_headers).json() == {"count": 1}

    payment = client.post("/payments", json={
        "subscription_id": subscription["id"], "receiver_id": alice["id"], "amount": "5"
    }, headers=bob_headers).json()
    assert payment["status"] == "pending"
    settled = client.patch(
        f"/payments/{payment['id']}", json={"status": "completed", "transaction_hash": "0x1"}, headers=bob_headers
    )
    assert settled.json()["status"] == "completed"
    assert len(client.get("/payments/history", headers=alice_headers).json()) == 1

    notifications = client.get("/notifications", headers=alice_headers).json()
    assert notifications[0]["type"] == "payment_received"
    read = client.post(f"/notifications/{notifications[0]['id']}/read", headers=alice_headers)
    assert read.json()["read"] is True
    assert client.post(f"/notifications/{notifications[0]['id']}/read", headers=bob_headers).status_code == 404

    assert client.post("/notifications/read-all", headers=bob_headers).json() == {"updated": 1}
    assert client.delete("/notifications", headers=bob_headers).json() == {"deleted": 1}


def test_system_health(client):
    health = client.get("/system/health").json()
    assert health["store_backend"] == "memory"
    assert health["store_status"] == "connected"


def test_websocket_rejects_bad_token_and_channel(client, alice_api):
    _, headers = alice_api
    token = headers["Authorization"].split()[1]

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/notifications?token=bogus") as ws:
            ws.receive_json()
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/orders?token={token}") as ws:
            ws.receive_json()


def test_websocket_streams_notifications(client, alice_api, bob_api):
    _, alice_headers = alice_api
    _, bob_headers = bob_api
    token = bob_headers["Authorization"].split()[1]

    with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
        assert ws.receive_json()["type"] == "connected"

        client.post("/friends/requests", json={"identifier": BOB_WALLET}, headers=alice_headers)

        message = ws.receive_json()
        assert message["type"] == "update"
        assert message["channel"] == "notifications"
        assert message["data"]["table"] == "notifications"
        assert message["data"]["new"]["type"] == "friend_request"


def test_websocket_closes_after_logout(client, alice_api, bob_api):
    _, alice_headers = alice_api
    _, bob_headers = bob_api
    token = bob_headers["Authorization"].split()[1]

    with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
        assert ws.receive_json()["type"] == "connected"

        assert client.post("/auth/logout", headers=bob_headers).json() == {"success": True}
        client.post("/friends/requests", json={"identifier": BOB_WALLET}, headers=alice_headers)

        with pytest.raises(WebSocketDisconnect) as closed:
            ws.receive_json()
        assert closed.value.code == 1008


def test_websocket_ping(client):
    with client.websocket_connect("/ws/ping") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"
