import pytest
from fastapi.testclient import TestClient

from peerlink.main import app
from peerlink.routes.signaling import web_socket
from peerlink.routes.signaling.relay import Relay

WS_URL = "/api/v1/ws"


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(web_socket, "relay", Relay())
    with TestClient(app) as test_client:
        yield test_client


def handshake(ws):
    hello = ws.receive_json()
    assert hello["type"] == "connection_established"
    return hello["userId"]


def sync(ws):
    """Round-trip a ping so everything sent before it has been handled"""
    ws.send_json({"type": "ping", "timestamp": 1})
    assert ws.receive_json() == {"type": "pong", "timestamp": 1}


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    assert client.get("/api/v1/health").json() == {
        "status": "healthy",
        "active_connections": 0,
        "active_rooms": 0,
    }


def test_join_and_chat_between_two_clients(client):
    with client.websocket_connect(WS_URL) as a, client.websocket_connect(WS_URL) as b:
        a_id = handshake(a)
        b_id = handshake(b)
        assert a_id != b_id

        a.send_json({"type": "join-room", "room": "lobby", "username": "alice"})
        sync(a)
        b.send_json({"type": "join-room", "room": "lobby", "username": "bob"})

        assert a.receive_json() == {"type": "user-joined", "message": "bob joined the room", "userId": b_id}

        a.send_json({"type": "message", "room": "lobby", "message": "hi", "sender": "alice"})
        assert b.receive_json() == {"type": "message", "sender": "alice", "message": "hi"}
        # next thing alice sees is her own pong, not an echo of her chat
        sync(a)

        health = client.get("/api/v1/health").json()
        assert health["active_connections"] == 2
        assert health["active_rooms"] == 1
        connections = client.get("/api/v1/connections").json()
        assert connections["active_connections"] == {a_id: ["lobby"], b_id: ["lobby"]}


def test_offer_answer_and_candidates_are_routed(client):
    with client.websocket_connect(WS_URL) as a, \
            client.websocket_connect(WS_URL) as b, \
            client.websocket_connect(WS_URL) as c:
        a_id = handshake(a)
        b_id = handshake(b)
        handshake(c)
        for ws, name in ((a, "alice"), (b, "bob"), (c, "carol")):
            ws.send_json({"type": "join-room", "room": "lobby", "username": name})
            sync(ws)
        # drain the join notices
        assert a.receive_json()["type"] == "user-joined"
        assert a.receive_json()["type"] == "user-joined"
        assert b.receive_json()["type"] == "user-joined"

        offer = {"type": "offer", "sdp": "v=0 offer"}
        a.send_json({"type": "offer", "room": "lobby", "offer": offer})
        assert b.receive_json() == {"type": "offer-send", "from": a_id, "offer": offer}
        assert c.receive_json() == {"type": "offer-send", "from": a_id, "offer": offer}

        answer = {"type": "answer", "sdp": "v=0 answer"}
        b.send_json({"type": "offer-ack", "to": a_id, "offerAck": answer})
        assert a.receive_json() == {"type": "offer-accepted", "from": b_id, "offerAck": answer}

        candidate = {"candidate": "candidate:1 1 UDP 1 10.0.0.2 9 typ host", "sdpMid": "0", "sdpMLineIndex": 0}
        a.send_json({"type": "ice-candidate", "to": b_id, "candidate": candidate})
        assert b.receive_json() == {"type": "ice-candidate", "from": a_id, "candidate": candidate}

        # carol only ever saw the room-wide offer
        sync(c)


def test_disconnect_notifies_room(client):
    with client.websocket_connect(WS_URL) as a:
        a_id = handshake(a)
        a.send_json({"type": "join-room", "room": "lobby", "username": "alice"})
        sync(a)
        with client.websocket_connect(WS_URL) as b:
            b_id = handshake(b)
            b.send_json({"type": "join-room", "room": "lobby", "username": "bob"})
            assert a.receive_json()["type"] == "user-joined"

        assert a.receive_json() == {"type": "user-left", "message": "bob left the room", "userId": b_id}
        assert web_socket.relay.get_members("lobby") == [a_id]


def test_protocol_errors_keep_connection_open(client):
    with client.websocket_connect(WS_URL) as a:
        handshake(a)

        a.send_text("{not json")
        assert a.receive_json() == {"type": "error", "message": "Invalid JSON format"}

        a.send_json({"type": "teleport"})
        assert a.receive_json() == {"type": "error", "message": "Unknown message type: teleport"}

        a.send_json({"type": "offer-ack", "offerAck": {}})
        assert a.receive_json() == {"type": "error", "message": "Missing to"}

        a.send_json({"type": "join-room", "room": "lobby", "username": 5})
        assert a.receive_json() == {"type": "error", "message": "username must be a string"}

        sync(a)


def test_unexpected_handler_failure_is_reported(client, monkeypatch):
    handle_message = web_socket.relay.handle_message

    async def explode_on_chat(connection_id, message):
        if message.get("type") == "message":
            raise RuntimeError("boom")
        await handle_message(connection_id, message)

    monkeypatch.setattr(web_socket.relay, "handle_message", explode_on_chat)

    with client.websocket_connect(WS_URL) as a:
        handshake(a)

        a.send_json({"type": "message", "room": "lobby", "message": "hi"})
        assert a.receive_json() == {"type": "error", "message": "Error processing message: boom"}

        # still connected
        sync(a)
