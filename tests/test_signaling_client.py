import asyncio

import pytest

from fakes import HOST_CANDIDATE, FakeTrack, RecordingSocket, answer_payload, candidate_payload, offer_payload
from peerlink.client.signaling_client import ChatEntry, SignalingClient
from peerlink.negotiation.media import LocalMedia
from peerlink.negotiation.session import NegotiationState, create_session


@pytest.fixture
def client(session):
    return SignalingClient("ws://relay.test/api/v1/ws", session)


def sent(client):
    messages = []
    while not client._outbox.empty():
        messages.append(client._outbox.get_nowait())
    return messages


async def test_connection_id_from_relay(client):
    await client.handle_message({"type": "connection_established", "userId": "A", "status": "connected"})

    assert client.connection_id == "A"
    assert client.connected.is_set()


async def test_chat_history(client):
    client.join("lobby", "alice")
    await client.handle_message({"type": "user-joined", "message": "bob joined the room", "userId": "B"})
    client.send_chat("hi")
    client.send_chat("   ")
    await client.handle_message({"type": "message", "sender": "bob", "message": "hey"})
    await client.handle_message({"type": "user-left", "message": "bob left the room", "userId": "B"})

    assert client.peer_joined.is_set()
    assert client.messages == [
        ChatEntry("system", "bob joined the room"),
        ChatEntry("alice", "hi"),
        ChatEntry("bob", "hey"),
        ChatEntry("system", "bob left the room"),
    ]
    assert sent(client) == [
        {"type": "join-room", "room": "lobby", "username": "alice"},
        {"type": "message", "room": "lobby", "message": "hi", "sender": "alice"},
    ]


async def test_viewer_answers_offer_and_sends_candidates_to_sharer(client, session):
    client.join("lobby", "bob")
    sent(client)

    await client.handle_message({"type": "offer-send", "from": "A", "offer": offer_payload()})

    messages = sent(client)
    assert messages[0]["type"] == "offer-ack"
    assert messages[0]["to"] == "A"
    assert messages[0]["offerAck"]["type"] == "answer"
    assert [m["type"] for m in messages[1:]] == ["ice-candidate", "ice-candidate"]
    assert all(m["to"] == "A" for m in messages[1:])
    assert messages[1]["candidate"]["candidate"] == HOST_CANDIDATE
    assert client.remote_peer_id == "A"
    assert session.state is NegotiationState.CONNECTED


async def test_sharer_offers_then_accepts_answer(client, session, peers):
    client.join("lobby", "alice")
    sent(client)

    await client.share(LocalMedia([FakeTrack("movie")]))
    offer = sent(client)
    assert offer[0]["type"] == "offer"
    assert offer[0]["room"] == "lobby"
    assert peers[0].tracks[0].id == "movie"

    await client.handle_message({"type": "ice-candidate", "from": "B", "candidate": candidate_payload()})
    await client.handle_message({"type": "offer-accepted", "from": "B", "offerAck": answer_payload()})

    assert session.state is NegotiationState.CONNECTED
    assert len(peers[0].candidates) == 1
    forwarded = sent(client)
    assert [m["type"] for m in forwarded] == ["ice-candidate", "ice-candidate"]
    assert {m["to"] for m in forwarded} == {"B"}


async def test_out_of_sequence_answer_is_logged_not_raised(client, session):
    await client.handle_message({"type": "offer-accepted", "from": "B", "offerAck": answer_payload()})

    assert session.state is NegotiationState.IDLE
    assert sent(client) == []


async def test_second_offer_is_ignored_once_negotiating(client, session):
    await client.handle_message({"type": "offer-send", "from": "A", "offer": offer_payload()})
    sent(client)

    await client.handle_message({"type": "offer-send", "from": "C", "offer": offer_payload()})

    assert client.remote_peer_id == "A"
    assert sent(client) == []


async def test_close_releases_candidate_forwarding(client, session):
    await client.handle_message({"type": "offer-send", "from": "A", "offer": offer_payload()})
    sent(client)

    client.close()
    session.emit("localcandidate", candidate_payload())

    assert sent(client) == []


async def test_offer_rejected_by_the_peer_connection_does_not_escape():
    # no ice-ufrag/pwd: parses fine, but aiortc refuses to apply it
    session = create_session([])
    client = SignalingClient("ws://relay.test/api/v1/ws", session)

    try:
        await client.handle_message({"type": "offer-send", "from": "A", "offer": offer_payload()})

        assert session.state is NegotiationState.FAILED
        assert client.remote_peer_id is None
        assert sent(client) == []

        await client.handle_message({"type": "message", "sender": "bob", "message": "still here"})
        assert client.messages == [ChatEntry("bob", "still here")]
    finally:
        await session.reset()


async def test_leave_emits_once(client):
    client.join("lobby", "alice")
    sent(client)

    client.leave()
    client.leave()

    assert client.room is None
    assert sent(client) == [{"type": "leave-room", "room": "lobby"}]


async def test_flush_waits_for_the_writer(client):
    socket = RecordingSocket()
    writer = asyncio.create_task(client._write(socket))
    try:
        client.join("lobby", "alice")
        client.leave()

        await asyncio.wait_for(client.flush(), timeout=1)

        assert socket.frames == [
            {"type": "join-room", "room": "lobby", "username": "alice"},
            {"type": "leave-room", "room": "lobby"},
        ]
    finally:
        writer.cancel()
