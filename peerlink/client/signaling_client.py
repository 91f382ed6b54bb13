import asyncio
import json
import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import List, Optional

import websockets

from peerlink.negotiation.media import LocalMedia
from peerlink.negotiation.session import NegotiationSession

logger = logging.getLogger(__name__)

SYSTEM_SENDER = "system"


@dataclass
class ChatEntry:
    sender: str
    message: str


class SignalingClient:
    """Connects a negotiation session to the relay and keeps the room's chat.

    Outbound messages go through a single queue so the relay sees them in
    the order they were produced.
    """

    def __init__(self, url: str, session: NegotiationSession):
        self.url = url
        self.session = session
        self.connection_id: Optional[str] = None
        self.room: Optional[str] = None
        self.username: Optional[str] = None
        self.remote_peer_id: Optional[str] = None
        self.messages: List[ChatEntry] = []
        self.connected = asyncio.Event()
        self.peer_joined = asyncio.Event()
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._subscriptions = ExitStack()
        self._handlers = {
            "connection_established": self._on_connection_established,
            "user-joined": self._on_presence,
            "user-left": self._on_presence,
            "message": self._on_chat,
            "offer-send": self._on_offer,
            "offer-accepted": self._on_offer_accepted,
            "ice-candidate": self._on_ice_candidate,
            "pong": self._on_pong,
            "error": self._on_error,
        }

    async def run(self):
        """Connect and process relay messages until the socket closes"""
        async with websockets.connect(self.url) as websocket:
            logger.info(f"Connected to relay at {self.url}")
            writer = asyncio.create_task(self._write(websocket))
            try:
                async for raw in websocket:
                    try:
                        message = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.error(f"Invalid JSON from relay: {raw!r}")
                        continue
                    await self.handle_message(message)
            finally:
                writer.cancel()
                self.close()

    def close(self):
        self._subscriptions.close()

    async def flush(self):
        """Wait until every queued message has been written"""
        await self._outbox.join()

    def join(self, room: str, username: str):
        self.room = room
        self.username = username
        self._emit("join-room", room=room, username=username)

    def leave(self):
        if self.room:
            self._emit("leave-room", room=self.room)
            self.room = None

    def send_chat(self, text: str):
        if not text.strip():
            return
        self.messages.append(ChatEntry(self.username, text))
        self._emit("message", room=self.room, message=text, sender=self.username)

    async def share(self, media: LocalMedia):
        """Attach local media and offer it to everyone in the room"""
        await self.session.attach_local_media(media)
        offer = await self.session.create_offer()
        self._emit("offer", room=self.room, offer=offer)

    async def handle_message(self, message: dict):
        message_type = message.get("type")
        handler = self._handlers.get(message_type)
        if handler is None:
            logger.warning(f"Unknown message type from relay: {message_type}")
            return
        try:
            await handler(message)
        except Exception as e:
            logger.error(f"Error handling {message_type} from {message.get('from')}: {e}")

    async def _on_connection_established(self, message: dict):
        self.connection_id = message.get("userId")
        self.connected.set()
        logger.info(f"Relay assigned connection id {self.connection_id}")

    async def _on_presence(self, message: dict):
        if message.get("type") == "user-joined":
            self.peer_joined.set()
        self.messages.append(ChatEntry(SYSTEM_SENDER, message.get("message")))

    async def _on_chat(self, message: dict):
        self.messages.append(ChatEntry(message.get("sender"), message.get("message")))

    async def _on_offer(self, message: dict):
        peer_id = message.get("from")
        answer = await self.session.create_answer(message.get("offer"))
        self._bind_remote_peer(peer_id)
        self._emit("offer-ack", to=peer_id, offerAck=answer)
        self._forward_local_candidates(peer_id)

    async def _on_offer_accepted(self, message: dict):
        peer_id = message.get("from")
        await self.session.accept_answer(message.get("offerAck"))
        self._bind_remote_peer(peer_id)
        self._forward_local_candidates(peer_id)

    async def _on_ice_candidate(self, message: dict):
        await self.session.add_remote_candidate(message.get("candidate"))

    async def _on_pong(self, message: dict):
        logger.debug(f"pong {message.get('timestamp')}")

    async def _on_error(self, message: dict):
        logger.warning(f"Relay reported error: {message.get('message')}")

    def _bind_remote_peer(self, peer_id: str):
        self.remote_peer_id = peer_id
        logger.info(f"Negotiating with peer {peer_id}")

    def _forward_local_candidates(self, peer_id: str):
        def forward(candidate):
            if candidate is not None:
                self._emit("ice-candidate", to=peer_id, candidate=candidate)

        self._subscriptions.enter_context(self.session.on_local_candidate(forward))

    def _emit(self, message_type: str, **fields):
        self._outbox.put_nowait({"type": message_type, **fields})

    async def _write(self, websocket):
        while True:
            message = await self._outbox.get()
            try:
                await websocket.send(json.dumps(message))
            finally:
                self._outbox.task_done()
