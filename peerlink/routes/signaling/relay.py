import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .room import Rooms

logger = logging.getLogger(__name__)

SendFunc = Callable[[dict], Awaitable[None]]


class RelayError(ValueError):
    """A client message the relay cannot route. Reported back to the sender."""


@dataclass
class Connection:
    connection_id: str
    send: SendFunc
    # room_id -> display name used when joining it
    names: Dict[str, str] = field(default_factory=dict)


class Relay:
    """Room membership table plus the forwarding rules for signaling messages.

    Every operation takes the acting connection id explicitly. Payloads
    (offers, answers, candidates) are forwarded untouched; only the routing
    fields are checked.
    """

    def __init__(self):
        self.rooms = Rooms()
        self.connections: Dict[str, Connection] = {}
        self._lock = asyncio.Lock()
        self._handlers = {
            "join-room": self._on_join_room,
            "leave-room": self._on_leave_room,
            "message": self._on_chat,
            "offer": self._on_offer,
            "offer-ack": self._on_offer_ack,
            "ice-candidate": self._on_ice_candidate,
            "ping": self._on_ping,
        }

    async def connect(self, send: SendFunc, connection_id: Optional[str] = None) -> Connection:
        connection = Connection(connection_id or uuid.uuid4().hex, send)
        async with self._lock:
            if connection.connection_id in self.connections:
                raise RelayError(f"Connection {connection.connection_id} already registered")
            self.connections[connection.connection_id] = connection
        logger.info(f"Connection {connection.connection_id} registered")
        return connection

    async def disconnect(self, connection_id: str):
        async with self._lock:
            connection = self.connections.pop(connection_id, None)
            if connection is None:
                return
            rooms = self.rooms.leave_all(connection_id)
            notices = [(connection.names.get(room_id), self.rooms.get_peers_in_room(room_id)) for room_id in rooms]
        logger.info(f"Connection {connection_id} disconnected, left rooms {rooms}")

        for name, recipients in notices:
            await self._deliver(recipients, {
                "type": "user-left",
                "message": f"{name} left the room",
                "userId": connection_id,
            })

    async def join_room(self, connection_id: str, room_id: str, username: Optional[str] = None):
        async with self._lock:
            connection = self._get(connection_id)
            name = username.strip() if username and username.strip() else f"User_{connection_id[:8]}"
            if not self.rooms.join(room_id, connection_id):
                logger.debug(f"Connection {connection_id} already in room {room_id}")
                return
            connection.names[room_id] = name
            recipients = self.rooms.others(room_id, connection_id)
        logger.info(f"{name} ({connection_id}) joined room {room_id}")

        await self._deliver(recipients, {
            "type": "user-joined",
            "message": f"{name} joined the room",
            "userId": connection_id,
        })

    async def leave_room(self, connection_id: str, room_id: str):
        async with self._lock:
            connection = self._get(connection_id)
            if not self.rooms.leave(room_id, connection_id):
                return
            name = connection.names.pop(room_id, None)
            recipients = self.rooms.get_peers_in_room(room_id)
        logger.info(f"{name} ({connection_id}) left room {room_id}")

        await self._deliver(recipients, {
            "type": "user-left",
            "message": f"{name} left the room",
            "userId": connection_id,
        })

    async def send_chat(self, connection_id: str, room_id: str, text: Any, sender: Any):
        await self._broadcast(room_id, connection_id, {
            "type": "message",
            "sender": sender,
            "message": text,
        })

    async def send_offer(self, connection_id: str, room_id: str, offer: Any):
        await self._broadcast(room_id, connection_id, {
            "type": "offer-send",
            "from": connection_id,
            "offer": offer,
        })

    async def send_offer_ack(self, connection_id: str, to: str, offer_ack: Any):
        await self.send_personal_message({
            "type": "offer-accepted",
            "from": connection_id,
            "offerAck": offer_ack,
        }, to)

    async def send_candidate(self, connection_id: str, to: str, candidate: Any):
        await self.send_personal_message({
            "type": "ice-candidate",
            "from": connection_id,
            "candidate": candidate,
        }, to)

    async def send_personal_message(self, message: dict, connection_id: str) -> bool:
        """Deliver to one connection. Unknown targets are dropped silently."""
        connection = self.connections.get(connection_id)
        if connection is None:
            logger.debug(f"Dropping {message.get('type')} for unknown connection {connection_id}")
            return False
        return await self._send(connection, message)

    async def handle_message(self, connection_id: str, message: dict):
        """Dispatch one decoded client message.

        Raises RelayError for unknown types and missing routing fields.
        """
        if not isinstance(message, dict):
            raise RelayError("Message must be a JSON object")
        message_type = message.get("type")
        handler = self._handlers.get(message_type)
        if handler is None:
            raise RelayError(f"Unknown message type: {message_type}")
        await handler(connection_id, message)

    def get_members(self, room_id: str) -> List[str]:
        return sorted(self.rooms.get_peers_in_room(room_id))

    async def _on_join_room(self, connection_id: str, message: dict):
        room_id = _require(message, "room")
        username = message.get("username")
        if username is not None and not isinstance(username, str):
            raise RelayError("username must be a string")
        await self.join_room(connection_id, room_id, username)

    async def _on_leave_room(self, connection_id: str, message: dict):
        await self.leave_room(connection_id, _require(message, "room"))

    async def _on_chat(self, connection_id: str, message: dict):
        await self.send_chat(connection_id, _require(message, "room"), message.get("message"), message.get("sender"))

    async def _on_offer(self, connection_id: str, message: dict):
        await self.send_offer(connection_id, _require(message, "room"), message.get("offer"))

    async def _on_offer_ack(self, connection_id: str, message: dict):
        await self.send_offer_ack(connection_id, _require(message, "to"), message.get("offerAck"))

    async def _on_ice_candidate(self, connection_id: str, message: dict):
        await self.send_candidate(connection_id, _require(message, "to"), message.get("candidate"))

    async def _on_ping(self, connection_id: str, message: dict):
        await self.send_personal_message({
            "type": "pong",
            "timestamp": message.get("timestamp"),
        }, connection_id)

    async def _broadcast(self, room_id: str, sender_id: str, message: dict):
        async with self._lock:
            recipients = self.rooms.others(room_id, sender_id)
        await self._deliver(recipients, message)

    async def _deliver(self, recipients: Iterable[str], message: dict):
        for peer_id in recipients:
            connection = self.connections.get(peer_id)
            if connection is not None:
                await self._send(connection, message)

    async def _send(self, connection: Connection, message: dict) -> bool:
        try:
            await connection.send(message)
            return True
        except Exception as e:
            logger.warning(f"Error sending {message.get('type')} to {connection.connection_id}: {e}")
            return False

    def _get(self, connection_id: str) -> Connection:
        connection = self.connections.get(connection_id)
        if connection is None:
            raise RelayError(f"Unknown connection {connection_id}")
        return connection


def _require(message: dict, key: str) -> str:
    value = message.get(key)
    if not isinstance(value, str) or not value:
        raise RelayError(f"Missing {key}")
    return value
