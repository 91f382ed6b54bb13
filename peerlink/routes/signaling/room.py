from collections import defaultdict
from typing import Dict, List, Set


class Rooms:
    def __init__(self):
        self._peers = defaultdict(set)  # room_id -> set(peer_id)
        self._peer_rooms = defaultdict(set)  # peer_id -> set(room_id)

    def join(self, room_id: str, peer_id: str) -> bool:
        """Add a peer to a room. Returns False if it was already a member."""
        if peer_id in self._peers.get(room_id, ()):
            return False
        self._peers[room_id].add(peer_id)
        self._peer_rooms[peer_id].add(room_id)
        return True

    def leave(self, room_id: str, peer_id: str) -> bool:
        """Remove a peer from one room. Returns False if it was not a member."""
        members = self._peers.get(room_id)
        if not members or peer_id not in members:
            return False
        members.discard(peer_id)
        if not members:
            self._peers.pop(room_id, None)
        joined = self._peer_rooms.get(peer_id)
        if joined is not None:
            joined.discard(room_id)
            if not joined:
                self._peer_rooms.pop(peer_id, None)
        return True

    def leave_all(self, peer_id: str) -> List[str]:
        """Remove a peer from every room it joined, returning those rooms"""
        rooms = sorted(self._peer_rooms.get(peer_id, ()))
        for room_id in rooms:
            self.leave(room_id, peer_id)
        return rooms

    def others(self, room_id: str, peer_id: str) -> List[str]:
        return [p for p in self._peers.get(room_id, ()) if p != peer_id]

    def get_peers_in_room(self, room_id: str) -> Set[str]:
        """Get all peer IDs in a specific room"""
        return set(self._peers.get(room_id, ()))

    def get_peer_rooms(self, peer_id: str) -> Set[str]:
        """Get the rooms a specific peer has joined"""
        return set(self._peer_rooms.get(peer_id, ()))

    @property
    def rooms(self) -> Dict[str, Set[str]]:
        """Get all active rooms"""
        return self._peers
