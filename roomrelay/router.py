"""
Relay routing: handshake messages to one peer, chat to a room,
room listings to every connection.
"""
import logging
import threading
from typing import Any, Optional

from .state import ConnectionRegistry, Room, RoomStore

logger = logging.getLogger("roomrelay")

HANDSHAKE_KINDS = ("offer", "answer", "candidate")


class RelayRouter:
    """Stateless routing over the registry and store.

    Reads happen under the lock shared with MembershipManager so a relay
    never observes a half-applied join or leave.
    """

    def __init__(self, connections: ConnectionRegistry, rooms: RoomStore, lock: threading.RLock):
        self.connections = connections
        self.rooms = rooms
        self._lock = lock

    def relay_handshake(self, sender_id: str, kind: str, target_id: Any, payload: Any) -> bool:
        """Forward an offer/answer/candidate to a single peer in the sender's room.

        Unknown targets, senders without a room and peers in other rooms
        are dropped without telling the sender.
        """
        if kind not in HANDSHAKE_KINDS:
            raise ValueError(f"unknown handshake kind: {kind}")
        with self._lock:
            sender = self.connections.get(sender_id)
            target = self.connections.get(target_id) if isinstance(target_id, str) else None
            if sender is None or target is None:
                logger.debug("Dropping %s from %s: target %s unreachable", kind, sender_id, target_id)
                return False
            if sender.room_id is None or sender.room_id != target.room_id:
                logger.debug("Dropping %s from %s: %s is not in the same room", kind, sender_id, target_id)
                return False
            return self.connections.deliver(target.identity, kind, {"fromId": sender_id, "payload": payload})

    def relay_chat(self, sender_id: str, text: Any) -> int:
        """Broadcast chat text to the sender's room, sender included"""
        if not isinstance(text, str) or not text.strip():
            logger.debug("Dropping empty chat from %s", sender_id)
            return 0
        with self._lock:
            sender = self.connections.get(sender_id)
            room = self.rooms.get_room(sender.room_id) if sender and sender.room_id else None
            if room is None:
                logger.debug("Dropping chat from %s: not in a room", sender_id)
                return 0
            name = room.members[sender_id].name if sender_id in room.members else sender.name
            return self.notify_room(room, "chat", {"name": name, "text": text})

    def notify_room(self, room: Room, event: str, data: Any, exclude: Optional[str] = None) -> int:
        delivered = 0
        with self._lock:
            for identity in list(room.members):
                if identity == exclude:
                    continue
                if self.connections.deliver(identity, event, data):
                    delivered += 1
        return delivered

    def send_rooms(self, identity: str) -> bool:
        with self._lock:
            return self.connections.deliver(identity, "rooms-update", self.rooms.list_rooms())

    def broadcast_rooms(self) -> int:
        """Push the current room list to every connected client"""
        with self._lock:
            snapshot = self.rooms.list_rooms()
            delivered = 0
            for conn in self.connections:
                if self.connections.deliver(conn.identity, "rooms-update", snapshot):
                    delivered += 1
        logger.debug("Room list (%d rooms) pushed to %d connections", len(snapshot), delivered)
        return delivered
