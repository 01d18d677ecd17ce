"""
Membership lifecycle: connect, create, join, leave, disconnect and the
delayed cleanup of emptied rooms.

Every method runs under one re-entrant lock, so the registry and the
store change together and a connection's room_id always matches the
member set it appears in. Methods are called on the event loop thread;
the default cleanup scheduler is that loop's call_later.
"""
import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from . import config
from .errors import Ack, AlreadyInRoom, InvalidInput, RelayError, RoomFull, RoomNotFound
from .router import RelayRouter
from .state import Connection, ConnectionRegistry, Member, RoomStore, Sender

logger = logging.getLogger("roomrelay")

# (delay, callback, *args) -> handle with cancel()
Scheduler = Callable[..., Any]


def _call_later(delay: float, callback: Callable, *args):
    return asyncio.get_running_loop().call_later(delay, callback, *args)


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class MembershipManager:
    def __init__(
        self,
        connections: Optional[ConnectionRegistry] = None,
        rooms: Optional[RoomStore] = None,
        cleanup_delay: float = config.CLEANUP_DELAY,
        scheduler: Scheduler = _call_later,
    ):
        self.connections = connections if connections is not None else ConnectionRegistry()
        self.rooms = rooms if rooms is not None else RoomStore()
        self.cleanup_delay = cleanup_delay
        self.lock = threading.RLock()
        self.router = RelayRouter(self.connections, self.rooms, self.lock)
        self._schedule = scheduler
        # room_id -> pending cleanup handle
        self._cleanups: Dict[str, Any] = {}

    # ------------------------------------------------------------
    # CONNECTIONS
    # ------------------------------------------------------------

    def connect(self, identity: str, send: Sender, name: Optional[str] = None) -> Connection:
        """Register a new connection and hand it the current room list"""
        with self.lock:
            conn = self.connections.register(identity, send, name=name)
            self.router.send_rooms(identity)
        logger.info("🔌 Connected %s (total: %d)", identity, len(self.connections))
        return conn

    def disconnect(self, identity: str):
        with self.lock:
            try:
                self.leave(identity)
            finally:
                self.connections.unregister(identity)
            remaining = len(self.connections)
        logger.info("🔌 Disconnected %s (remaining: %d)", identity, remaining)

    # ------------------------------------------------------------
    # ROOMS
    # ------------------------------------------------------------

    def list_rooms(self) -> List[dict]:
        with self.lock:
            return self.rooms.list_rooms()

    def create_and_join(
        self,
        identity: str,
        name: Any,
        topic: Any,
        language: Optional[str] = None,
        level: Optional[str] = None,
        limit: Any = None,
        avatar: Optional[str] = None,
    ) -> Ack:
        """Create a room with the caller as its first member"""
        try:
            with self.lock:
                conn = self._unjoined(identity)
                name = _clean(name)
                if not name or not _clean(topic):
                    raise InvalidInput("Topic and name are required")
                room = self.rooms.create_room(
                    topic, language=language, level=level, limit=limit, creator_avatar=avatar
                )
                self._add_member(conn, room.id, name, avatar)
                self.router.broadcast_rooms()
        except RelayError as e:
            logger.info("Create room failed for %s: %s", identity, e.reason)
            return Ack.failure(e.reason)

        logger.info("🎙️ Room created: %s (%s) by %s", room.topic, room.id, name)
        return Ack.success(roomId=room.id, topic=room.topic)

    def join(self, identity: str, room_id: Any, name: Any, avatar: Optional[str] = None) -> Ack:
        """Join an existing room; the reply lists the members already there"""
        try:
            with self.lock:
                conn = self._unjoined(identity)
                name = _clean(name)
                if not name or not isinstance(room_id, str) or not room_id:
                    raise InvalidInput("Room ID and name are required")
                room = self.rooms.get_room(room_id)
                if room is None:
                    raise RoomNotFound()
                if room.is_full:
                    raise RoomFull()

                others = [m.to_dict() for m in room.members.values()]
                self._add_member(conn, room.id, name, avatar)
                self.router.notify_room(
                    room, "member-joined", {"id": identity, "name": name, "avatarRef": avatar}, exclude=identity
                )
                self.router.broadcast_rooms()
        except RelayError as e:
            logger.info("Join %s failed for %s: %s", room_id, identity, e.reason)
            return Ack.failure(e.reason)

        logger.info("✅ %s joined %s (%d/%d)", name, room.id, len(others) + 1, room.limit)
        return Ack.success(roomId=room.id, topic=room.topic, otherMembers=others)

    def leave(self, identity: str) -> bool:
        """Take the connection out of its room; a no-op when it has none"""
        with self.lock:
            conn = self.connections.get(identity)
            if conn is None or conn.room_id is None:
                return False
            room = self.rooms.get_room(conn.room_id)
            conn.room_id = None
            if room is None:
                return False
            member = room.members.pop(identity, None)
            name = member.name if member else conn.name
            self.router.notify_room(room, "member-left", {"id": identity, "name": name})
            self.router.broadcast_rooms()
            if not room.members:
                self._schedule_cleanup(room.id)
        logger.info("👋 %s left %s (%d remaining)", name, room.id, len(room.members))
        return True

    def expire_room(self, room_id: str) -> bool:
        """Cleanup timer callback: delete the room if it is still empty"""
        with self.lock:
            self._cleanups.pop(room_id, None)
            if not self.rooms.delete_room(room_id):
                logger.debug("Cleanup skipped for %s: gone or re-populated", room_id)
                return False
            self.router.broadcast_rooms()
        logger.info("🧹 Removed empty room %s", room_id)
        return True

    def shutdown(self):
        """Cancel pending cleanup timers"""
        with self.lock:
            handles = list(self._cleanups.values())
            self._cleanups.clear()
        for handle in handles:
            handle.cancel()

    # ------------------------------------------------------------
    # HELPERS
    # ------------------------------------------------------------

    def _unjoined(self, identity: str) -> Connection:
        conn = self.connections.get(identity)
        if conn is None:
            raise InvalidInput("Unknown connection")
        if conn.room_id is not None:
            raise AlreadyInRoom()
        return conn

    def _add_member(self, conn: Connection, room_id: str, name: str, avatar: Optional[str]):
        room = self.rooms.get_room(room_id)
        room.members[conn.identity] = Member(identity=conn.identity, name=name, avatar=avatar)
        conn.room_id = room_id
        self.connections.set_profile(conn.identity, name, avatar)

    def _schedule_cleanup(self, room_id: str):
        previous = self._cleanups.pop(room_id, None)
        if previous is not None:
            previous.cancel()
        self._cleanups[room_id] = self._schedule(self.cleanup_delay, self.expire_room, room_id)
        logger.debug("Room %s empty, cleanup in %.1fs", room_id, self.cleanup_delay)
