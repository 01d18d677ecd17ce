"""
In-memory state for connections and rooms.

ConnectionRegistry owns Connection entries, RoomStore owns Room entries.
Neither class locks on its own: MembershipManager holds the single lock
that every mutation and every multi-step read goes through.
"""
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

from . import config
from .errors import InvalidInput
from .utils import generate_room_id

logger = logging.getLogger("roomrelay")

# Outbound channel of a connection: takes one encoded event and must not block
Sender = Callable[[dict], Any]


def encode_event(event: str, data: Any) -> dict:
    return {"type": event, "data": data}


@dataclass
class Connection:
    identity: str
    send: Sender
    name: Optional[str] = None
    avatar: Optional[str] = None
    room_id: Optional[str] = None


@dataclass
class Member:
    identity: str
    name: str
    avatar: Optional[str] = None

    def to_dict(self) -> dict:
        return {"id": self.identity, "name": self.name, "avatarRef": self.avatar}


@dataclass
class Room:
    id: str
    topic: str
    language: str = config.DEFAULT_LANGUAGE
    level: str = config.DEFAULT_LEVEL
    limit: int = config.DEFAULT_LIMIT
    creator_avatar: Optional[str] = None
    # identity -> Member, in join order
    members: Dict[str, Member] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    @property
    def is_full(self) -> bool:
        return len(self.members) >= self.limit

    def snapshot(self) -> dict:
        """Read-only projection used for room listings"""
        avatars = [m.avatar for m in self.members.values() if m.avatar]
        return {
            "id": self.id,
            "topic": self.topic,
            "language": self.language,
            "level": self.level,
            "limit": self.limit,
            "creatorAvatar": self.creator_avatar,
            "participantCount": len(self.members),
            "avatars": avatars[:config.PREVIEW_AVATARS],
            "createdAt": self.created_at,
        }


class ConnectionRegistry:
    """Active connections keyed by identity"""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def register(self, identity: str, send: Sender, name: Optional[str] = None) -> Connection:
        conn = Connection(identity=identity, send=send, name=name)
        self._connections[identity] = conn
        return conn

    def set_profile(self, identity: str, name: str, avatar: Optional[str] = None):
        conn = self._connections.get(identity)
        if conn is None:
            return
        conn.name = name
        conn.avatar = avatar

    def unregister(self, identity: str) -> Optional[Connection]:
        conn = self._connections.pop(identity, None)
        if conn is not None and conn.room_id is not None:
            logger.warning("Connection %s unregistered while still in room %s", identity, conn.room_id)
        return conn

    def get(self, identity: str) -> Optional[Connection]:
        return self._connections.get(identity)

    def deliver(self, identity: str, event: str, data: Any) -> bool:
        """Push one event to a connection; unknown identities are dropped"""
        conn = self._connections.get(identity)
        if conn is None:
            logger.debug("Dropping %s for departed connection %s", event, identity)
            return False
        try:
            conn.send(encode_event(event, data))
        except Exception as e:
            logger.warning("Failed to queue %s for %s: %s", event, identity, e)
            return False
        return True

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)


def _coerce_limit(limit: Any) -> int:
    if limit is None or limit == "":
        return config.DEFAULT_LIMIT
    if isinstance(limit, bool):
        raise InvalidInput("Invalid participant limit")
    if isinstance(limit, float) and not limit.is_integer():
        raise InvalidInput("Invalid participant limit")
    try:
        value = int(limit)
    except (TypeError, ValueError, OverflowError):
        raise InvalidInput("Invalid participant limit")
    if not 1 <= value <= config.MAX_LIMIT:
        raise InvalidInput("Invalid participant limit")
    return value


class RoomStore:
    """Rooms keyed by their short shareable id"""

    # Recently deleted ids stay reserved
    RETIRED_IDS = 1024

    def __init__(self, id_factory: Callable[[], str] = generate_room_id):
        self._rooms: Dict[str, Room] = {}
        self._retired: Deque[str] = deque(maxlen=self.RETIRED_IDS)
        self._id_factory = id_factory

    def create_room(
        self,
        topic: Optional[str],
        language: Optional[str] = None,
        level: Optional[str] = None,
        limit: Any = None,
        creator_avatar: Optional[str] = None,
    ) -> Room:
        if not isinstance(topic, str) or not topic.strip():
            raise InvalidInput("Topic and name are required")
        limit = _coerce_limit(limit)
        room = Room(
            id=self._fresh_id(),
            topic=topic.strip(),
            language=language or config.DEFAULT_LANGUAGE,
            level=level or config.DEFAULT_LEVEL,
            limit=limit,
            creator_avatar=creator_avatar,
        )
        self._rooms[room.id] = room
        return room

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def list_rooms(self) -> List[dict]:
        """Snapshots of every room that has at least one member, in creation order"""
        return [room.snapshot() for room in self._rooms.values() if room.members]

    def delete_room(self, room_id: str) -> bool:
        """Remove a room, but only if it is still empty"""
        room = self._rooms.get(room_id)
        if room is None or room.members:
            return False
        del self._rooms[room_id]
        self._retired.append(room_id)
        return True

    def _fresh_id(self) -> str:
        while True:
            room_id = self._id_factory()
            if room_id not in self._rooms and room_id not in self._retired:
                return room_id
            logger.debug("Room id collision on %s, regenerating", room_id)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __iter__(self) -> Iterator[Room]:
        return iter(list(self._rooms.values()))

    def __len__(self) -> int:
        return len(self._rooms)
