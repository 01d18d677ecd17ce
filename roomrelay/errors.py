"""
Caller-facing failures and the acknowledgement returned for room requests
"""
from dataclasses import dataclass, field
from typing import Optional


class RelayError(Exception):
    """Base class for failures reported back to the caller"""
    reason = "Request failed"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.reason
        super().__init__(self.reason)


class InvalidInput(RelayError):
    reason = "Invalid input"


class RoomNotFound(RelayError):
    reason = "Room not found"


class RoomFull(RelayError):
    reason = "Room is full"


class AlreadyInRoom(RelayError):
    reason = "Already in a room"


@dataclass
class Ack:
    """Result of a create/join request"""
    ok: bool
    error: Optional[str] = None
    data: dict = field(default_factory=dict)

    @classmethod
    def success(cls, **data) -> "Ack":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: str) -> "Ack":
        return cls(ok=False, error=error)

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, **self.data}
        return {"ok": False, "error": self.error}
