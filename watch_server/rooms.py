"""
In-memory room membership for the relay.

Each connection gets a short member id. A room has at most one host and any
number of guests; it disappears when its last member leaves.
"""

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger("signaling.rooms")


def new_member_id() -> str:
    return secrets.token_hex(4)


@dataclass
class Room:
    room_id: str
    host: Optional[str] = None
    members: Dict[str, Any] = field(default_factory=dict)

    def others(self, member_id: str) -> List[Any]:
        return [ws for mid, ws in self.members.items() if mid != member_id]

    def other_ids(self, member_id: str) -> List[str]:
        return [mid for mid in self.members if mid != member_id]


class RoomRegistry:
    def __init__(self):
        self.rooms: Dict[str, Room] = {}
        # member id -> room id
        self.membership: Dict[str, str] = {}

    def room_of(self, member_id: str) -> Optional[Room]:
        room_id = self.membership.get(member_id)
        return self.rooms.get(room_id) if room_id else None

    def socket_of(self, member_id: str):
        room = self.room_of(member_id)
        return room.members.get(member_id) if room else None

    def create(self, room_id: str, member_id: str, ws) -> Room:
        self.leave(member_id)
        room = self.rooms.setdefault(room_id, Room(room_id))
        if room.host is not None and room.host != member_id:
            logger.info("Room %s host replaced: %s -> %s", room_id, room.host, member_id)
        room.host = member_id
        room.members[member_id] = ws
        self.membership[member_id] = room_id
        logger.info("Room %s created by %s", room_id, member_id)
        return room

    def join(self, room_id: str, member_id: str, ws) -> Room:
        self.leave(member_id)
        room = self.rooms.setdefault(room_id, Room(room_id))
        room.members[member_id] = ws
        self.membership[member_id] = room_id
        logger.info("%s joined room %s (%d members)", member_id, room_id, len(room.members))
        return room

    def leave(self, member_id: str) -> Optional[Room]:
        room_id = self.membership.pop(member_id, None)
        if room_id is None:
            return None
        room = self.rooms.get(room_id)
        if room is None:
            return None
        room.members.pop(member_id, None)
        if room.host == member_id:
            room.host = None
        if not room.members:
            del self.rooms[room_id]
            logger.info("Room %s closed", room_id)
        return room
