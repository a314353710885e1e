"""Room membership index (room id <-> member session ids)."""

from __future__ import annotations

from typing import Dict, List, Set

from .registry import SessionRegistry


class RoomIndex:
    """Bidirectional room membership.

    The forward map lives here; the reverse direction is each session's
    ``joined_rooms`` set, and both are always updated together.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry
        self._members: Dict[str, Set[str]] = {}

    def join_room(self, session_id: str, room_id: str) -> bool:
        """Add the session to the room. Returns False if it was already a member."""
        session = self._registry.lookup(session_id)
        members = self._members.setdefault(room_id, set())
        if session_id in members:
            return False
        members.add(session_id)
        session.joined_rooms.add(room_id)
        return True

    def leave_room(self, session_id: str, room_id: str) -> bool:
        members = self._members.get(room_id)
        if not members or session_id not in members:
            return False
        members.discard(session_id)
        if not members:
            del self._members[room_id]
        session = self._registry.get(session_id)
        if session is not None:
            session.joined_rooms.discard(room_id)
        return True

    def leave_all(self, session_id: str) -> List[str]:
        """Drop the session from every room; returns the rooms it left."""
        left = [rid for rid, members in self._members.items() if session_id in members]
        for rid in left:
            self.leave_room(session_id, rid)
        return left

    def members_of(self, room_id: str) -> Set[str]:
        return set(self._members.get(room_id, ()))

    def rooms(self) -> List[str]:
        return list(self._members)
