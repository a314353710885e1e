"""Live connection bookkeeping.

A ``Session`` is one Socket.IO connection. It starts anonymous, may be
bound to a username once (``user_join``) and is dropped on disconnect.
An identity is online while at least one session is bound to it; a
reconnect gets a fresh session bound to the same name.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .errors import InvalidState, NotFound


@dataclass
class Session:
    session_id: str
    identity: Optional[str] = None
    joined_rooms: Set[str] = field(default_factory=set)
    is_typing: bool = False

    @property
    def identified(self) -> bool:
        return self.identity is not None


class SessionRegistry:
    """Owns every ``Session``; the only place sessions are created or removed."""

    def __init__(self) -> None:
        # Insertion ordered, so fan-out and presence lists follow connect order.
        self._sessions: Dict[str, Session] = {}
        self._by_identity: Dict[str, List[str]] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def connect(self, session_id: Optional[str] = None) -> str:
        """Allocate an anonymous session, reusing the transport's id when given."""
        sid = session_id or uuid.uuid4().hex
        if sid in self._sessions:
            raise InvalidState(f"session {sid} is already connected")
        self._sessions[sid] = Session(session_id=sid)
        return sid

    def join(self, session_id: str, username: str) -> bool:
        """Bind *username* to the session.

        Returns True when this is the identity's first live session, i.e.
        the identity just came online.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise InvalidState(f"unknown session {session_id}")
        if session.identified:
            raise InvalidState(f"session {session_id} is already bound to {session.identity}")
        session.identity = username
        sids = self._by_identity.setdefault(username, [])
        sids.append(session_id)
        return len(sids) == 1

    def disconnect(self, session_id: str) -> Optional[Session]:
        """Forget the session and return it, or None if it was never known."""
        session = self._sessions.pop(session_id, None)
        if session is None or session.identity is None:
            return session
        sids = self._by_identity.get(session.identity, [])
        if session_id in sids:
            sids.remove(session_id)
        if not sids:
            self._by_identity.pop(session.identity, None)
        return session

    def lookup(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise NotFound(f"unknown session {session_id}") from None

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def sessions_of(self, username: str) -> List[str]:
        return list(self._by_identity.get(username, ()))

    def is_online(self, username: str) -> bool:
        return bool(self._by_identity.get(username))
