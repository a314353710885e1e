"""Online-user and typing sets derived from the session registry."""

from __future__ import annotations

from typing import Dict, List, Optional

from .registry import SessionRegistry
from .schemas import OnlineUser


class PresenceTracker:
    """Derived views over the registry.

    The online list is cached and thrown away on every join or
    disconnect. Typing is kept as session id -> username, mirroring each
    session's ``is_typing`` flag. There is no server-side typing expiry.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry
        self._typing: Dict[str, str] = {}
        self._online: Optional[List[OnlineUser]] = None

    def invalidate(self) -> None:
        self._online = None

    def online_users(self) -> List[OnlineUser]:
        if self._online is None:
            self._online = [
                OnlineUser(username=s.identity, id=s.session_id)
                for s in self._registry.sessions()
                if s.identity is not None
            ]
        return list(self._online)

    def set_typing(self, session_id: str, is_typing: bool) -> bool:
        """Update the typing flag. Returns False (no-op) for anonymous sessions."""
        session = self._registry.get(session_id)
        if session is None or session.identity is None:
            return False
        session.is_typing = is_typing
        if is_typing:
            self._typing[session_id] = session.identity
        else:
            self._typing.pop(session_id, None)
        return True

    def clear(self, session_id: str) -> None:
        self._typing.pop(session_id, None)
        session = self._registry.get(session_id)
        if session is not None:
            session.is_typing = False

    def typing_users(self) -> List[str]:
        return list(self._typing.values())
