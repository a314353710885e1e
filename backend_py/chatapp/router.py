"""Inbound event handling and fan-out.

``EventRouter`` is the single entry point for everything a client emits.
Each handler validates its payload, mutates the in-memory session state,
persists through the store and returns the outbound events it produced
as ``Outbound`` records; it never talks to a socket itself. The Socket.IO
layer in ``chatapp.sockets`` delivers them.

Ordering rules every handler follows:

* Routing state (registry, rooms, typing) is mutated, and recipient sets
  are computed, synchronously before the first ``await``.
* Anything describing a stored record is only produced after the store
  call returned. If it raises, the event produces no output at all.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import ChatError, InvalidState, PersistenceError, Unresolvable
from .lifecycle import MessageLifecycle
from .models import TargetKind
from .presence import PresenceTracker
from .registry import Session, SessionRegistry
from .rooms import RoomIndex
from .schemas import (
    MessageDelivered,
    PrivateMessage,
    ReactMessage,
    ReadMessage,
    RoomRequest,
    SearchMessages,
    SendFile,
    SendMessage,
    Typing,
    UnreadCount,
    UserJoin,
)
from .store import ChatStore

log = logging.getLogger("uvicorn.error")

ANONYMOUS = "Anonymous"

M = TypeVar("M", bound=BaseModel)
Handler = Callable[[str, Any], Awaitable[List["Outbound"]]]


@dataclass(frozen=True)
class Outbound:
    """One event to emit to an explicit list of session ids."""

    event: str
    data: Any
    to: Tuple[str, ...]


def _unique(sids: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(sids))


def _parse(model: Type[M], payload: Any, bare_field: Optional[str] = None) -> M:
    # Older clients emit bare values: user_join("alice"), typing(true), ...
    if bare_field is not None and not isinstance(payload, dict):
        payload = {bare_field: payload}
    return model.model_validate(payload if payload is not None else {})


class EventRouter:
    def __init__(
        self,
        store: ChatStore,
        registry: Optional[SessionRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.registry = registry or SessionRegistry()
        self.rooms = RoomIndex(self.registry)
        self.presence = PresenceTracker(self.registry)
        self.lifecycle = MessageLifecycle(store)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # One writer at a time per username for the online flag in the store.
        self._status_locks: Dict[str, asyncio.Lock] = {}
        self._handlers: Dict[str, Handler] = {
            "user_join": self.on_user_join,
            "send_message": self.on_send_message,
            "typing": self.on_typing,
            "private_message": self.on_private_message,
            "send_file": self.on_send_file,
            "react_message": self.on_react_message,
            "read_message": self.on_read_message,
            "message_delivered": self.on_message_delivered,
            "get_unread_count": self.on_get_unread_count,
            "search_messages": self.on_search_messages,
            "join_room": self.on_join_room,
            "leave_room": self.on_leave_room,
        }

    @property
    def events(self) -> List[str]:
        return list(self._handlers)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def connect(self, session_id: Optional[str] = None) -> str:
        sid = self.registry.connect(session_id)
        log.info("Socket connected: %s", sid)
        return sid

    async def dispatch(self, session_id: str, event: str, payload: Any = None) -> List[Outbound]:
        """Handle one inbound event; failures are contained to this event."""
        handler = self._handlers.get(event)
        if handler is None:
            log.warning("Ignoring unknown event %r from %s", event, session_id)
            return []
        try:
            return await handler(session_id, payload)
        except ValidationError as e:
            log.warning("Rejected %s from %s: invalid payload (%d errors)", event, session_id, e.error_count())
        except PersistenceError:
            log.exception("Persistence failed while handling %s from %s", event, session_id)
        except Unresolvable as e:
            log.info("%s from %s stored but not delivered: %s", event, session_id, e)
        except ChatError as e:
            log.warning("Rejected %s from %s: %s", event, session_id, e)
        return []

    async def disconnect(self, session_id: str) -> List[Outbound]:
        """Tear down a session. Safe for unknown or never-joined sessions."""
        self.rooms.leave_all(session_id)
        self.presence.clear(session_id)
        session = self.registry.disconnect(session_id)
        if session is None:
            return []
        self.presence.invalidate()

        out: List[Outbound] = []
        everyone = self._everyone()
        username = session.identity
        if username is not None:
            log.info("%s left the chat", username)
            out.append(Outbound("user_left", {"username": username, "id": session_id}, everyone))
            await self._mirror_status(username)
        else:
            log.info("Socket disconnected: %s", session_id)
        out.append(Outbound("user_list", self._user_list(), everyone))
        out.append(Outbound("typing_users", self.presence.typing_users(), everyone))
        return out

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _everyone(self) -> Tuple[str, ...]:
        return tuple(self.registry.session_ids())

    def _user_list(self) -> List[dict]:
        return [u.model_dump() for u in self.presence.online_users()]

    def _resolve(self, to: str) -> List[str]:
        """Live sessions addressed by *to*: a session id, or else a username."""
        if to in self.registry:
            return [to]
        return self.registry.sessions_of(to)

    def _sender(self, session: Session) -> str:
        return session.identity or ANONYMOUS

    def _recipient_identity(self, to: str) -> str:
        """Username a direct message is stored against; a bound session id maps to its owner."""
        target = self.registry.get(to)
        if target is not None and target.identity:
            return target.identity
        return to

    async def _mirror_status(self, username: str, socket_id: Optional[str] = None) -> None:
        """Copy the registry's view of *username* into the identity store.

        Writes for one username are serialized, and each writes the
        registry state as of the write, so a late disconnect cannot
        overwrite the online flag of a reconnect that already joined.
        """
        lock = self._status_locks.setdefault(username, asyncio.Lock())
        async with lock:
            online = self.registry.is_online(username)
            try:
                await self.store.upsert_online_status(username, online, socket_id if online else None)
            except PersistenceError:
                log.exception("Could not record %s as %s", username, "online" if online else "offline")

    def _target(
        self, session: Session, to: Optional[str], room_id: Optional[str]
    ) -> Tuple[TargetKind, Tuple[str, ...]]:
        """Target kind and recipient set, decided at dispatch time."""
        if to:
            resolved = self._resolve(to)
            if not resolved:
                return TargetKind.direct, ()
            return TargetKind.direct, _unique([session.session_id, *resolved])
        if room_id:
            return TargetKind.room, _unique(self.rooms.members_of(room_id))
        return TargetKind.broadcast, self._everyone()

    async def _store_and_route(
        self,
        event: str,
        session: Session,
        fields: Dict[str, Any],
        to: Optional[str],
        room_id: Optional[str],
    ) -> List[Outbound]:
        kind, recipients = self._target(session, to, room_id)
        fields.update(
            target_kind=kind,
            room_id=room_id if kind is TargetKind.room else None,
            recipient=self._recipient_identity(to) if kind is TargetKind.direct else None,
            created_at=self._clock(),
        )
        message = await self.store.create_message(fields)
        if kind is TargetKind.direct and not recipients:
            raise Unresolvable(f"no live session for {to!r} (message {message.id})")
        if not recipients:
            return []
        return [Outbound(event, message.to_wire(), recipients)]

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def on_user_join(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(UserJoin, payload, "username")
        self.registry.join(session_id, body.username)
        self.presence.invalidate()
        log.info("%s joined the chat", body.username)
        await self._mirror_status(body.username, session_id)
        everyone = self._everyone()
        return [
            Outbound("user_joined", {"username": body.username, "id": session_id}, everyone),
            Outbound("user_list", self._user_list(), everyone),
        ]

    async def on_typing(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(Typing, payload, "isTyping")
        if not self.presence.set_typing(session_id, body.is_typing):
            return []
        return [Outbound("typing_users", self.presence.typing_users(), self._everyone())]

    async def on_send_message(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(SendMessage, payload, "message")
        session = self.registry.lookup(session_id)
        fields = {"sender": self._sender(session), "sender_id": session_id, "body": body.message}
        return await self._store_and_route("receive_message", session, fields, body.to, body.room_id)

    async def on_private_message(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(PrivateMessage, payload)
        session = self.registry.lookup(session_id)
        fields = {"sender": self._sender(session), "sender_id": session_id, "body": body.message}
        return await self._store_and_route("private_message", session, fields, body.to, None)

    async def on_send_file(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(SendFile, payload)
        session = self.registry.lookup(session_id)
        fields = {
            "sender": session.identity or body.sender or ANONYMOUS,
            "sender_id": session_id,
            "body": body.file_name,
            "attachment_url": body.file_url,
            "attachment_name": body.file_name or None,
        }
        to = body.to if (body.is_private or not body.room_id) else None
        return await self._store_and_route("receive_file", session, fields, to, body.room_id)

    async def on_react_message(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(ReactMessage, payload)
        self.registry.lookup(session_id)
        everyone = self._everyone()
        message = await self.lifecycle.add_reaction(body.message_id, body.reaction)
        return [Outbound("message_reacted", message.to_wire(), everyone)]

    async def on_read_message(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(ReadMessage, payload)
        session = self.registry.lookup(session_id)
        reader = body.user_id or session.identity
        if not reader:
            raise InvalidState(f"session {session_id} has no identity to mark messages read with")
        everyone = self._everyone()
        message = await self.lifecycle.mark_read(body.message_id, reader)
        return [Outbound("message_read", message.to_wire(), everyone)]

    async def on_message_delivered(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(MessageDelivered, payload)
        session = self.registry.lookup(session_id)
        data = {"messageId": body.message_id, "userId": body.user_id or session.identity or session_id}
        return [Outbound("message_delivered", data, self._everyone())]

    async def on_get_unread_count(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(UnreadCount, payload, "userId")
        session = self.registry.lookup(session_id)
        reader = body.user_id or session.identity
        if not reader:
            raise InvalidState(f"session {session_id} has no identity to count unread messages for")
        count = await self.store.count_unread(reader)
        return [Outbound("unread_count", count, (session_id,))]

    async def on_search_messages(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(SearchMessages, payload, "query")
        session = self.registry.lookup(session_id)
        results = await self.store.query_messages(search=body.query)
        # Direct messages only show up for the two parties.
        mine = {session_id} | ({session.identity} if session.identity else set())
        visible = [
            m.to_wire()
            for m in results
            if not m.is_private or m.sender_id in mine or m.to in mine or m.sender in mine
        ]
        return [Outbound("search_results", visible, (session_id,))]

    async def on_join_room(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(RoomRequest, payload, "roomId")
        room_id = body.room_id
        name = None
        if room_id.isdigit():
            known = await self.store.get_room(int(room_id))
            name = known.name if known else None
        # Raises NotFound if the session went away during the lookup.
        self.rooms.join_room(session_id, room_id)
        data = {"roomId": room_id, "name": name, "members": len(self.rooms.members_of(room_id))}
        return [Outbound("room_joined", data, (session_id,))]

    async def on_leave_room(self, session_id: str, payload: Any) -> List[Outbound]:
        body = _parse(RoomRequest, payload, "roomId")
        self.registry.lookup(session_id)
        self.rooms.leave_room(session_id, body.room_id)
        return [Outbound("room_left", {"roomId": body.room_id}, (session_id,))]
