"""SQLAlchemy-backed persistence for messages, users and rooms.

Every public method is a coroutine: the blocking SQL work runs in the
threadpool so a slow write only suspends the handler waiting on it.
Database failures surface as ``PersistenceError``; an unknown message
id as ``NotFound``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import SessionLocal
from .errors import InvalidState, NotFound, PersistenceError
from .models import Message, MessageRead, MessageReaction, Room, TargetKind, User
from .schemas import ChatMessage, RoomOut, UserOut


def _user_out(user: User) -> UserOut:
    return UserOut(username=user.username, online=bool(user.online), last_socket_id=user.last_socket_id)


class ChatStore:
    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await run_in_threadpool(self._transaction, fn, *args)

    def _transaction(self, fn: Callable[..., Any], *args: Any) -> Any:
        db: Session = self._session_factory()
        try:
            result = fn(db, *args)
            db.commit()
            return result
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"{fn.__name__} failed: {e}") from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def create_message(self, fields: Dict[str, Any]) -> ChatMessage:
        return await self._run(self._create_message, fields)

    @staticmethod
    def _create_message(db: Session, fields: Dict[str, Any]) -> ChatMessage:
        msg = Message(
            sender=fields.get("sender") or "Anonymous",
            sender_id=fields.get("sender_id"),
            body=fields.get("body") or "",
            created_at=fields.get("created_at") or datetime.now(timezone.utc),
            target_kind=TargetKind(fields.get("target_kind", TargetKind.broadcast)),
            room_id=fields.get("room_id"),
            recipient=fields.get("recipient"),
            attachment_url=fields.get("attachment_url"),
            attachment_name=fields.get("attachment_name"),
        )
        db.add(msg)
        db.flush()
        return ChatMessage.from_orm_message(msg)

    async def get_message(self, message_id: int) -> ChatMessage:
        return await self._run(self._get_message, message_id)

    @staticmethod
    def _load(db: Session, message_id: int) -> Message:
        msg = db.get(Message, message_id)
        if msg is None:
            raise NotFound(f"message {message_id} does not exist")
        return msg

    def _get_message(self, db: Session, message_id: int) -> ChatMessage:
        return ChatMessage.from_orm_message(self._load(db, message_id))

    async def update_message(self, message_id: int, patch: Dict[str, str]) -> ChatMessage:
        """Apply *patch* and return the post-update snapshot.

        Supported keys: ``push_reaction`` appends a reaction (duplicates
        kept), ``add_read_by`` adds an identity to the read set.
        """
        try:
            return await self._run(self._update_message, message_id, patch)
        except PersistenceError as e:
            # A concurrent receipt for the same reader won the unique
            # constraint; the read set already holds what we wanted to add.
            if set(patch) == {"add_read_by"} and isinstance(e.__cause__, IntegrityError):
                return await self.get_message(message_id)
            raise

    def _update_message(self, db: Session, message_id: int, patch: Dict[str, str]) -> ChatMessage:
        msg = self._load(db, message_id)
        if "push_reaction" in patch:
            msg.reactions.append(MessageReaction(symbol=patch["push_reaction"]))
        if "add_read_by" in patch:
            identity = patch["add_read_by"]
            if all(r.identity != identity for r in msg.reads):
                msg.reads.append(MessageRead(identity=identity))
        db.flush()
        return ChatMessage.from_orm_message(msg)

    async def query_messages(
        self,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        include_private: bool = True,
    ) -> List[ChatMessage]:
        return await self._run(self._query_messages, search, page, limit, include_private)

    @staticmethod
    def _query_messages(db: Session, search, page, limit, include_private) -> List[ChatMessage]:
        stmt = select(Message).order_by(Message.id)
        if search:
            stmt = stmt.where(Message.body.icontains(search, autoescape=True))
        if not include_private:
            stmt = stmt.where(Message.target_kind != TargetKind.direct)
        if limit:
            stmt = stmt.offset((max(page, 1) - 1) * limit).limit(limit)
        return [ChatMessage.from_orm_message(m) for m in db.scalars(stmt).all()]

    async def count_unread(self, identity: str) -> int:
        return await self._run(self._count_unread, identity)

    @staticmethod
    def _count_unread(db: Session, identity: str) -> int:
        stmt = select(func.count(Message.id)).where(~Message.reads.any(MessageRead.identity == identity))
        return int(db.scalar(stmt) or 0)

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    async def upsert_online_status(self, username: str, online: bool, socket_id: Optional[str] = None) -> UserOut:
        return await self._run(self._upsert_online_status, username, online, socket_id)

    @staticmethod
    def _upsert_online_status(db: Session, username: str, online: bool, socket_id: Optional[str]) -> UserOut:
        user = db.scalars(select(User).where(User.username == username)).first()
        if user is None:
            user = User(username=username)
            db.add(user)
        user.online = online
        if socket_id:
            user.last_socket_id = socket_id
        db.flush()
        return _user_out(user)

    async def list_online(self) -> List[UserOut]:
        return await self._run(self._list_online)

    @staticmethod
    def _list_online(db: Session) -> List[UserOut]:
        rows = db.scalars(select(User).where(User.online.is_(True)).order_by(User.username)).all()
        return [_user_out(u) for u in rows]

    async def reset_online_status(self) -> int:
        """Mark every user offline; no session survives a restart."""
        return await self._run(self._reset_online_status)

    @staticmethod
    def _reset_online_status(db: Session) -> int:
        rows = db.scalars(select(User).where(User.online.is_(True))).all()
        for user in rows:
            user.online = False
        return len(rows)

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def get_room(self, room_id: int) -> Optional[RoomOut]:
        return await self._run(self._get_room, room_id)

    @staticmethod
    def _get_room(db: Session, room_id: int) -> Optional[RoomOut]:
        room = db.get(Room, room_id)
        return RoomOut(id=room.id, name=room.name) if room else None

    async def list_rooms(self) -> List[RoomOut]:
        return await self._run(self._list_rooms)

    @staticmethod
    def _list_rooms(db: Session) -> List[RoomOut]:
        return [RoomOut(id=r.id, name=r.name) for r in db.scalars(select(Room).order_by(Room.id)).all()]

    async def create_room(self, name: str) -> RoomOut:
        return await self._run(self._create_room, name)

    @staticmethod
    def _create_room(db: Session, name: str) -> RoomOut:
        if db.scalars(select(Room).where(Room.name == name)).first() is not None:
            raise InvalidState(f"room {name!r} already exists")
        room = Room(name=name)
        db.add(room)
        db.flush()
        return RoomOut(id=room.id, name=room.name)
