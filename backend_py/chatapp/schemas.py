"""Pydantic models for Socket.IO payloads.

Inbound models validate what clients emit; field aliases follow the
camelCase names the browser client uses. ``ChatMessage`` is the
snapshot of a stored message that is fanned out to clients.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserJoin(_Inbound):
    username: str = Field(min_length=1, max_length=100)

    @field_validator("username")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value


class SendMessage(_Inbound):
    message: str = ""
    room_id: Optional[str] = Field(default=None, alias="roomId")
    to: Optional[str] = None


class PrivateMessage(_Inbound):
    to: str
    message: str = ""


class Typing(_Inbound):
    is_typing: bool = Field(alias="isTyping")


class SendFile(_Inbound):
    file_name: str = Field(default="", alias="fileName")
    file_url: str = Field(alias="fileUrl", min_length=1)
    sender: Optional[str] = None
    sender_id: Optional[str] = Field(default=None, alias="senderId")
    to: Optional[str] = None
    is_private: bool = Field(default=False, alias="isPrivate")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class ReactMessage(_Inbound):
    message_id: int = Field(alias="messageId")
    reaction: str = Field(min_length=1, max_length=64)


class ReadMessage(_Inbound):
    message_id: int = Field(alias="messageId")
    user_id: Optional[str] = Field(default=None, alias="userId")


class MessageDelivered(_Inbound):
    message_id: int = Field(alias="messageId")
    user_id: Optional[str] = Field(default=None, alias="userId")


class SearchMessages(_Inbound):
    query: str = ""


class UnreadCount(_Inbound):
    user_id: Optional[str] = Field(default=None, alias="userId")


class RoomRequest(_Inbound):
    room_id: str = Field(alias="roomId", min_length=1)

    @field_validator("room_id", mode="before")
    @classmethod
    def _as_str(cls, value: Any) -> Any:
        # Room ids from the REST API are integers.
        return str(value) if isinstance(value, int) else value


class ChatMessage(BaseModel):
    """Post-persistence snapshot of a message."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    message: str
    sender: str
    sender_id: Optional[str] = Field(default=None, alias="senderId")
    timestamp: datetime
    target_kind: str = Field(alias="targetKind")
    is_private: bool = Field(alias="isPrivate")
    room: Optional[str] = None
    to: Optional[str] = None
    file_url: Optional[str] = Field(default=None, alias="fileUrl")
    file_name: Optional[str] = Field(default=None, alias="fileName")
    reactions: List[str] = Field(default_factory=list)
    read_by: List[str] = Field(default_factory=list, alias="readBy")

    @classmethod
    def from_orm_message(cls, row: Any) -> "ChatMessage":
        kind = getattr(row.target_kind, "value", row.target_kind)
        return cls(
            id=row.id,
            message=row.body,
            sender=row.sender,
            sender_id=row.sender_id,
            timestamp=row.created_at,
            target_kind=kind,
            is_private=kind == "direct",
            room=row.room_id,
            to=row.recipient,
            file_url=row.attachment_url,
            file_name=row.attachment_name,
            reactions=[r.symbol for r in row.reactions],
            read_by=[r.identity for r in row.reads],
        )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class OnlineUser(BaseModel):
    username: str
    id: str


class RoomOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class UserOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    username: str
    online: bool
    last_socket_id: Optional[str] = Field(default=None, alias="lastSocketId")


class RoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
