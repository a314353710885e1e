from __future__ import annotations

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy import Enum as SAEnum
from enum import Enum as PyEnum

from .db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TargetKind(str, PyEnum):
    broadcast = "broadcast"
    room = "room"
    direct = "direct"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    online = Column(Boolean, nullable=False, default=False)
    last_socket_id = Column(String(100), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Room(Base):
    __tablename__ = "rooms"

    id: int = Column(Integer, primary_key=True, index=True)
    name: str = Column(String(100), unique=True, nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)


class Message(Base):
    __tablename__ = "messages"

    id: int = Column(Integer, primary_key=True, index=True)
    sender: str = Column(String(100), nullable=False)
    sender_id: str | None = Column(String(100), nullable=True)
    body: str = Column(Text, nullable=False, default="")
    created_at: datetime = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    target_kind: TargetKind = Column(
        SAEnum(TargetKind, name="target_kind"),
        nullable=False,
        default=TargetKind.broadcast,
    )
    room_id: str | None = Column(String(100), nullable=True, index=True)
    recipient: str | None = Column(String(100), nullable=True)
    attachment_url: str | None = Column(String(500), nullable=True)
    attachment_name: str | None = Column(String(255), nullable=True)

    # Relationships
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        order_by="MessageReaction.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    reads = relationship(
        "MessageRead",
        back_populates="message",
        order_by="MessageRead.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class MessageReaction(Base):
    __tablename__ = "message_reactions"

    id: int = Column(Integer, primary_key=True)
    message_id: int = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    symbol: str = Column(String(64), nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)

    message = relationship("Message", back_populates="reactions")


class MessageRead(Base):
    __tablename__ = "message_reads"
    __table_args__ = (UniqueConstraint("message_id", "identity", name="uq_message_read"),)

    id: int = Column(Integer, primary_key=True)
    message_id: int = Column(Integer, ForeignKey("messages.id"), nullable=False, index=True)
    identity: str = Column(String(100), nullable=False)
    read_at: datetime = Column(DateTime(timezone=True), default=_utcnow)

    message = relationship("Message", back_populates="reads")
