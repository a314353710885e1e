"""Shared fixtures: an in-memory store and a store that always fails."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatapp import models  # noqa: F401
from chatapp.db import Base, make_engine
from chatapp.errors import PersistenceError
from chatapp.router import EventRouter
from chatapp.store import ChatStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def memory_session_factory() -> sessionmaker:
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def make_store() -> ChatStore:
    return ChatStore(memory_session_factory())


def make_router(store: ChatStore | None = None) -> EventRouter:
    return EventRouter(store or make_store(), clock=lambda: FIXED_NOW)


class BrokenStore(ChatStore):
    """Every write fails the way a lost database connection would."""

    def __init__(self) -> None:
        super().__init__(memory_session_factory())

    async def create_message(self, fields):
        raise PersistenceError("database unavailable")

    async def update_message(self, message_id, patch):
        raise PersistenceError("database unavailable")

    async def upsert_online_status(self, username, online, socket_id=None):
        raise PersistenceError("database unavailable")


class GatedStore(ChatStore):
    """Message writes block until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__(memory_session_factory())
        self.write_started = asyncio.Event()
        self.release = asyncio.Event()

    async def create_message(self, fields):
        self.write_started.set()
        await self.release.wait()
        return await super().create_message(fields)


class SlowOfflineStore(ChatStore):
    """Offline writes block until released; online writes go straight through."""

    def __init__(self) -> None:
        super().__init__(memory_session_factory())
        self.offline_started = asyncio.Event()
        self.release = asyncio.Event()

    async def upsert_online_status(self, username, online, socket_id=None):
        if not online:
            self.offline_started.set()
            await self.release.wait()
        return await super().upsert_online_status(username, online, socket_id)


def events(outbound, name):
    return [o for o in outbound if o.event == name]
