"""Reactions and read receipts on stored messages."""

from __future__ import annotations

from .schemas import ChatMessage
from .store import ChatStore


class MessageLifecycle:
    """The only writer of ``reactions`` and ``readBy``.

    Both calls return the snapshot after the store has committed, which is
    what gets fanned out. Unknown ids raise ``NotFound``.
    """

    def __init__(self, store: ChatStore) -> None:
        self._store = store

    async def add_reaction(self, message_id: int, symbol: str) -> ChatMessage:
        # Free-form: any symbol is accepted, and repeats are appended.
        return await self._store.update_message(message_id, {"push_reaction": symbol})

    async def mark_read(self, message_id: int, identity: str) -> ChatMessage:
        return await self._store.update_message(message_id, {"add_read_by": identity})
