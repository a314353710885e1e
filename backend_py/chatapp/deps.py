# backend_py/chatapp/deps.py
from __future__ import annotations
from .store import ChatStore
from .sockets import store


def get_store() -> ChatStore:
    """FastAPI dependency returning the store shared with the socket router."""
    return store
