"""Database configuration and helper functions.

This module defines the SQLAlchemy engine and session factory used by
the message store. The ``Base`` class is imported by the models module
to declare ORM models. Routes never open sessions themselves; they go
through the store handed out by ``chatapp.deps.get_store``.
"""

from __future__ import annotations

import os, time
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, DeclarativeBase

# e.g. postgresql+psycopg2://chat:chat@db:5432/chat
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./chat.db")


def make_engine(url: str = DATABASE_URL, **kwargs):
    """Create an engine for *url*.

    SQLite connections are shared with the worker threads the store runs
    its queries in, so the same-thread check is switched off for them.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return create_engine(url, connect_args=connect_args, **kwargs)
    # The pool_pre_ping flag ensures broken connections are detected and
    # recycled automatically.
    return create_engine(url, pool_pre_ping=True, **kwargs)


engine = make_engine()

# Session factory for ORM usage
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for declarative models.

    All ORM models should inherit from this class. It exposes the
    ``metadata`` attribute used by SQLAlchemy to create and drop
    database tables.
    """


def wait_for_db(max_tries: int = 60, delay_seconds: float = 1.0):
    """Poll the DB until a trivial query works (or give up)."""
    last_err = None
    for attempt in range(1, max_tries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return
        except Exception as e:
            last_err = e
            time.sleep(delay_seconds)
    raise RuntimeError(f"Database not ready after {max_tries} tries") from last_err

