"""Error taxonomy shared by the session state, the router and the store.

None of these ever reaches a client: the router handles them per event
and turns them into an empty fan-out.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for errors raised while handling one inbound event."""


class NotFound(ChatError):
    """Unknown session, room or message."""


class InvalidState(ChatError):
    """The event is not allowed in the session's current state."""


class PersistenceError(ChatError):
    """The storage collaborator failed; nothing may be broadcast for it."""


class Unresolvable(ChatError):
    """A direct message target has no live session."""
