"""Expose API routers for FastAPI.

This package contains the thin HTTP surface around the real-time core:
message history, file uploads, rooms and online users. Each module
defines a ``router`` object which is registered in ``chatapp.main``
under the ``/api`` prefix.
"""

from . import messages  # noqa: F401
from . import rooms  # noqa: F401
from . import upload  # noqa: F401
from . import users  # noqa: F401
