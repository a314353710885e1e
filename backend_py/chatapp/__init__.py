"""Backend package for the real-time chat service.

The ASGI application lives at ``chatapp.main:asgi_app`` and combines a
FastAPI instance and a Socket.IO server into a single ASGI app. The
session registry, room index, presence tracker and event router in this
package hold all live state; message history, users and rooms are kept
in SQL through ``chatapp.store``.

Run it with ``uvicorn chatapp.main:asgi_app`` from the ``backend_py``
directory (or after installing the package).
"""
