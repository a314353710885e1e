from __future__ import annotations
import logging
import os
import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from .db import Base, engine, wait_for_db

# Import models so SQLAlchemy knows about all tables before create_all()
# (lint: F401 unused import on purpose)
from . import models  # noqa: F401
from .sockets import sio, store, CLIENT_URL
from .routes import messages, rooms, upload, users
from .routes.upload import UPLOAD_DIR

log = logging.getLogger("uvicorn.error")

app = FastAPI(title="Socket Chat API")


@app.on_event("startup")
async def on_startup():
    try:
        log.info("Waiting for database to be ready...")
        wait_for_db(max_tries=60, delay_seconds=1.0)
        log.info("Database is ready. Creating tables if they don't exist...")
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        # Let Uvicorn crash early with a clear reason
        log.exception("Startup failed while preparing the database: %s", e)
        raise

    # Nobody is connected yet, whatever the last run left behind.
    stale = await store.reset_online_status()
    if stale:
        log.info("Marked %d stale users offline", stale)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL], allow_credentials=True, allow_methods=["*"], allow_headers=["*"],
)

# Routes
app.include_router(messages.router, prefix="/api")
app.include_router(upload.router,   prefix="/api")
app.include_router(rooms.router,    prefix="/api")
app.include_router(users.router,    prefix="/api")

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")


@app.get("/", response_class=PlainTextResponse)
def root():
    return "Socket.io Chat Server is running"


# Socket.IO + FastAPI combined ASGI app
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)
