from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_store
from ..errors import InvalidState
from ..schemas import RoomCreate
from ..store import ChatStore

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("")
async def list_rooms(store: ChatStore = Depends(get_store)):
    return [r.model_dump() for r in await store.list_rooms()]


@router.post("", status_code=201)
async def create_room(body: RoomCreate, store: ChatStore = Depends(get_store)):
    try:
        room = await store.create_room(body.name.strip())
    except InvalidState as e:
        raise HTTPException(status_code=409, detail=str(e))
    return room.model_dump()


@router.get("/{room_id}")
async def get_room(room_id: int, store: ChatStore = Depends(get_store)):
    room = await store.get_room(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.model_dump()
