from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps import get_store
from ..store import ChatStore

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
async def list_online_users(store: ChatStore = Depends(get_store)):
    users = await store.list_online()
    return [u.model_dump(by_alias=True) for u in users]
