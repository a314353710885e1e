from __future__ import annotations

import os
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..deps import get_store
from ..store import ChatStore

HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "100"))

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("")
async def list_messages(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    search: Optional[str] = Query(None),
    store: ChatStore = Depends(get_store),
):
    """Public history (broadcast and room messages), oldest first."""
    rows = await store.query_messages(
        search=search,
        page=page,
        limit=min(limit, HISTORY_LIMIT),
        include_private=False,
    )
    return [m.to_wire() for m in rows]
