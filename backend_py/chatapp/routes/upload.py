"""Blob store for chat attachments.

Files are written under ``UPLOAD_DIR`` and served back from
``/uploads``. The returned URL is what clients put in ``send_file``;
the socket router never handles file bytes.
"""

from __future__ import annotations

import os
import time
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, UploadFile

UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.path.dirname(__file__), "../../uploads"))
MAX_SIZE_MB = int(os.getenv("MAX_UPLOAD_MB", "10"))

router = APIRouter(prefix="/messages", tags=["uploads"])


def _safe_name(filename: str | None) -> str:
    name = Path(filename or "").name.strip()
    if not name or name in {".", ".."}:
        raise HTTPException(status_code=400, detail="Missing file name")
    return name


@router.post("/upload")
async def upload_file(file: UploadFile = File(...)):
    original = _safe_name(file.filename)
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(contents) > MAX_SIZE_MB * 1024 * 1024:
        raise HTTPException(status_code=400, detail=f"File too large (max {MAX_SIZE_MB}MB)")
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    stored = f"{int(time.time() * 1000)}-{original}"
    with open(os.path.join(UPLOAD_DIR, stored), "wb") as f:
        f.write(contents)
    return {"fileUrl": f"/uploads/{stored}", "fileName": original, "size": len(contents)}
