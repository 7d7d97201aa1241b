from __future__ import annotations

import logging
from typing import Any

import httpx
from fastapi import APIRouter, Body, Depends, File, UploadFile
from fastapi.responses import FileResponse, JSONResponse

from crosspost import youtube_client
from crosspost.auth import require_admin
from crosspost.db import get_session
from crosspost.errors import YouTubeAPIError
from crosspost.storage import get_file, public_url, save_file

logger = logging.getLogger("crosspost")

router = APIRouter(tags=["files"])


@router.post("/api/upload", dependencies=[Depends(require_admin)])
def upload_file(file: UploadFile | None = File(None)) -> JSONResponse:
    if file is None or not file.filename:
        return JSONResponse(content={"error": "No file provided"}, status_code=400)
    try:
        with get_session() as session:
            record = save_file(session, file.file, file.filename, file.content_type)
    except OSError as exc:
        logger.exception("upload_failed filename=%s", file.filename)
        return JSONResponse(content={"error": str(exc) or "Upload failed"}, status_code=500)
    return JSONResponse(content={"url": public_url(record.id), "id": record.id})


@router.get("/api/files/{file_id}")
def download_file(file_id: str):
    with get_session() as session:
        record = get_file(session, file_id)
    if record is None:
        return JSONResponse(content={"error": "File not found"}, status_code=404)
    return FileResponse(
        record.path,
        media_type=record.content_type or "application/octet-stream",
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )


@router.post("/api/youtube/upload", dependencies=[Depends(require_admin)])
def youtube_upload(payload: dict[str, Any] = Body(...)) -> JSONResponse:
    access_token = payload.get("accessToken")
    source_url = payload.get("videoUrl")
    title = payload.get("title")
    if not access_token or not source_url or not title:
        return JSONResponse(content={"error": "Missing required fields"}, status_code=400)
    try:
        result = youtube_client.upload_video(
            access_token=access_token,
            source_url=source_url,
            title=title,
            description=payload.get("description") or "",
            privacy=payload.get("privacy") or "public",
            keywords=payload.get("keywords") or [],
            is_short=bool(payload.get("isShort")),
        )
    except (YouTubeAPIError, httpx.HTTPError) as exc:
        logger.exception("youtube_upload_error")
        return JSONResponse(content={"error": str(exc) or "YouTube upload failed"}, status_code=500)
    return JSONResponse(content=result)


__all__ = ["router"]
