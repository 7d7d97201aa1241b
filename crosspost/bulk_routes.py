from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse

from crosspost import accounts, bulk
from crosspost.auth import require_admin
from crosspost.db import get_session
from crosspost.errors import PublishError
from crosspost.web import flash_redirect, render

logger = logging.getLogger("crosspost")

router = APIRouter(tags=["bulk"], dependencies=[Depends(require_admin)])


def _status_payload() -> dict:
    with get_session() as session:
        items = [item.to_dict() for item in bulk.list_items(session)]
        counts = bulk.stats(session)
    return {"items": items, "stats": counts, "running": bulk.runner.is_running}


@router.get("/bulk-upload")
def bulk_page(request: Request):
    with get_session() as session:
        if not accounts.has_accounts(session):
            return RedirectResponse("/", status_code=303)
        settings = bulk.load_settings(session)
        ig_count = len(accounts.list_instagram_accounts(session))
        yt_count = len(accounts.list_youtube_accounts(session))
    return render(
        request,
        "bulk_upload.html",
        settings=settings,
        instagram_count=ig_count,
        youtube_count=yt_count,
        **_status_payload(),
    )


@router.get("/api/bulk/status")
def bulk_status() -> JSONResponse:
    return JSONResponse(content=_status_payload())


@router.post("/bulk-upload/files")
def add_files(files: list[UploadFile] = File(...)):
    added = 0
    skipped = []
    with get_session() as session:
        for upload in files:
            try:
                bulk.add_video(session, upload.file, upload.filename or "video", upload.content_type)
            except PublishError:
                skipped.append(upload.filename)
                continue
            added += 1
    logger.info("bulk_files_added added=%s skipped=%s", added, len(skipped))
    if skipped and not added:
        return flash_redirect("/bulk-upload", "Only video files can be added", "warning")
    return flash_redirect("/bulk-upload", f"Added {added} video(s) to the queue", "success")


@router.post("/bulk-upload/settings")
def update_settings(
    title: str = Form(""),
    description: str = Form(""),
    keywords: str = Form(""),
    interval_minutes: float = Form(5),
):
    if interval_minutes < 1:
        return flash_redirect("/bulk-upload", "Interval must be at least 1 minute", "warning")
    with get_session() as session:
        bulk.save_settings(
            session,
            bulk.BulkSettings(
                title=title.strip(),
                description=description.strip(),
                keywords=keywords.strip(),
                interval_minutes=interval_minutes,
            ),
        )
    return flash_redirect("/bulk-upload", "Settings saved", "success")


@router.post("/bulk-upload/start")
def start_bulk():
    try:
        bulk.runner.start()
    except PublishError as exc:
        return flash_redirect("/bulk-upload", str(exc), "danger")
    return flash_redirect("/bulk-upload", "Bulk upload started", "info")


@router.post("/bulk-upload/stop")
def stop_bulk():
    bulk.runner.stop()
    return flash_redirect("/bulk-upload", "Bulk upload will stop after the current video", "info")


@router.post("/bulk-upload/items/{item_id}/delete")
def delete_item(item_id: int):
    with get_session() as session:
        removed = bulk.remove_item(session, item_id)
    if not removed:
        return flash_redirect("/bulk-upload", "Item cannot be removed", "warning")
    return RedirectResponse("/bulk-upload", status_code=303)


__all__ = ["router"]
