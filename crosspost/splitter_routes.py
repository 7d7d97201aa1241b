from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from sqlalchemy import select

from crosspost import bulk, video_splitter
from crosspost.auth import require_admin
from crosspost.db import get_session
from crosspost.errors import CrosspostError, SplitError
from crosspost.models import VideoSegment
from crosspost.state import split_jobs
from crosspost.storage import delete_file, get_file, register_file, save_file
from crosspost.transcribe import transcribe_segment
from crosspost.web import flash_redirect, render

logger = logging.getLogger("crosspost")

router = APIRouter(tags=["splitter"], dependencies=[Depends(require_admin)])


def segment_dir() -> Path:
    return Path(os.getenv("SEGMENT_DIR", "uploads/segments"))


def list_segments(session, file_id: str) -> list[VideoSegment]:
    return list(
        session.execute(
            select(VideoSegment).where(VideoSegment.source_file_id == file_id).order_by(VideoSegment.position)
        ).scalars()
    )


def run_split_job(file_id: str) -> None:
    """Render every segment of an uploaded video and persist the results."""
    with get_session() as session:
        record = get_file(session, file_id)
        source = record.path if record else None
    if source is None:
        split_jobs.finish(file_id, error="Source video not found")
        return

    def on_progress(progress: video_splitter.SplitProgress) -> None:
        split_jobs.update(file_id, progress.current, progress.total, progress.status)

    try:
        segments = video_splitter.split_video(source, segment_dir() / file_id, on_progress)
    except SplitError as exc:
        split_jobs.finish(file_id, error=str(exc))
        return
    except Exception as exc:  # noqa: BLE001
        logger.exception("split_job_failed file_id=%s", file_id)
        split_jobs.finish(file_id, error=str(exc) or "Failed to process video")
        return

    fresh_paths = {segment.path for segment in segments}
    stale_paths = []
    with get_session() as session:
        for old in list_segments(session, file_id):
            if old.path not in fresh_paths:
                stale_paths.append(old.path)
            session.delete(old)
        for position, segment in enumerate(segments):
            session.add(
                VideoSegment(
                    id=segment.id,
                    source_file_id=file_id,
                    position=position,
                    start_time=segment.start_time,
                    end_time=segment.end_time,
                    duration=segment.duration,
                    path=segment.path,
                    title=segment.title,
                    transcription="",
                )
            )
    for path in stale_paths:
        Path(path).unlink(missing_ok=True)
    split_jobs.finish(file_id)
    logger.info("split_job_done file_id=%s segments=%s", file_id, len(segments))


@router.get("/splitter")
def splitter_page(request: Request, file_id: str | None = None):
    segments = []
    if file_id:
        with get_session() as session:
            segments = [s.to_dict() for s in list_segments(session, file_id)]
    return render(
        request,
        "splitter.html",
        file_id=file_id,
        job=split_jobs.get(file_id) if file_id else None,
        segments=segments,
        segment_seconds=video_splitter.SEGMENT_SECONDS,
        max_mb=video_splitter.MAX_VIDEO_BYTES // (1024 * 1024),
    )


@router.post("/splitter")
def upload_for_split(background_tasks: BackgroundTasks, file: UploadFile = File(...)):
    try:
        video_splitter.validate_upload(file.content_type, 0)
        with get_session() as session:
            record = save_file(session, file.file, file.filename or "video.mp4", file.content_type)
            try:
                video_splitter.validate_upload(record.content_type, record.size)
            except SplitError:
                delete_file(session, record.id)
                raise
            file_id = record.id
    except SplitError as exc:
        return flash_redirect("/splitter", str(exc), "danger")

    split_jobs.start(file_id)
    background_tasks.add_task(run_split_job, file_id)
    return RedirectResponse(f"/splitter?file_id={file_id}", status_code=303)


@router.get("/api/splitter/{file_id}/progress")
def split_progress(file_id: str) -> JSONResponse:
    job = split_jobs.get(file_id)
    if job is None:
        return JSONResponse(content={"error": "Job not found"}, status_code=404)
    return JSONResponse(content=job)


@router.get("/api/splitter/{file_id}/segments")
def split_segments(file_id: str) -> JSONResponse:
    with get_session() as session:
        segments = [s.to_dict() for s in list_segments(session, file_id)]
    return JSONResponse(content={"segments": segments})


@router.post("/splitter/segments/{segment_id}/title")
def rename_segment(segment_id: str, title: str = Form("")):
    with get_session() as session:
        segment = session.get(VideoSegment, segment_id)
        if segment is None:
            return flash_redirect("/splitter", "Segment not found", "warning")
        file_id = segment.source_file_id
        if title.strip():
            segment.title = title.strip()
    return RedirectResponse(f"/splitter?file_id={file_id}", status_code=303)


@router.get("/splitter/segments/{segment_id}/download")
def download_segment(segment_id: str):
    with get_session() as session:
        segment = session.get(VideoSegment, segment_id)
    if segment is None or not segment.path or not Path(segment.path).exists():
        return JSONResponse(content={"error": "Segment not found"}, status_code=404)
    return FileResponse(segment.path, media_type="video/mp4", filename=video_splitter.download_name(segment.title))


@router.post("/splitter/segments/{segment_id}/transcribe")
def transcribe(segment_id: str):
    with get_session() as session:
        segment = session.get(VideoSegment, segment_id)
        if segment is None or not segment.path:
            return flash_redirect("/splitter", "Segment not found", "warning")
        file_id = segment.source_file_id
        path = segment.path
    back = f"/splitter?file_id={file_id}"
    try:
        text = transcribe_segment(path)
    except Exception as exc:  # noqa: BLE001
        logger.exception("transcribe_failed segment_id=%s", segment_id)
        return flash_redirect(back, f"Transcription failed: {exc}", "danger")
    with get_session() as session:
        segment = session.get(VideoSegment, segment_id)
        if segment is not None:
            segment.transcription = text
    return flash_redirect(back, "Transcription saved", "success")


@router.post("/splitter/{file_id}/queue")
def queue_segments(file_id: str):
    back = f"/splitter?file_id={file_id}"
    added = 0
    try:
        with get_session() as session:
            for segment in list_segments(session, file_id):
                if not segment.path or not Path(segment.path).exists():
                    continue
                record = register_file(session, Path(segment.path), f"{segment.title}.mp4", "video/mp4")
                bulk.add_existing_file(session, record.id, segment.title)
                added += 1
    except (CrosspostError, OSError) as exc:
        logger.exception("queue_segments_failed file_id=%s", file_id)
        return flash_redirect(back, str(exc), "danger")
    if not added:
        return flash_redirect(back, "No processed segments to queue", "warning")
    return flash_redirect("/bulk-upload", f"Added {added} segment(s) to the bulk queue", "success")


__all__ = ["router"]
