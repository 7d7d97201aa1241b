from __future__ import annotations

import logging
import os
import shutil
import time
import uuid
from pathlib import Path
from typing import BinaryIO

from sqlalchemy.orm import Session

from crosspost.models import MediaFile

logger = logging.getLogger("crosspost")

LOCAL_HOSTS = ("localhost", "127.0.0.1")


def upload_dir() -> Path:
    directory = Path(os.getenv("UPLOAD_DIR", "uploads"))
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def app_url() -> str:
    return os.getenv("APP_URL", "http://localhost:8000").rstrip("/")


def public_url(file_id: str) -> str:
    return f"{app_url()}/api/files/{file_id}"


def is_local_url(url: str) -> bool:
    return any(host in url for host in LOCAL_HOSTS)


def save_file(session: Session, stream: BinaryIO, original_name: str, content_type: str | None) -> MediaFile:
    file_id = uuid.uuid4().hex[:24]
    safe_name = Path(original_name or "upload").name.replace(" ", "_")
    filename = f"{int(time.time() * 1000)}-{safe_name}"
    path = upload_dir() / f"{file_id}-{filename}"
    with path.open("wb") as target:
        shutil.copyfileobj(stream, target)

    record = MediaFile(
        id=file_id,
        filename=filename,
        original_name=original_name or safe_name,
        content_type=content_type,
        size=path.stat().st_size,
        path=str(path),
    )
    session.add(record)
    session.flush()
    logger.info("file_stored file_id=%s filename=%s size=%s", file_id, filename, record.size)
    return record


def get_file(session: Session, file_id: str) -> MediaFile | None:
    record = session.get(MediaFile, file_id)
    if record is None or not Path(record.path).exists():
        return None
    return record


def register_file(session: Session, path: Path, original_name: str, content_type: str | None) -> MediaFile:
    """Track a file already written to disk, e.g. a rendered segment."""
    record = MediaFile(
        id=uuid.uuid4().hex[:24],
        filename=path.name,
        original_name=original_name,
        content_type=content_type,
        size=path.stat().st_size,
        path=str(path),
    )
    session.add(record)
    session.flush()
    return record


def delete_file(session: Session, file_id: str) -> bool:
    record = session.get(MediaFile, file_id)
    if record is None:
        return False
    Path(record.path).unlink(missing_ok=True)
    session.delete(record)
    return True
