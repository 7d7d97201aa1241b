from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from typing import Any, BinaryIO

import httpx
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crosspost import meta_client, youtube_client
from crosspost.accounts import fresh_youtube_token, list_instagram_accounts, list_youtube_accounts
from crosspost.db import get_session, get_setting, set_setting, utc_now
from crosspost.errors import CrosspostError, PublishError
from crosspost.hashtags import keywords_to_hashtags, split_keywords
from crosspost.models import BulkItem
from crosspost.storage import get_file, public_url, save_file

logger = logging.getLogger("crosspost")

SETTINGS_KEY = "bulk_settings"
STATUSES = ("pending", "processing", "uploaded", "error")


@dataclass
class BulkSettings:
    title: str = ""
    description: str = ""
    keywords: str = ""
    interval_minutes: float = 5

    @property
    def caption(self) -> str:
        return f"{self.title}\n\n{self.description}\n\n{keywords_to_hashtags(self.keywords)}"


def load_settings(session: Session) -> BulkSettings:
    raw = get_setting(session, SETTINGS_KEY)
    if not raw:
        return BulkSettings()
    try:
        return BulkSettings(**json.loads(raw))
    except (TypeError, ValueError):
        logger.warning("bulk_settings_corrupt value=%s", raw)
        return BulkSettings()


def save_settings(session: Session, settings: BulkSettings) -> None:
    set_setting(session, SETTINGS_KEY, json.dumps(asdict(settings)))


def add_video(session: Session, stream: BinaryIO, original_name: str, content_type: str | None) -> BulkItem:
    if not (content_type or "").startswith("video/"):
        raise PublishError(f"{original_name} is not a video file")
    record = save_file(session, stream, original_name, content_type)
    item = BulkItem(file_id=record.id, original_name=record.original_name, status="pending")
    session.add(item)
    session.flush()
    logger.info("bulk_item_added item_id=%s file_id=%s", item.id, record.id)
    return item


def add_existing_file(session: Session, file_id: str, name: str) -> BulkItem:
    item = BulkItem(file_id=file_id, original_name=name, status="pending")
    session.add(item)
    session.flush()
    return item


def list_items(session: Session) -> list[BulkItem]:
    return list(session.execute(select(BulkItem).order_by(BulkItem.id)).scalars())


def remove_item(session: Session, item_id: int) -> bool:
    item = session.get(BulkItem, item_id)
    if item is None or item.status == "processing":
        return False
    session.delete(item)
    return True


def stats(session: Session) -> dict[str, int]:
    counts = dict(session.execute(select(BulkItem.status, func.count()).group_by(BulkItem.status)).all())
    result = {status: int(counts.get(status, 0)) for status in STATUSES}
    result["total"] = sum(result.values())
    return result


def requeue_interrupted(session: Session) -> int:
    """Return items left in ``processing`` by a previous run to the queue."""
    items = list(session.execute(select(BulkItem).where(BulkItem.status == "processing")).scalars())
    for item in items:
        item.status = "pending"
    if items:
        logger.warning("bulk_items_requeued count=%s", len(items))
    return len(items)


def next_pending(session: Session) -> BulkItem | None:
    return session.execute(
        select(BulkItem).where(BulkItem.status == "pending").order_by(BulkItem.id).limit(1)
    ).scalar_one_or_none()


def claim_next_item() -> tuple[BulkItem, BulkSettings] | None:
    """Commit the next pending item as ``processing`` and return it detached with the current settings."""
    with get_session() as session:
        item = next_pending(session)
        if item is None:
            return None
        item.status = "processing"
        settings = load_settings(session)
    logger.info("bulk_item_claimed item_id=%s", item.id)
    return item, settings


def finish_item(item_id: int, status: str, error: str | None = None, uploaded_url: str | None = None) -> dict[str, Any]:
    with get_session() as session:
        item = session.get(BulkItem, item_id)
        if item is None:
            return {"id": item_id, "status": status, "error": error}
        item.status = status
        item.error = error
        if status == "uploaded":
            item.uploaded_url = uploaded_url
            item.processed_at = utc_now()
        return item.to_dict()


def process_item(item: BulkItem, settings: BulkSettings) -> dict[str, Any]:
    """Publish one claimed video to every connected account.

    Per-account failures are logged and skipped. A missing source file fails
    the whole item. No session stays open while uploading.
    """
    with get_session() as session:
        source = get_file(session, item.file_id)
        instagram = list_instagram_accounts(session)
        youtube = list_youtube_accounts(session)

    if source is None:
        logger.warning("bulk_item_fail item_id=%s reason=file_missing", item.id)
        return finish_item(item.id, "error", error="Failed to upload video")
    url = public_url(item.file_id)

    for account in instagram:
        try:
            creation_id = meta_client.create_media(
                ig_user_id=account.id,
                token=account.token,
                media_url=url,
                caption=settings.caption,
                is_reel=True,
            )
            meta_client.publish_media(ig_user_id=account.id, token=account.token, creation_id=creation_id)
        except (CrosspostError, httpx.HTTPError) as exc:
            logger.warning("bulk_publish_fail platform=instagram account=%s error=%s", account.username, exc)

    for account in youtube:
        try:
            youtube_client.upload_video(
                access_token=fresh_youtube_token(account.id) or account.access_token,
                source_url=url,
                title=settings.title,
                description=settings.description,
                privacy="public",
                keywords=split_keywords(settings.keywords),
                is_short=True,
            )
        except (CrosspostError, httpx.HTTPError) as exc:
            logger.warning("bulk_publish_fail platform=youtube account=%s error=%s", account.name, exc)

    logger.info("bulk_item_uploaded item_id=%s url=%s", item.id, url)
    return finish_item(item.id, "uploaded", uploaded_url=url)


class BulkRunner:
    """Single worker thread draining the bulk queue with a pause between items."""

    def __init__(self) -> None:
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                raise PublishError("Bulk upload is already running")
            with get_session() as session:
                settings = load_settings(session)
                if not settings.title or not settings.description:
                    raise PublishError("Please fill in title and description")
                if next_pending(session) is None:
                    raise PublishError("Please add at least one video")
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="bulk-upload", daemon=True)
            self._thread.start()
            logger.info("bulk_runner_started")

    def stop(self) -> None:
        self._stop.set()
        logger.info("bulk_runner_stop_requested")

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run_once(self) -> dict[str, Any] | None:
        """Process the next pending item. Returns its final state, or None when the queue is empty."""
        claimed = claim_next_item()
        if claimed is None:
            return None
        item, settings = claimed
        try:
            state = process_item(item, settings)
        except Exception as exc:  # noqa: BLE001
            logger.exception("bulk_item_fail item_id=%s", item.id)
            state = finish_item(item.id, "error", error=str(exc))
        with get_session() as session:
            state["remaining"] = stats(session)["pending"]
        state["interval_minutes"] = settings.interval_minutes
        return state

    def _run(self) -> None:
        while not self._stop.is_set():
            state = self.run_once()
            if state is None or state["status"] == "error" or not state["remaining"]:
                break
            if self._stop.wait(float(state["interval_minutes"]) * 60):
                break
        logger.info("bulk_runner_stopped")


runner = BulkRunner()
