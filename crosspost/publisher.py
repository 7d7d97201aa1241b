from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from crosspost import meta_client, youtube_client
from crosspost.accounts import find_account, fresh_youtube_token
from crosspost.db import get_session, utc_now
from crosspost.errors import CrosspostError, PublishError
from crosspost.hashtags import append_hashtags, split_keywords
from crosspost.models import InstagramAccount, ScheduledPost, YouTubeAccount
from crosspost.storage import is_local_url

logger = logging.getLogger("crosspost")

CONTENT_TYPES = ("POST", "REEL", "VIDEO", "SHORT")


@dataclass
class PublishRequest:
    account_ids: list[str]
    media_url: str = ""
    caption: str = ""
    title: str = ""
    keywords: str = ""
    content_type: str = "POST"
    location: str = ""
    hashtags: list[str] = field(default_factory=list)

    @property
    def final_caption(self) -> str:
        return append_hashtags(self.caption, self.hashtags)


@dataclass
class AccountResult:
    id: str
    platform: str | None
    username: str | None
    status: str = "pending"
    error: str | None = None
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def resolve_media_url(media_url: str, uploaded_url: str | None = None) -> str:
    if uploaded_url:
        if is_local_url(uploaded_url):
            raise PublishError(
                "Local URLs won't work! Instagram and YouTube must be able to fetch the file. "
                "Set APP_URL to a public address."
            )
        return uploaded_url
    if not media_url:
        raise PublishError("Please provide a media URL or select a file")
    return media_url


def youtube_title(title: str, caption: str) -> str:
    return title or caption[:100] or "Untitled Video"


def _publish_instagram(account: InstagramAccount, request: PublishRequest, caption: str) -> str | None:
    if not account.token:
        raise PublishError("Instagram access token not found. Please reconnect your Instagram account.")
    creation_id = meta_client.create_media(
        ig_user_id=account.id,
        token=account.token,
        media_url=request.media_url,
        caption=caption,
        is_reel=request.content_type == "REEL",
        location_id=request.location or None,
    )
    result = meta_client.publish_media(ig_user_id=account.id, token=account.token, creation_id=creation_id)
    return result.get("id")


def _publish_youtube(account: YouTubeAccount, request: PublishRequest) -> str | None:
    token = fresh_youtube_token(account.id)
    if not token:
        raise PublishError("YouTube access token not found. Please reconnect your YouTube account.")
    result = youtube_client.upload_video(
        access_token=token,
        source_url=request.media_url,
        title=youtube_title(request.title, request.caption),
        description=request.caption,
        privacy="public",
        keywords=split_keywords(request.keywords),
        is_short=request.content_type == "SHORT",
    )
    return result.get("url")


def publish(request: PublishRequest) -> list[AccountResult]:
    """Publish to every requested account. Uploads run after the lookup session has closed."""
    if not request.account_ids:
        raise PublishError("Please select at least one account")
    if not request.media_url:
        raise PublishError("Please provide a media URL or select a file")
    if request.content_type not in CONTENT_TYPES:
        raise PublishError(f"Unknown content type: {request.content_type}")

    caption = request.final_caption
    with get_session() as session:
        targets = [(account_id, find_account(session, account_id)) for account_id in request.account_ids]

    results: list[AccountResult] = []
    for index, (account_id, found) in enumerate(targets, start=1):
        if found is None:
            results.append(AccountResult(id=account_id, platform=None, username=None, status="error", error="Account not found"))
            continue
        platform, account = found
        result = AccountResult(
            id=account_id,
            platform=platform,
            username=account.username if platform == "instagram" else account.name,
            status="uploading",
        )
        results.append(result)
        logger.info(
            "publish_start platform=%s account_id=%s progress=%s/%s",
            platform,
            account_id,
            index,
            len(request.account_ids),
        )
        try:
            if platform == "instagram":
                _publish_instagram(account, request, caption)
            else:
                result.url = _publish_youtube(account, request)
        except (CrosspostError, httpx.HTTPError) as exc:
            result.status = "error"
            result.error = str(exc)
            logger.warning("publish_fail platform=%s account_id=%s error=%s", platform, account_id, exc)
            continue
        result.status = "success"
        logger.info("publish_success platform=%s account_id=%s", platform, account_id)
    return results


def schedule(session: Session, request: PublishRequest, when: datetime, now: datetime | None = None) -> ScheduledPost:
    if not request.account_ids:
        raise PublishError("Please select at least one account")
    if when <= (now or utc_now()):
        raise PublishError("Scheduled time must be in the future")

    snapshot = []
    for account_id in request.account_ids:
        found = find_account(session, account_id)
        if found is None:
            continue
        platform, account = found
        snapshot.append(
            {
                "id": account.id,
                "username": account.username if platform == "instagram" else account.name,
                "platform": platform,
            }
        )
    post = ScheduledPost(
        media_url=request.media_url,
        caption=request.final_caption,
        title=request.title,
        keywords=request.keywords,
        content_type=request.content_type,
        location=request.location,
        accounts=snapshot,
        scheduled_for=when,
        status="scheduled",
    )
    session.add(post)
    session.flush()
    logger.info("post_scheduled post_id=%s scheduled_for=%s", post.id, when.isoformat())
    return post


def list_upcoming(session: Session, now: datetime | None = None) -> list[ScheduledPost]:
    return list(
        session.execute(
            select(ScheduledPost)
            .where(ScheduledPost.scheduled_for > (now or utc_now()))
            .where(ScheduledPost.status == "scheduled")
            .order_by(ScheduledPost.scheduled_for)
        ).scalars()
    )


def delete_scheduled(session: Session, post_id: int) -> bool:
    post = session.get(ScheduledPost, post_id)
    if post is None:
        return False
    session.delete(post)
    return True


def _request_for(post: ScheduledPost) -> PublishRequest:
    return PublishRequest(
        account_ids=[a["id"] for a in post.accounts or []],
        media_url=post.media_url,
        caption=post.caption,
        title=post.title,
        keywords=post.keywords,
        content_type=post.content_type,
        location=post.location,
    )


def claim_due_posts(now: datetime | None = None) -> list[tuple[int, PublishRequest]]:
    """Move due posts to ``publishing`` and commit, so a later tick never picks them up again."""
    with get_session() as session:
        due = list(
            session.execute(
                select(ScheduledPost)
                .where(ScheduledPost.scheduled_for <= (now or utc_now()))
                .where(ScheduledPost.status == "scheduled")
                .order_by(ScheduledPost.scheduled_for)
            ).scalars()
        )
        claimed = []
        for post in due:
            post.status = "publishing"
            claimed.append((post.id, _request_for(post)))
    return claimed


def fail_interrupted(session: Session) -> int:
    """Mark posts stuck in ``publishing`` as failed. They may have reached some accounts already."""
    posts = list(session.execute(select(ScheduledPost).where(ScheduledPost.status == "publishing")).scalars())
    for post in posts:
        post.status = "failed"
        post.results = [{"error": "Interrupted while publishing"}]
    if posts:
        logger.warning("scheduled_posts_interrupted count=%s", len(posts))
    return len(posts)


def _record_outcome(post_id: int, status: str, results: list[dict[str, Any]]) -> None:
    with get_session() as session:
        post = session.get(ScheduledPost, post_id)
        if post is None:
            logger.warning("scheduled_post_missing post_id=%s", post_id)
            return
        post.status = status
        post.results = results


def publish_due_posts(now: datetime | None = None) -> list[int]:
    processed = []
    for post_id, request in claim_due_posts(now):
        processed.append(post_id)
        try:
            results = publish(request)
        except PublishError as exc:
            logger.warning("scheduled_post_fail post_id=%s error=%s", post_id, exc)
            _record_outcome(post_id, "failed", [{"error": str(exc)}])
            continue
        status = "published" if all(r.status == "success" for r in results) else "failed"
        _record_outcome(post_id, status, [r.to_dict() for r in results])
        logger.info("scheduled_post_done post_id=%s status=%s", post_id, status)
    return processed
