from __future__ import annotations

import logging
from typing import Any

import httpx
from crosspost import meta_client, youtube_client
from crosspost.accounts import fresh_youtube_token, list_instagram_accounts, list_youtube_accounts
from crosspost.db import get_session
from crosspost.errors import CrosspostError
from crosspost.models import InstagramAccount, YouTubeAccount

logger = logging.getLogger("crosspost")

MEDIA_PER_ACCOUNT = 10
PLATFORMS = ("all", "instagram", "youtube")

QUICK_REPLIES = [
    "Thank you!",
    "Appreciate your comment!",
    "Thanks for watching!",
    "Glad you enjoyed it!",
    "Thanks for the support!",
]


def _instagram_media(account: InstagramAccount) -> list[dict[str, Any]]:
    collected = []
    try:
        media = meta_client.get_media_list(account.id, account.token)
    except (CrosspostError, httpx.HTTPError):
        logger.exception("inbox_media_fail platform=instagram account=%s", account.username)
        return collected
    for item in media[:MEDIA_PER_ACCOUNT]:
        comments = meta_client.get_media_comments(item["id"], account.token)
        if not comments:
            continue
        collected.append(
            {
                **item,
                "platform": "instagram",
                "account_id": account.id,
                "account_username": account.username,
                "comments": [
                    {**c, "platform": "instagram", "media_id": item["id"], "username": c.get("username")}
                    for c in comments
                ],
            }
        )
    return collected


def _youtube_media(account: YouTubeAccount) -> list[dict[str, Any]]:
    collected = []
    try:
        token = fresh_youtube_token(account.id) or account.access_token
        videos = youtube_client.get_recent_videos(account.id, token, limit=MEDIA_PER_ACCOUNT)
    except (CrosspostError, httpx.HTTPError):
        logger.exception("inbox_media_fail platform=youtube account=%s", account.name)
        return collected
    for video in videos:
        comments = youtube_client.get_comments(video["id"], token)
        if not comments:
            continue
        collected.append(
            {
                "id": video["id"],
                "title": video.get("title"),
                "caption": video.get("description"),
                "thumbnail": video.get("thumbnail"),
                "platform": "youtube",
                "account_id": account.id,
                "account_username": account.name,
                "comments": [
                    {**c, "platform": "youtube", "media_id": video["id"], "author": c.get("author")}
                    for c in comments
                ],
            }
        )
    return collected


def load_inbox() -> list[dict[str, Any]]:
    with get_session() as session:
        instagram = list_instagram_accounts(session)
        youtube = list_youtube_accounts(session)
    media: list[dict[str, Any]] = []
    for account in instagram:
        media.extend(_instagram_media(account))
    for account in youtube:
        media.extend(_youtube_media(account))
    logger.info("inbox_loaded media=%s comments=%s", len(media), count_comments(media))
    return media


def _contains(value: Any, query: str) -> bool:
    return isinstance(value, str) and query in value.lower()


def filter_inbox(media: list[dict[str, Any]], platform: str = "all", query: str = "") -> list[dict[str, Any]]:
    filtered = media
    if platform != "all":
        filtered = [m for m in filtered if m.get("platform") == platform]
    query = (query or "").strip().lower()
    if query:
        filtered = [
            m
            for m in filtered
            if _contains(m.get("caption"), query)
            or _contains(m.get("title"), query)
            or any(
                _contains(c.get("text"), query) or _contains(c.get("username"), query) or _contains(c.get("author"), query)
                for c in m.get("comments", [])
            )
        ]
    return filtered


def count_comments(media: list[dict[str, Any]]) -> int:
    return sum(len(m.get("comments", [])) for m in media)


def reply(platform: str, account_id: str, comment_id: str, message: str) -> dict[str, Any]:
    message = (message or "").strip()
    if not message:
        raise CrosspostError("Reply text is required")
    if platform == "instagram":
        with get_session() as session:
            account = session.get(InstagramAccount, account_id)
        if account is None:
            raise CrosspostError("Account not found")
        return meta_client.reply_to_comment(comment_id, message, account.token)
    if platform == "youtube":
        token = fresh_youtube_token(account_id)
        if token is None:
            raise CrosspostError("Account not found")
        return youtube_client.reply_to_comment(comment_id, message, token)
    raise CrosspostError(f"Unknown platform: {platform}")


def bulk_reply(targets: list[dict[str, str]], message: str) -> list[dict[str, Any]]:
    results = []
    for target in targets:
        comment_id = target.get("comment_id", "")
        try:
            reply(target.get("platform", ""), target.get("account_id", ""), comment_id, message)
        except (CrosspostError, httpx.HTTPError) as exc:
            logger.warning("bulk_reply_fail comment_id=%s error=%s", comment_id, exc)
            results.append({"comment_id": comment_id, "ok": False, "error": str(exc)})
            continue
        results.append({"comment_id": comment_id, "ok": True, "error": None})
    return results
