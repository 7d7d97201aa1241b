from __future__ import annotations

import logging
import math
from typing import Any

import httpx
from crosspost import meta_client, youtube_client
from crosspost.accounts import fresh_youtube_token, list_youtube_accounts
from crosspost.db import get_session
from crosspost.errors import CrosspostError
from crosspost.models import InstagramAccount

logger = logging.getLogger("crosspost")

RECENT_MEDIA = 10


def media_insights(account: InstagramAccount) -> dict[str, Any]:
    media = meta_client.get_media_list(account.id, account.token)
    insights: dict[str, Any] = {}
    for item in media[:RECENT_MEDIA]:
        insights[item["id"]] = meta_client.get_media_insights(item["id"], account.token, item.get("media_type", ""))
    return {"media": media, "insights": insights}


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def engagement_rate(total_likes: float, media_with_insights: int, followers: int) -> float:
    if media_with_insights <= 0:
        return 0.0
    rate = total_likes / media_with_insights / (followers or 1) * 100
    return math.floor(rate * 100 + 0.5) / 100


def dashboard_summary(account: InstagramAccount, followers: int | None = None) -> dict[str, Any]:
    summary = {"total_likes": 0, "total_views": 0, "total_reach": 0, "engagement_rate": 0.0}
    try:
        media = meta_client.get_media_list(account.id, account.token)
    except (CrosspostError, httpx.HTTPError):
        logger.exception("insights_summary_fail account_id=%s", account.id)
        return summary

    total_likes = total_views = total_reach = 0.0
    media_with_insights = 0
    for item in media[:RECENT_MEDIA]:
        data = meta_client.get_media_insights(item["id"], account.token, item.get("media_type", ""))
        if data is None or data.get("engagement") == meta_client.NOT_AVAILABLE:
            continue
        total_likes += _number(data.get("engagement"))
        total_views += _number(data.get("views"))
        total_reach += _number(data.get("reach"))
        media_with_insights += 1

    summary.update(
        total_likes=int(total_likes),
        total_views=int(total_views),
        total_reach=int(total_reach),
        engagement_rate=engagement_rate(total_likes, media_with_insights, followers or account.followers_count or 1),
    )
    return summary


def youtube_overview() -> list[dict[str, Any]]:
    with get_session() as session:
        youtube = list_youtube_accounts(session)
    overview = []
    for account in youtube:
        token = fresh_youtube_token(account.id) or account.access_token
        analytics = youtube_client.get_channel_analytics(account.id, token)
        overview.append({"account": account.to_dict(), "analytics": analytics})
    return overview
