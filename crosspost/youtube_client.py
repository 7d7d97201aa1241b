from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from crosspost.db import utc_now
from crosspost.errors import OAuthError, YouTubeAPIError

logger = logging.getLogger("crosspost")

OAUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
API_BASE = "https://www.googleapis.com/youtube/v3"
UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"

SCOPES = [
    "https://www.googleapis.com/auth/youtube.upload",
    "https://www.googleapis.com/auth/youtube.readonly",
    "https://www.googleapis.com/auth/youtube",
]

PEOPLE_AND_BLOGS_CATEGORY = "22"
SHORTS_TAG = "#Shorts"


def _request(method: str, url: str, **kwargs: Any) -> httpx.Response:
    kwargs.setdefault("timeout", 30.0)
    return httpx.request(method, url, **kwargs)


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"raw": response.text[:500]}
    return body if isinstance(body, dict) else {"data": body}


def _bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _credentials() -> tuple[str | None, str | None]:
    return os.getenv("GOOGLE_CLIENT_ID"), os.getenv("GOOGLE_CLIENT_SECRET")


def build_login_url(redirect_uri: str, state: str) -> str:
    client_id, _ = _credentials()
    if not client_id:
        raise OAuthError("Google Client ID not configured. Set GOOGLE_CLIENT_ID.")
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{OAUTH_URL}?{urlencode(params)}"


def _token_expiry(token_data: dict[str, Any]) -> datetime:
    return utc_now() + timedelta(seconds=int(token_data.get("expires_in") or 3600))


def exchange_code(code: str, redirect_uri: str) -> dict[str, Any]:
    client_id, client_secret = _credentials()
    if not client_id or not client_secret:
        logger.error(
            "youtube_oauth_config_missing has_client_id=%s has_client_secret=%s redirect_uri=%s",
            bool(client_id),
            bool(client_secret),
            redirect_uri,
        )
        raise OAuthError("Google OAuth credentials not configured")
    response = _request(
        "POST",
        TOKEN_URL,
        data={
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
    )
    token_data = _json(response)
    if token_data.get("error") or not token_data.get("access_token"):
        logger.warning("youtube_token_exchange_fail response=%s", token_data)
        raise OAuthError(token_data.get("error_description") or "Token exchange failed")
    return {
        "access_token": token_data["access_token"],
        "refresh_token": token_data.get("refresh_token"),
        "expires_at": _token_expiry(token_data),
    }


def refresh_access_token(refresh_token: str) -> tuple[str, datetime]:
    client_id, client_secret = _credentials()
    if not client_id or not client_secret:
        raise OAuthError("Google OAuth credentials not configured")
    response = _request(
        "POST",
        TOKEN_URL,
        data={
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "refresh_token",
        },
    )
    token_data = _json(response)
    if not response.is_success or not token_data.get("access_token"):
        raise OAuthError(f"Token refresh failed: {token_data.get('error_description') or token_data}")
    logger.info("youtube_token_refresh_success")
    return token_data["access_token"], _token_expiry(token_data)


def get_my_channel(access_token: str) -> dict[str, Any] | None:
    response = _request(
        "GET",
        f"{API_BASE}/channels",
        params={"part": "snippet,statistics", "mine": "true"},
        headers=_bearer(access_token),
    )
    items = _json(response).get("items") or []
    if not items:
        return None
    channel = items[0]
    snippet = channel.get("snippet") or {}
    thumbnails = snippet.get("thumbnails") or {}
    return {
        "id": channel["id"],
        "title": snippet.get("title"),
        "thumbnail": (thumbnails.get("default") or {}).get("url"),
        "subscriberCount": (channel.get("statistics") or {}).get("subscriberCount"),
    }


def shorts_metadata(title: str, description: str) -> tuple[str, str]:
    if SHORTS_TAG not in title:
        title = f"{title} {SHORTS_TAG}"
    if SHORTS_TAG not in description:
        description = f"{description}\n\n{SHORTS_TAG}"
    return title, description


def video_url(video_id: str, is_short: bool) -> str:
    if is_short:
        return f"https://www.youtube.com/shorts/{video_id}"
    return f"https://www.youtube.com/watch?v={video_id}"


def upload_video(
    access_token: str,
    source_url: str,
    title: str,
    description: str = "",
    privacy: str = "public",
    keywords: list[str] | None = None,
    is_short: bool = False,
) -> dict[str, Any]:
    if not access_token or not source_url or not title:
        raise YouTubeAPIError("Missing required fields", status=400)

    logger.info("youtube_upload_start source=%s privacy=%s is_short=%s", source_url, privacy, is_short)
    source = _request("GET", source_url, follow_redirects=True, timeout=300.0)
    if not source.is_success:
        raise YouTubeAPIError("Failed to download video from URL", status=source.status_code)
    content = source.content
    content_type = source.headers.get("content-type") or "video/mp4"
    logger.info("youtube_upload_downloaded size=%s", len(content))

    description = description or ""
    if is_short:
        title, description = shorts_metadata(title, description)
    snippet: dict[str, Any] = {
        "title": title,
        "description": description,
        "categoryId": PEOPLE_AND_BLOGS_CATEGORY,
    }
    if keywords:
        snippet["tags"] = keywords

    init = _request(
        "POST",
        UPLOAD_URL,
        params={"uploadType": "resumable", "part": "snippet,status"},
        headers={
            **_bearer(access_token),
            "X-Upload-Content-Type": content_type,
            "X-Upload-Content-Length": str(len(content)),
        },
        json={
            "snippet": snippet,
            "status": {"privacyStatus": privacy, "selfDeclaredMadeForKids": False},
        },
    )
    if not init.is_success:
        logger.warning("youtube_upload_init_fail status=%s body=%s", init.status_code, init.text[:500])
        raise YouTubeAPIError(f"Failed to initialize upload: {init.text}", status=init.status_code)

    upload_location = init.headers.get("location")
    if not upload_location:
        raise YouTubeAPIError("No upload URL received from YouTube")

    upload = _request(
        "PUT",
        upload_location,
        headers={**_bearer(access_token), "Content-Type": content_type},
        content=content,
        timeout=600.0,
    )
    if not upload.is_success:
        logger.warning("youtube_upload_fail status=%s body=%s", upload.status_code, upload.text[:500])
        if upload.status_code == 401:
            raise YouTubeAPIError("YouTube authentication expired. Please reconnect your account.", status=401)
        if upload.status_code == 403:
            raise YouTubeAPIError("YouTube upload permission denied. Check your account permissions.", status=403)
        raise YouTubeAPIError(f"Failed to upload video: {upload.text}", status=upload.status_code)

    video_id = _json(upload).get("id")
    logger.info("youtube_upload_success video_id=%s", video_id)
    return {"success": True, "videoId": video_id, "url": video_url(video_id, is_short)}


def get_video_details(video_id: str, access_token: str) -> dict[str, Any] | None:
    try:
        response = _request(
            "GET",
            f"{API_BASE}/videos",
            params={"part": "snippet,statistics,status", "id": video_id},
            headers=_bearer(access_token),
        )
        if not response.is_success:
            raise YouTubeAPIError("Failed to fetch video details", status=response.status_code)
        items = _json(response).get("items") or []
        if not items:
            raise YouTubeAPIError("Video not found", status=404)
    except (httpx.HTTPError, YouTubeAPIError):
        logger.exception("youtube_video_details_fail video_id=%s", video_id)
        return None

    video = items[0]
    snippet = video.get("snippet") or {}
    thumbnails = snippet.get("thumbnails") or {}
    statistics = video.get("statistics") or {}
    return {
        "id": video.get("id"),
        "title": snippet.get("title"),
        "description": snippet.get("description"),
        "thumbnail": (thumbnails.get("high") or thumbnails.get("default") or {}).get("url"),
        "publishedAt": snippet.get("publishedAt"),
        "viewCount": statistics.get("viewCount", 0),
        "likeCount": statistics.get("likeCount", 0),
        "commentCount": statistics.get("commentCount", 0),
        "privacyStatus": (video.get("status") or {}).get("privacyStatus"),
    }


def get_comments(video_id: str, access_token: str) -> list[dict[str, Any]]:
    try:
        response = _request(
            "GET",
            f"{API_BASE}/commentThreads",
            params={"part": "snippet", "videoId": video_id, "maxResults": 100},
            headers=_bearer(access_token),
        )
    except httpx.HTTPError:
        logger.exception("youtube_comments_fail video_id=%s", video_id)
        return []
    body = _json(response)
    if not response.is_success:
        logger.warning("youtube_comments_error video_id=%s error=%s", video_id, body)
        return []

    comments = []
    for item in body.get("items") or []:
        thread = item.get("snippet") or {}
        top = (thread.get("topLevelComment") or {}).get("snippet") or {}
        comments.append(
            {
                "id": item.get("id"),
                "text": top.get("textDisplay", ""),
                "author": top.get("authorDisplayName"),
                "authorProfileImage": top.get("authorProfileImageUrl"),
                "likeCount": top.get("likeCount", 0),
                "publishedAt": top.get("publishedAt"),
                "videoId": thread.get("videoId"),
            }
        )
    return comments


def reply_to_comment(comment_id: str, message: str, access_token: str) -> dict[str, Any]:
    response = _request(
        "POST",
        f"{API_BASE}/comments",
        params={"part": "snippet"},
        headers=_bearer(access_token),
        json={"snippet": {"parentId": comment_id, "textOriginal": message}},
    )
    body = _json(response)
    if not response.is_success:
        error = body.get("error")
        error_message = error.get("message") if isinstance(error, dict) else None
        raise YouTubeAPIError(error_message or "Failed to reply to comment", status=response.status_code)
    logger.info("youtube_comment_reply_success comment_id=%s", comment_id)
    return body


def get_channel_analytics(channel_id: str, access_token: str) -> dict[str, Any] | None:
    try:
        response = _request(
            "GET",
            f"{API_BASE}/channels",
            params={"part": "statistics", "id": channel_id},
            headers=_bearer(access_token),
        )
    except httpx.HTTPError:
        logger.exception("youtube_channel_analytics_fail channel_id=%s", channel_id)
        return None
    if not response.is_success:
        logger.warning("youtube_channel_analytics_error channel_id=%s status=%s", channel_id, response.status_code)
        return None
    items = _json(response).get("items") or []
    if not items:
        return None
    stats = items[0].get("statistics") or {}
    return {
        "subscriberCount": stats.get("subscriberCount", 0),
        "viewCount": stats.get("viewCount", 0),
        "videoCount": stats.get("videoCount", 0),
    }


def get_recent_videos(channel_id: str, access_token: str, limit: int = 10) -> list[dict[str, Any]]:
    response = _request(
        "GET",
        f"{API_BASE}/search",
        params={
            "part": "snippet",
            "channelId": channel_id,
            "order": "date",
            "type": "video",
            "maxResults": limit,
        },
        headers=_bearer(access_token),
    )
    if not response.is_success:
        raise YouTubeAPIError("Failed to list channel videos", status=response.status_code)
    videos = []
    for item in _json(response).get("items") or []:
        snippet = item.get("snippet") or {}
        thumbnails = snippet.get("thumbnails") or {}
        videos.append(
            {
                "id": (item.get("id") or {}).get("videoId"),
                "title": snippet.get("title"),
                "description": snippet.get("description"),
                "thumbnail": (thumbnails.get("high") or thumbnails.get("default") or {}).get("url"),
            }
        )
    return videos
