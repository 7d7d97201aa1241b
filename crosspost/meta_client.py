from __future__ import annotations

import logging
import os
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from crosspost.errors import GraphAPIError, MediaProcessingError, OAuthError

logger = logging.getLogger("crosspost")

GRAPH_BASE = "https://graph.facebook.com"
DIALOG_BASE = "https://www.facebook.com"
API_VERSION = os.getenv("META_API_VERSION", "v21.0").strip() or "v21.0"

LOGIN_SCOPES = [
    "instagram_basic",
    "instagram_content_publish",
    "instagram_manage_comments",
    "instagram_manage_insights",
    "pages_show_list",
    "pages_read_engagement",
    "business_management",
]

MEDIA_FIELDS = "id,media_type,media_url,thumbnail_url,caption,timestamp"
PROFILE_FIELDS = "username,followers_count,follows_count,media_count,profile_picture_url"
NOT_AVAILABLE = "N/A"

POLL_INTERVAL_SECONDS = 2.0
DEFAULT_MAX_ATTEMPTS = 30


def _url(path: str) -> str:
    return f"{GRAPH_BASE}/{API_VERSION}/{path.lstrip('/')}"


def _parse(response: httpx.Response) -> dict[str, Any]:
    try:
        body: Any = response.json()
    except ValueError:
        body = {"raw": response.text[:500]}
    if not isinstance(body, dict):
        body = {"data": body}
    return body


def _get(path: str, params: dict[str, Any]) -> dict[str, Any]:
    response = httpx.get(_url(path), params=params, timeout=20.0)
    return _parse(response)


def _post(path: str, payload: dict[str, Any]) -> dict[str, Any]:
    response = httpx.post(_url(path), json=payload, timeout=20.0)
    return _parse(response)


def _error_message(body: dict[str, Any], fallback: str) -> str:
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or fallback
    if isinstance(error, str):
        return error
    return fallback


def app_id() -> str | None:
    return os.getenv("META_APP_ID")


def build_login_url(redirect_uri: str, code_challenge: str, state: str) -> str:
    client_id = app_id()
    if not client_id:
        raise OAuthError("Facebook App ID not configured. Set META_APP_ID.")
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": ",".join(LOGIN_SCOPES),
        "response_type": "code",
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{DIALOG_BASE}/{API_VERSION}/dialog/oauth?{urlencode(params)}"


def exchange_code(code: str, redirect_uri: str, code_verifier: str) -> str:
    client_id = app_id()
    if not client_id:
        raise OAuthError("Facebook App ID not configured")
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "code": code,
        "code_verifier": code_verifier,
    }
    secret = os.getenv("META_APP_SECRET")
    if secret:
        params["client_secret"] = secret
    body = _get("oauth/access_token", params)
    if body.get("error"):
        raise OAuthError(_error_message(body, "Failed to exchange authorization code"))
    token = body.get("access_token")
    if not token:
        raise OAuthError("No access token received from Facebook")
    logger.info("meta_token_exchange_success")
    return token


def get_pages(token: str) -> list[dict[str, Any]]:
    body = _get("me/accounts", {"access_token": token})
    if body.get("error"):
        raise GraphAPIError(_error_message(body, "Failed to list pages"))
    return body.get("data") or []


def get_instagram_business_account(page_id: str, page_token: str) -> str | None:
    body = _get(page_id, {"fields": "instagram_business_account", "access_token": page_token})
    account = body.get("instagram_business_account")
    if isinstance(account, dict):
        return account.get("id")
    return None


def get_profile(ig_user_id: str, token: str) -> dict[str, Any]:
    body = _get(ig_user_id, {"fields": PROFILE_FIELDS, "access_token": token})
    if body.get("error"):
        raise GraphAPIError(_error_message(body, "Failed to fetch profile"))
    return body


def create_media(
    ig_user_id: str,
    token: str,
    media_url: str,
    caption: str,
    is_reel: bool,
    location_id: str | None = None,
    cover_url: str | None = None,
) -> str:
    payload: dict[str, Any] = {
        "media_type": "REELS" if is_reel else "IMAGE",
        "caption": caption,
        "access_token": token,
    }
    if is_reel:
        payload["video_url"] = media_url
        if cover_url:
            payload["cover_url"] = cover_url
    else:
        payload["image_url"] = media_url
    if location_id:
        payload["location_id"] = location_id

    logger.info("meta_create_media ig_user_id=%s is_reel=%s", ig_user_id, is_reel)
    body = _post(f"{ig_user_id}/media", payload)
    error = body.get("error")
    if error:
        code = error.get("code", "") if isinstance(error, dict) else ""
        message = _error_message(body, "Unknown error")
        logger.warning("meta_create_media_fail ig_user_id=%s error=%s", ig_user_id, error)
        raise GraphAPIError(f"Media creation failed ({code}): {message}", code=code or None)
    container_id = body.get("id")
    if not container_id:
        raise GraphAPIError("Media creation failed: No container ID returned")
    logger.info("meta_create_media_success container_id=%s", container_id)
    return container_id


def check_media_status(container_id: str, token: str) -> str:
    body = _get(container_id, {"fields": "status_code", "access_token": token})
    if body.get("error"):
        raise GraphAPIError(f"Status check failed: {_error_message(body, 'unknown error')}")
    return body.get("status_code") or "UNKNOWN"


def wait_for_media_ready(container_id: str, token: str, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
    for attempt in range(max_attempts):
        status = check_media_status(container_id, token)
        logger.info(
            "meta_media_status container_id=%s attempt=%s/%s status=%s",
            container_id,
            attempt + 1,
            max_attempts,
            status,
        )
        if status == "FINISHED":
            return
        if status == "ERROR":
            raise MediaProcessingError("Media processing failed on Instagram's side")
        if status == "EXPIRED":
            raise MediaProcessingError("Media container has expired. Please try uploading again.")
        time.sleep(POLL_INTERVAL_SECONDS)
    raise MediaProcessingError("Media processing timed out. Please try again later.")


def publish_media(ig_user_id: str, token: str, creation_id: str) -> dict[str, Any]:
    wait_for_media_ready(creation_id, token)
    body = _post(f"{ig_user_id}/media_publish", {"creation_id": creation_id, "access_token": token})
    if body.get("error"):
        raise GraphAPIError(f"Publishing failed: {_error_message(body, 'Unknown error')}")
    logger.info("meta_publish_success ig_user_id=%s media_id=%s", ig_user_id, body.get("id"))
    return body


def get_media_list(ig_user_id: str, token: str) -> list[dict[str, Any]]:
    body = _get(f"{ig_user_id}/media", {"fields": MEDIA_FIELDS, "access_token": token})
    if body.get("error"):
        raise GraphAPIError(_error_message(body, "Failed to fetch media list"))
    return body.get("data") or []


def _unavailable_insights() -> dict[str, Any]:
    return {key: NOT_AVAILABLE for key in ("engagement", "impressions", "reach", "saved", "views")}


def insight_metrics(media_type: str) -> str:
    if media_type in ("IMAGE", "CAROUSEL_ALBUM"):
        return "engagement,impressions,reach,saved"
    if media_type in ("VIDEO", "REELS"):
        return "engagement,impressions,reach,saved,video_views"
    return "engagement,impressions,reach"


def get_media_insights(media_id: str, token: str, media_type: str) -> dict[str, Any]:
    try:
        body = _get(f"{media_id}/insights", {"metric": insight_metrics(media_type), "access_token": token})
    except httpx.HTTPError:
        logger.exception("meta_insights_fail media_id=%s", media_id)
        return _unavailable_insights()

    error = body.get("error")
    if error:
        logger.info("meta_insights_error media_id=%s error=%s", media_id, error)
        if isinstance(error, dict) and error.get("code") in (10, 100):
            return _unavailable_insights()
        return {}

    values: dict[str, Any] = {}
    for metric in body.get("data") or []:
        metric_values = metric.get("values") or [{}]
        values[metric.get("name")] = metric_values[0].get("value") or 0
    return {
        "engagement": values.get("engagement") or 0,
        "impressions": values.get("impressions") or 0,
        "reach": values.get("reach") or 0,
        "saved": values.get("saved") or 0,
        "views": values.get("video_views") or values.get("reach") or 0,
    }


def get_media_comments(media_id: str, token: str) -> list[dict[str, Any]]:
    try:
        body = _get(f"{media_id}/comments", {"fields": "id,text,username,timestamp", "access_token": token})
    except httpx.HTTPError:
        logger.exception("meta_comments_fail media_id=%s", media_id)
        return []
    if body.get("error"):
        logger.warning("meta_comments_error media_id=%s error=%s", media_id, body.get("error"))
        return []
    return body.get("data") or []


def reply_to_comment(comment_id: str, message: str, token: str) -> dict[str, Any]:
    body = _post(f"{comment_id}/replies", {"message": message, "access_token": token})
    if body.get("error"):
        raise GraphAPIError(_error_message(body, "Failed to reply to comment"))
    logger.info("meta_comment_reply_success comment_id=%s", comment_id)
    return body
