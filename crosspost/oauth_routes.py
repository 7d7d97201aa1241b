from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any

import httpx
from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from crosspost import accounts, meta_client, youtube_client
from crosspost.auth import require_admin
from crosspost.db import get_session, utc_now
from crosspost.errors import CrosspostError, GraphAPIError, OAuthError
from crosspost.models import OAuthSession
from crosspost.pkce import generate_code_challenge, generate_code_verifier
from crosspost.storage import app_url
from crosspost.web import flash_redirect

logger = logging.getLogger("crosspost")

router = APIRouter(tags=["oauth"], dependencies=[Depends(require_admin)])

OAUTH_SESSION_TTL = timedelta(minutes=10)


def instagram_redirect_uri() -> str:
    return f"{app_url()}/auth/callback"


def youtube_redirect_uri() -> str:
    return f"{app_url()}/auth/youtube-callback"


def _save_oauth_session(state: str, provider: str, code_verifier: str | None = None) -> None:
    with get_session() as session:
        session.add(OAuthSession(state=state, provider=provider, code_verifier=code_verifier))


def _pop_oauth_session(session: Session, state: str | None, provider: str) -> OAuthSession | None:
    if not state:
        return None
    record = session.get(OAuthSession, state)
    if record is None or record.provider != provider:
        return None
    session.delete(record)
    if record.created_at + OAUTH_SESSION_TTL < utc_now():
        logger.warning("oauth_session_expired provider=%s", provider)
        return None
    return record


def connect_instagram(session: Session, code: str, code_verifier: str) -> Any:
    user_token = meta_client.exchange_code(code, instagram_redirect_uri(), code_verifier)
    pages = meta_client.get_pages(user_token)
    logger.info("meta_pages_found count=%s", len(pages))
    if not pages:
        raise OAuthError("No Facebook Pages found. Please connect an Instagram Business account to a Facebook Page.")
    page_id = pages[0]["id"]
    page_token = pages[0].get("access_token") or user_token

    ig_user_id = meta_client.get_instagram_business_account(page_id, page_token)
    if not ig_user_id:
        raise OAuthError(
            "No Instagram Business Account found. Please convert your Instagram account to a Business "
            "account and connect it to your Facebook Page."
        )
    try:
        profile = meta_client.get_profile(ig_user_id, page_token)
    except GraphAPIError:
        logger.warning("meta_profile_unavailable ig_user_id=%s", ig_user_id)
        profile = {}

    account = accounts.upsert_instagram_account(session, ig_user_id, page_token, page_id, profile)
    accounts.set_active_instagram_account(session, ig_user_id)
    return account


def connect_youtube(session: Session, code: str) -> dict[str, Any]:
    tokens = youtube_client.exchange_code(code, youtube_redirect_uri())
    channel = youtube_client.get_my_channel(tokens["access_token"])
    if channel is None:
        raise LookupError("No YouTube channel found")
    accounts.upsert_youtube_account(session, channel, tokens)
    logger.info("youtube_connected channel=%s", channel.get("title"))
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens.get("refresh_token"),
        "channelId": channel["id"],
        "channelName": channel.get("title"),
        "thumbnail": channel.get("thumbnail"),
        "subscriberCount": channel.get("subscriberCount"),
    }


@router.get("/auth/instagram/login")
def instagram_login() -> RedirectResponse:
    verifier = generate_code_verifier()
    state = secrets.token_urlsafe(24)
    try:
        url = meta_client.build_login_url(instagram_redirect_uri(), generate_code_challenge(verifier), state)
    except OAuthError as exc:
        return flash_redirect("/", str(exc), "danger")
    _save_oauth_session(state, "instagram", verifier)
    return RedirectResponse(url=url, status_code=303)


@router.get("/auth/callback")
def instagram_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
) -> RedirectResponse:
    logger.info("meta_callback code=%s", "present" if code else "missing")
    if error:
        logger.warning("meta_oauth_error error=%s description=%s", error, error_description)
        return flash_redirect("/", f"Authentication failed: {error_description or error}", "danger")
    if not code:
        return flash_redirect("/", "Authentication failed: No authorization code received", "danger")

    try:
        with get_session() as session:
            record = _pop_oauth_session(session, state, "instagram")
        if record is None or not record.code_verifier:
            raise OAuthError("PKCE code verifier not found. Please try logging in again.")
        with get_session() as session:
            connect_instagram(session, code, record.code_verifier)
    except (CrosspostError, httpx.HTTPError) as exc:
        logger.exception("meta_auth_failed")
        return flash_redirect("/", str(exc), "danger")
    return flash_redirect("/dashboard", "Instagram account connected", "success")


@router.get("/auth/youtube/login")
def youtube_login() -> RedirectResponse:
    state = secrets.token_urlsafe(24)
    try:
        url = youtube_client.build_login_url(youtube_redirect_uri(), state)
    except OAuthError as exc:
        return flash_redirect("/", str(exc), "danger")
    _save_oauth_session(state, "youtube")
    return RedirectResponse(url=url, status_code=303)


@router.get("/auth/youtube-callback")
def youtube_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    logger.info("youtube_callback has_code=%s error=%s", bool(code), error)
    if error:
        return flash_redirect("/", "Authorization was denied or cancelled.", "danger")
    if not code:
        return flash_redirect("/", "No authorization code received.", "danger")
    try:
        with get_session() as session:
            record = _pop_oauth_session(session, state, "youtube")
        if record is None:
            raise OAuthError("Login session expired. Please try connecting again.")
        with get_session() as session:
            connect_youtube(session, code)
    except (CrosspostError, LookupError, httpx.HTTPError) as exc:
        logger.exception("youtube_auth_failed")
        return flash_redirect("/", str(exc), "danger")
    return flash_redirect("/dashboard", "YouTube account connected", "success")


@router.post("/api/auth/youtube")
def youtube_token_exchange(payload: dict[str, Any] = Body(...)) -> JSONResponse:
    code = str(payload.get("code") or "").strip()
    if not code:
        return JSONResponse(content={"error": "Missing authorization code"}, status_code=400)
    try:
        with get_session() as session:
            data = connect_youtube(session, code)
    except OAuthError as exc:
        if "not configured" in str(exc):
            return JSONResponse(
                content={
                    "error": str(exc),
                    "details": "Please set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET environment variables",
                },
                status_code=500,
            )
        return JSONResponse(content={"error": str(exc)}, status_code=400)
    except LookupError as exc:
        return JSONResponse(content={"error": str(exc)}, status_code=404)
    except httpx.HTTPError as exc:
        logger.exception("youtube_auth_error")
        return JSONResponse(content={"error": str(exc) or "Authentication failed"}, status_code=500)
    return JSONResponse(content=data)


__all__ = ["router"]
