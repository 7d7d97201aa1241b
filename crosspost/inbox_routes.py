from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from crosspost import accounts, comments, insights
from crosspost.auth import require_admin
from crosspost.db import get_session
from crosspost.errors import CrosspostError
from crosspost.web import flash_redirect, render

logger = logging.getLogger("crosspost")

router = APIRouter(tags=["inbox"], dependencies=[Depends(require_admin)])


def _parse_target(value: str) -> dict[str, str] | None:
    parts = value.split("|", 2)
    if len(parts) != 3:
        return None
    platform, account_id, comment_id = parts
    return {"platform": platform, "account_id": account_id, "comment_id": comment_id}


@router.get("/comments")
def comments_page(request: Request, platform: str = "all", q: str = ""):
    if platform not in comments.PLATFORMS:
        platform = "all"
    with get_session() as session:
        if not accounts.has_accounts(session):
            return RedirectResponse("/", status_code=303)
    media = comments.load_inbox()
    filtered = comments.filter_inbox(media, platform, q)
    return render(
        request,
        "comments.html",
        media=filtered,
        platform=platform,
        query=q,
        total_comments=comments.count_comments(media),
        quick_replies=comments.QUICK_REPLIES,
    )


@router.post("/comments/reply")
def reply_comment(
    platform: str = Form(...),
    account_id: str = Form(...),
    comment_id: str = Form(...),
    message: str = Form(""),
):
    try:
        comments.reply(platform, account_id, comment_id, message)
    except (CrosspostError, httpx.HTTPError) as exc:
        logger.warning("reply_fail comment_id=%s error=%s", comment_id, exc)
        return flash_redirect("/comments", f"Failed to send reply: {exc}", "danger")
    return flash_redirect("/comments", "Reply sent successfully!", "success")


@router.post("/comments/bulk-reply")
def bulk_reply(selected: list[str] = Form([]), message: str = Form("")):
    targets = [t for t in (_parse_target(v) for v in selected) if t]
    if not targets:
        return flash_redirect("/comments", "Select at least one comment", "warning")
    if not message.strip():
        return flash_redirect("/comments", "Reply text is required", "warning")
    results = comments.bulk_reply(targets, message)
    sent = len([r for r in results if r["ok"]])
    level = "success" if sent == len(results) else "warning"
    return flash_redirect("/comments", f"Replied to {sent} of {len(results)} comments", level)


@router.get("/insights")
def insights_page(request: Request):
    with get_session() as session:
        if not accounts.has_accounts(session):
            return RedirectResponse("/", status_code=303)
        active = accounts.get_active_instagram_account(session)
    youtube = insights.youtube_overview()

    media, media_insights, error = [], {}, None
    if active is not None:
        try:
            data = insights.media_insights(active)
            media, media_insights = data["media"], data["insights"]
        except (CrosspostError, httpx.HTTPError) as exc:
            logger.exception("insights_load_fail account_id=%s", active.id)
            error = str(exc)
    return render(
        request,
        "insights.html",
        account=active.to_dict() if active else None,
        media=media,
        insights=media_insights,
        youtube=youtube,
        error=error,
    )


@router.get("/api/insights")
def insights_api() -> JSONResponse:
    with get_session() as session:
        active = accounts.get_active_instagram_account(session)
    if active is None:
        return JSONResponse(content={"error": "No Instagram account connected"}, status_code=404)
    try:
        data = insights.media_insights(active)
    except (CrosspostError, httpx.HTTPError) as exc:
        return JSONResponse(content={"error": str(exc)}, status_code=502)
    return JSONResponse(content=data)


__all__ = ["router"]
