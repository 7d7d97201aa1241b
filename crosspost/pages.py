from __future__ import annotations

import logging
from datetime import datetime

import httpx
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse

from crosspost import accounts, insights, meta_client, publisher
from crosspost.auth import require_admin
from crosspost.db import get_session
from crosspost.errors import CrosspostError, PublishError
from crosspost.hashtags import MAX_HASHTAGS, generate_hashtags, normalize_custom_hashtag
from crosspost.storage import public_url, save_file
from crosspost.web import flash_redirect, render

logger = logging.getLogger("crosspost")

router = APIRouter(tags=["pages"], dependencies=[Depends(require_admin)])


@router.get("/")
def connect_page(request: Request):
    with get_session() as session:
        has_accounts = accounts.has_accounts(session)
    return render(request, "connect.html", has_accounts=has_accounts)


@router.get("/dashboard")
def dashboard(request: Request):
    with get_session() as session:
        if not accounts.has_accounts(session):
            return RedirectResponse("/", status_code=303)
        ig_accounts = accounts.list_instagram_accounts(session)
        yt_accounts = accounts.list_youtube_accounts(session)
        active = accounts.get_active_instagram_account(session)
        selected = accounts.get_selected_account_ids(session)
        scheduled = [p.to_dict() for p in publisher.list_upcoming(session)]

    profile = None
    summary = None
    if active is not None:
        try:
            profile = meta_client.get_profile(active.id, active.token)
        except (CrosspostError, httpx.HTTPError):
            logger.exception("dashboard_profile_fail account_id=%s", active.id)
        summary = insights.dashboard_summary(active, (profile or {}).get("followers_count"))

    ig_ids = {a.id for a in ig_accounts}
    yt_ids = {a.id for a in yt_accounts}
    return render(
        request,
        "dashboard.html",
        instagram_accounts=[a.to_dict() for a in ig_accounts],
        youtube_accounts=[a.to_dict() for a in yt_accounts],
        active_account=active.to_dict() if active else None,
        selected=selected,
        selected_ig_count=len([a for a in selected if a in ig_ids]),
        selected_yt_count=len([a for a in selected if a in yt_ids]),
        profile=profile,
        summary=summary,
        scheduled_posts=scheduled,
    )


@router.post("/dashboard/select/{account_id}")
def toggle_selection(account_id: str):
    with get_session() as session:
        accounts.toggle_account_selection(session, account_id)
    return RedirectResponse("/dashboard", status_code=303)


@router.post("/dashboard/select-all")
def select_all():
    with get_session() as session:
        accounts.select_all_accounts(session)
    return RedirectResponse("/dashboard", status_code=303)


@router.post("/dashboard/active/{account_id}")
def set_active(account_id: str):
    with get_session() as session:
        accounts.set_active_instagram_account(session, account_id)
    return RedirectResponse("/dashboard", status_code=303)


@router.post("/accounts/{platform}/{account_id}/remove")
def remove_account(platform: str, account_id: str):
    if platform not in ("instagram", "youtube"):
        return flash_redirect("/dashboard", "Unknown platform", "warning")
    with get_session() as session:
        removed = accounts.remove_account(session, account_id, platform)
        remaining = accounts.has_accounts(session)
    if not remaining:
        return flash_redirect("/", "Account removed", "info")
    if not removed:
        return flash_redirect("/dashboard", "Account not found", "warning")
    return flash_redirect("/dashboard", "Account removed", "info")


@router.post("/logout")
def logout():
    with get_session() as session:
        accounts.logout(session)
    return flash_redirect("/", "Logged out", "info")


@router.post("/scheduled/{post_id}/delete")
def delete_scheduled(post_id: int):
    with get_session() as session:
        deleted = publisher.delete_scheduled(session, post_id)
    if not deleted:
        return flash_redirect("/dashboard", "Scheduled post not found", "warning")
    return flash_redirect("/dashboard", "Scheduled post deleted", "warning")


@router.get("/api/hashtags")
def hashtag_suggestions(caption: str = "") -> JSONResponse:
    return JSONResponse(content={"hashtags": generate_hashtags(caption), "max": MAX_HASHTAGS})


@router.get("/upload")
def upload_page(request: Request, type: str = "POST", caption: str = ""):
    content_type = type.upper() if type.upper() in publisher.CONTENT_TYPES else "POST"
    with get_session() as session:
        if not accounts.has_accounts(session):
            return RedirectResponse("/", status_code=303)
        available = [a.to_dict() for a in accounts.list_instagram_accounts(session)]
        available += [a.to_dict() for a in accounts.list_youtube_accounts(session)]
        selected = accounts.get_selected_account_ids(session)
    return render(
        request,
        "upload.html",
        available_accounts=available,
        selected=selected,
        content_type=content_type,
        content_types=publisher.CONTENT_TYPES,
        caption=caption,
        suggested_hashtags=generate_hashtags(caption) if caption else [],
        max_hashtags=MAX_HASHTAGS,
    )


def _parse_schedule(schedule_date: str, schedule_time: str) -> datetime:
    if not schedule_date or not schedule_time:
        raise PublishError("Please select a date and time for scheduling")
    try:
        return datetime.fromisoformat(f"{schedule_date}T{schedule_time}")
    except ValueError as exc:
        raise PublishError("Invalid schedule date or time") from exc


@router.post("/upload")
def submit_upload(
    request: Request,
    account_ids: list[str] = Form([]),
    caption: str = Form(""),
    title: str = Form(""),
    keywords: str = Form(""),
    media_url: str = Form(""),
    content_type: str = Form("POST"),
    location: str = Form(""),
    hashtags: list[str] = Form([]),
    custom_hashtag: str = Form(""),
    schedule_type: str = Form("now"),
    schedule_date: str = Form(""),
    schedule_time: str = Form(""),
    file: UploadFile | None = File(None),
):
    selected_tags = list(dict.fromkeys(hashtags))
    custom = normalize_custom_hashtag(custom_hashtag)
    if custom and custom not in selected_tags:
        selected_tags.append(custom)
    selected_tags = selected_tags[:MAX_HASHTAGS]

    back = f"/upload?type={content_type}"
    try:
        if not account_ids:
            raise PublishError("Please select at least one account")
        when = _parse_schedule(schedule_date, schedule_time) if schedule_type == "schedule" else None

        uploaded_url = None
        if file is not None and file.filename:
            with get_session() as session:
                record = save_file(session, file.file, file.filename, file.content_type)
            uploaded_url = public_url(record.id)
        final_url = publisher.resolve_media_url(media_url.strip(), uploaded_url)

        publish_request = publisher.PublishRequest(
            account_ids=account_ids,
            media_url=final_url,
            caption=caption,
            title=title,
            keywords=keywords,
            content_type=content_type.upper(),
            location=location.strip(),
            hashtags=selected_tags,
        )
        if when is not None:
            with get_session() as session:
                publisher.schedule(session, publish_request, when)
            return flash_redirect("/dashboard", "Post scheduled successfully!", "success")
        results = publisher.publish(publish_request)
    except PublishError as exc:
        return flash_redirect(back, str(exc), "danger")

    all_success = all(r.status == "success" for r in results)
    return render(
        request,
        "publish_result.html",
        results=[r.to_dict() for r in results],
        all_success=all_success,
        media_url=final_url,
    )


__all__ = ["router"]
