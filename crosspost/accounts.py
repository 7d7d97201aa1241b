from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Any

import httpx
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from crosspost import youtube_client
from crosspost.db import delete_setting, get_session, get_setting, set_setting, utc_now
from crosspost.errors import OAuthError
from crosspost.models import InstagramAccount, YouTubeAccount

logger = logging.getLogger("crosspost")

ACTIVE_IG_KEY = "ig_user_id"
SELECTED_KEY = "selected_accounts"
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


def list_instagram_accounts(session: Session) -> list[InstagramAccount]:
    return list(session.execute(select(InstagramAccount).order_by(InstagramAccount.connected_at)).scalars())


def list_youtube_accounts(session: Session) -> list[YouTubeAccount]:
    return list(session.execute(select(YouTubeAccount).order_by(YouTubeAccount.connected_at)).scalars())


def has_accounts(session: Session) -> bool:
    return bool(list_instagram_accounts(session) or list_youtube_accounts(session))


def find_account(session: Session, account_id: str) -> tuple[str, InstagramAccount | YouTubeAccount] | None:
    ig = session.get(InstagramAccount, account_id)
    if ig is not None:
        return "instagram", ig
    yt = session.get(YouTubeAccount, account_id)
    if yt is not None:
        return "youtube", yt
    return None


def upsert_instagram_account(
    session: Session,
    ig_user_id: str,
    token: str,
    page_id: str | None,
    profile: dict[str, Any],
) -> InstagramAccount:
    account = session.get(InstagramAccount, ig_user_id)
    if account is None:
        account = InstagramAccount(id=ig_user_id, token=token)
        session.add(account)
    account.username = profile.get("username") or "Instagram User"
    account.profile_picture_url = profile.get("profile_picture_url")
    account.followers_count = int(profile.get("followers_count") or 0)
    account.token = token
    account.page_id = page_id
    session.flush()
    logger.info("account_saved platform=instagram account_id=%s", ig_user_id)
    return account


def upsert_youtube_account(
    session: Session,
    channel: dict[str, Any],
    tokens: dict[str, Any],
) -> YouTubeAccount:
    account = session.get(YouTubeAccount, channel["id"])
    if account is None:
        account = YouTubeAccount(id=channel["id"], name=channel.get("title") or "", access_token="")
        session.add(account)
    account.name = channel.get("title") or account.name
    account.thumbnail = channel.get("thumbnail")
    account.subscriber_count = channel.get("subscriberCount")
    account.access_token = tokens["access_token"]
    if tokens.get("refresh_token"):
        account.refresh_token = tokens["refresh_token"]
    account.token_expires_at = tokens.get("expires_at")
    session.flush()
    logger.info("account_saved platform=youtube account_id=%s", account.id)
    return account


def get_active_instagram_account(session: Session) -> InstagramAccount | None:
    accounts = list_instagram_accounts(session)
    if not accounts:
        return None
    stored = get_setting(session, ACTIVE_IG_KEY)
    for account in accounts:
        if account.id == stored:
            return account
    set_setting(session, ACTIVE_IG_KEY, accounts[0].id)
    return accounts[0]


def set_active_instagram_account(session: Session, ig_user_id: str) -> None:
    set_setting(session, ACTIVE_IG_KEY, ig_user_id)


def _all_account_ids(session: Session) -> list[str]:
    return [a.id for a in list_instagram_accounts(session)] + [a.id for a in list_youtube_accounts(session)]


def get_selected_account_ids(session: Session) -> list[str]:
    known = _all_account_ids(session)
    raw = get_setting(session, SELECTED_KEY)
    selected: list[str] = []
    if raw:
        try:
            selected = [a for a in json.loads(raw) if a in known]
        except ValueError:
            logger.warning("selected_accounts_corrupt value=%s", raw)
    if selected:
        return selected
    active = get_active_instagram_account(session)
    if active is not None:
        return [active.id]
    return known[:1]


def _save_selection(session: Session, selected: list[str]) -> None:
    set_setting(session, SELECTED_KEY, json.dumps(selected))


def toggle_account_selection(session: Session, account_id: str) -> list[str]:
    selected = get_selected_account_ids(session)
    if account_id in selected:
        if len(selected) == 1:
            return selected
        selected = [a for a in selected if a != account_id]
    elif account_id in _all_account_ids(session):
        selected = selected + [account_id]
    _save_selection(session, selected)
    return selected


def select_all_accounts(session: Session) -> list[str]:
    selected = _all_account_ids(session)
    _save_selection(session, selected)
    return selected


def remove_account(session: Session, account_id: str, platform: str) -> bool:
    model = InstagramAccount if platform == "instagram" else YouTubeAccount
    account = session.get(model, account_id)
    if account is None:
        return False
    session.delete(account)
    session.flush()
    if platform == "instagram" and get_setting(session, ACTIVE_IG_KEY) == account_id:
        delete_setting(session, ACTIVE_IG_KEY)
    raw = get_setting(session, SELECTED_KEY)
    if raw:
        try:
            remaining = [a for a in json.loads(raw) if a != account_id]
        except ValueError:
            remaining = []
        _save_selection(session, remaining)
    logger.info("account_removed platform=%s account_id=%s", platform, account_id)
    return True


def logout(session: Session) -> None:
    session.execute(delete(InstagramAccount))
    session.execute(delete(YouTubeAccount))
    delete_setting(session, ACTIVE_IG_KEY)
    delete_setting(session, SELECTED_KEY)
    logger.info("accounts_cleared")


def valid_youtube_token(session: Session, account: YouTubeAccount) -> str:
    """Return a usable access token, refreshing it first when it is about to expire."""
    expires_at = account.token_expires_at
    if expires_at is None or expires_at - TOKEN_REFRESH_MARGIN > utc_now():
        return account.access_token
    if not account.refresh_token:
        return account.access_token
    try:
        access_token, new_expiry = youtube_client.refresh_access_token(account.refresh_token)
    except (OAuthError, httpx.HTTPError):
        logger.exception("youtube_token_refresh_fail account_id=%s", account.id)
        return account.access_token
    account.access_token = access_token
    account.token_expires_at = new_expiry
    session.flush()
    return access_token


def fresh_youtube_token(account_id: str) -> str | None:
    """Resolve a token in its own short transaction so callers can upload without holding the database."""
    with get_session() as session:
        account = session.get(YouTubeAccount, account_id)
        if account is None:
            return None
        return valid_youtube_token(session, account)
