from datetime import timedelta

import httpx

from crosspost import accounts, youtube_client
from crosspost.db import get_session, get_setting, utc_now
from crosspost.errors import OAuthError
from crosspost.models import YouTubeAccount


def _seed(session):
    accounts.upsert_instagram_account(session, "ig-1", "tok-1", "page-1", {"username": "first", "followers_count": 10})
    accounts.upsert_instagram_account(session, "ig-2", "tok-2", "page-2", {"username": "second"})
    accounts.upsert_youtube_account(
        session,
        {"id": "UC1", "title": "Channel", "subscriberCount": "5"},
        {"access_token": "at", "refresh_token": "rt", "expires_at": utc_now() + timedelta(hours=1)},
    )


def test_upsert_instagram_updates_existing(session) -> None:
    accounts.upsert_instagram_account(session, "ig-1", "old", None, {})
    account = accounts.upsert_instagram_account(session, "ig-1", "new", "page-1", {"username": "renamed"})
    assert account.token == "new"
    assert account.username == "renamed"
    assert len(accounts.list_instagram_accounts(session)) == 1


def test_upsert_youtube_keeps_refresh_token_when_missing(session) -> None:
    _seed(session)
    account = accounts.upsert_youtube_account(session, {"id": "UC1", "title": "Channel"}, {"access_token": "at-2"})
    assert account.access_token == "at-2"
    assert account.refresh_token == "rt"


def test_find_account_reports_platform(session) -> None:
    _seed(session)
    assert accounts.find_account(session, "ig-2")[0] == "instagram"
    assert accounts.find_account(session, "UC1")[0] == "youtube"
    assert accounts.find_account(session, "missing") is None


def test_active_account_defaults_to_first(session) -> None:
    _seed(session)
    assert accounts.get_active_instagram_account(session).id == "ig-1"
    accounts.set_active_instagram_account(session, "ig-2")
    assert accounts.get_active_instagram_account(session).id == "ig-2"


def test_selection_defaults_to_active_account(session) -> None:
    _seed(session)
    accounts.set_active_instagram_account(session, "ig-2")
    assert accounts.get_selected_account_ids(session) == ["ig-2"]


def test_toggle_never_deselects_last_account(session) -> None:
    _seed(session)
    assert accounts.toggle_account_selection(session, "UC1") == ["ig-1", "UC1"]
    assert accounts.toggle_account_selection(session, "ig-1") == ["UC1"]
    assert accounts.toggle_account_selection(session, "UC1") == ["UC1"]
    assert accounts.toggle_account_selection(session, "unknown") == ["UC1"]


def test_select_all_and_remove(session) -> None:
    _seed(session)
    assert accounts.select_all_accounts(session) == ["ig-1", "ig-2", "UC1"]
    accounts.set_active_instagram_account(session, "ig-1")
    assert accounts.remove_account(session, "ig-1", "instagram") is True
    assert get_setting(session, accounts.ACTIVE_IG_KEY) is None
    assert accounts.get_selected_account_ids(session) == ["ig-2", "UC1"]
    assert accounts.remove_account(session, "ig-1", "instagram") is False


def test_logout_clears_everything(session) -> None:
    _seed(session)
    accounts.select_all_accounts(session)
    accounts.logout(session)
    assert not accounts.has_accounts(session)
    assert get_setting(session, accounts.SELECTED_KEY) is None


def test_valid_token_refreshes_near_expiry(session, monkeypatch) -> None:
    _seed(session)
    account = session.get(YouTubeAccount, "UC1")
    account.token_expires_at = utc_now() + timedelta(seconds=30)
    new_expiry = utc_now() + timedelta(hours=1)
    monkeypatch.setattr(youtube_client, "refresh_access_token", lambda token: ("fresh", new_expiry))

    assert accounts.valid_youtube_token(session, account) == "fresh"
    assert account.token_expires_at == new_expiry


def test_valid_token_keeps_current_token_when_refresh_fails(session, monkeypatch) -> None:
    _seed(session)
    account = session.get(YouTubeAccount, "UC1")
    account.token_expires_at = utc_now() - timedelta(minutes=5)

    def failing_refresh(token):
        raise OAuthError("Token refresh failed")

    monkeypatch.setattr(youtube_client, "refresh_access_token", failing_refresh)
    assert accounts.valid_youtube_token(session, account) == "at"


def test_valid_token_skips_refresh_while_fresh(session, monkeypatch) -> None:
    _seed(session)
    account = session.get(YouTubeAccount, "UC1")

    def unexpected(token):
        raise AssertionError("refresh should not be called")

    monkeypatch.setattr(youtube_client, "refresh_access_token", unexpected)
    assert accounts.valid_youtube_token(session, account) == "at"


def test_valid_token_survives_refresh_transport_error(session, monkeypatch) -> None:
    _seed(session)
    account = session.get(YouTubeAccount, "UC1")
    account.token_expires_at = utc_now() - timedelta(minutes=5)

    def unreachable(token):
        raise httpx.ConnectError("network down")

    monkeypatch.setattr(youtube_client, "refresh_access_token", unreachable)
    assert accounts.valid_youtube_token(session, account) == "at"


def test_fresh_token_commits_refresh(monkeypatch) -> None:
    with get_session() as session:
        _seed(session)
        session.get(YouTubeAccount, "UC1").token_expires_at = utc_now() - timedelta(minutes=5)
    monkeypatch.setattr(youtube_client, "refresh_access_token", lambda token: ("fresh", utc_now() + timedelta(hours=1)))

    assert accounts.fresh_youtube_token("UC1") == "fresh"
    assert accounts.fresh_youtube_token("missing") is None
    with get_session() as session:
        assert session.get(YouTubeAccount, "UC1").access_token == "fresh"
