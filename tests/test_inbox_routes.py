from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

from crosspost import accounts, comments, insights, meta_client, youtube_client
from crosspost.db import get_session, utc_now
from crosspost.errors import GraphAPIError
from crosspost.main import app

client = TestClient(app)

MEDIA = [
    {"id": "m1", "caption": "Beach day", "media_type": "IMAGE"},
    {"id": "m2", "caption": "Coffee", "media_type": "REELS"},
]


@pytest.fixture
def connected(monkeypatch):
    with get_session() as session:
        accounts.upsert_instagram_account(session, "ig-1", "tok", None, {"username": "insta", "followers_count": 100})
        accounts.upsert_youtube_account(
            session,
            {"id": "UC1", "title": "Channel"},
            {"access_token": "at", "expires_at": utc_now() + timedelta(hours=1)},
        )
    monkeypatch.setattr(meta_client, "get_media_list", lambda ig_id, token: MEDIA)
    monkeypatch.setattr(
        meta_client,
        "get_media_comments",
        lambda media_id, token: [{"id": "c1", "text": "So nice", "username": "fan"}] if media_id == "m1" else [],
    )
    monkeypatch.setattr(
        youtube_client,
        "get_recent_videos",
        lambda channel_id, token, limit=10: [{"id": "v1", "title": "Vlog", "description": "", "thumbnail": None}],
    )
    monkeypatch.setattr(
        youtube_client,
        "get_comments",
        lambda video_id, token: [{"id": "yc1", "text": "First!", "author": "viewer"}],
    )


def test_load_inbox_skips_media_without_comments(connected) -> None:
    media = comments.load_inbox()
    assert [m["id"] for m in media] == ["m1", "v1"]
    assert media[0]["account_id"] == "ig-1"
    assert media[0]["comments"][0]["media_id"] == "m1"
    assert media[1]["platform"] == "youtube"
    assert comments.count_comments(media) == 2


def test_filter_inbox(connected) -> None:
    media = comments.load_inbox()
    assert [m["id"] for m in comments.filter_inbox(media, "youtube")] == ["v1"]
    assert [m["id"] for m in comments.filter_inbox(media, "all", "FAN")] == ["m1"]
    assert [m["id"] for m in comments.filter_inbox(media, "all", "vlog")] == ["v1"]
    assert comments.filter_inbox(media, "instagram", "vlog") == []


def test_comments_page(connected) -> None:
    response = client.get("/comments", params={"platform": "instagram"})
    assert response.status_code == 200
    assert "So nice" in response.text
    assert "First!" not in response.text
    assert "Thanks for watching!" in response.text


def test_reply_routes_to_platform(connected, monkeypatch) -> None:
    sent = []
    monkeypatch.setattr(meta_client, "reply_to_comment", lambda cid, msg, token: sent.append(("ig", cid, msg)) or {})
    monkeypatch.setattr(youtube_client, "reply_to_comment", lambda cid, msg, token: sent.append(("yt", cid, msg)) or {})

    response = client.post(
        "/comments/reply",
        data={"platform": "instagram", "account_id": "ig-1", "comment_id": "c1", "message": " Thanks! "},
        follow_redirects=False,
    )
    assert "Reply+sent+successfully" in response.headers["location"]
    assert sent == [("ig", "c1", "Thanks!")]

    response = client.post(
        "/comments/bulk-reply",
        data={"selected": ["instagram|ig-1|c1", "youtube|UC1|yc1", "youtube|missing|yc2"], "message": "Thank you!"},
        follow_redirects=False,
    )
    assert "Replied+to+2+of+3" in response.headers["location"]
    assert sent[1:] == [("ig", "c1", "Thank you!"), ("yt", "yc1", "Thank you!")]


def test_reply_failure_flashes(connected, monkeypatch) -> None:
    def failing(cid, msg, token):
        raise GraphAPIError("Comment not found")

    monkeypatch.setattr(meta_client, "reply_to_comment", failing)
    response = client.post(
        "/comments/reply",
        data={"platform": "instagram", "account_id": "ig-1", "comment_id": "c1", "message": "hi"},
        follow_redirects=False,
    )
    assert "Failed+to+send+reply" in response.headers["location"]


def test_reply_requires_text(connected) -> None:
    response = client.post(
        "/comments/reply",
        data={"platform": "instagram", "account_id": "ig-1", "comment_id": "c1", "message": "  "},
        follow_redirects=False,
    )
    assert "Reply+text+is+required" in response.headers["location"]


def test_engagement_rate_rounding() -> None:
    assert insights.engagement_rate(0, 0, 100) == 0.0
    assert insights.engagement_rate(25, 2, 100) == 12.5
    assert insights.engagement_rate(1, 3, 1) == 33.33
    assert insights.engagement_rate(10, 1, 0) == 1000.0


def test_dashboard_summary_skips_unavailable_insights(connected, monkeypatch) -> None:
    values = {
        "m1": {"engagement": 10, "impressions": 0, "reach": 50, "saved": 0, "views": 50},
        "m2": {key: meta_client.NOT_AVAILABLE for key in ("engagement", "impressions", "reach", "saved", "views")},
    }
    monkeypatch.setattr(meta_client, "get_media_insights", lambda media_id, token, media_type: values[media_id])
    with get_session() as session:
        account = accounts.get_active_instagram_account(session)
    summary = insights.dashboard_summary(account)
    assert summary == {"total_likes": 10, "total_views": 50, "total_reach": 50, "engagement_rate": 10.0}


def test_insights_page_and_api(connected, monkeypatch) -> None:
    monkeypatch.setattr(
        meta_client,
        "get_media_insights",
        lambda media_id, token, media_type: {"engagement": 7, "reach": 20, "views": 20, "saved": 1, "impressions": 0},
    )
    monkeypatch.setattr(
        youtube_client,
        "get_channel_analytics",
        lambda channel_id, token: {"subscriberCount": "9", "viewCount": "300", "videoCount": "4"},
    )
    response = client.get("/insights")
    assert response.status_code == 200
    assert "Insights for @insta" in response.text
    assert "300 views" in response.text

    body = client.get("/api/insights").json()
    assert [m["id"] for m in body["media"]] == ["m1", "m2"]
    assert body["insights"]["m2"]["engagement"] == 7


@pytest.fixture
def google_unreachable(monkeypatch):
    with get_session() as session:
        accounts.upsert_youtube_account(
            session,
            {"id": "UC2", "title": "Expired Channel"},
            {"access_token": "old", "refresh_token": "rt", "expires_at": utc_now() - timedelta(minutes=5)},
        )

    def unreachable(method, url, **kwargs):
        raise httpx.ConnectError("network down")

    monkeypatch.setattr(youtube_client, "_request", unreachable)


def test_comments_page_survives_refresh_outage(google_unreachable) -> None:
    response = client.get("/comments")
    assert response.status_code == 200


def test_insights_page_survives_refresh_outage(google_unreachable) -> None:
    response = client.get("/insights")
    assert response.status_code == 200
    assert "Expired Channel" in response.text
    assert "Channel statistics unavailable." in response.text
