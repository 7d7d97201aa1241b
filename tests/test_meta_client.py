from urllib.parse import parse_qs, urlparse

import pytest

from crosspost import meta_client
from crosspost.errors import GraphAPIError, MediaProcessingError, OAuthError


@pytest.fixture(autouse=True)
def no_polling_delay(monkeypatch):
    monkeypatch.setattr(meta_client, "POLL_INTERVAL_SECONDS", 0)


def test_login_url_carries_pkce_challenge() -> None:
    url = meta_client.build_login_url("https://media.example.com/auth/callback", "challenge", "state-1")
    query = parse_qs(urlparse(url).query)
    assert url.startswith(f"https://www.facebook.com/{meta_client.API_VERSION}/dialog/oauth?")
    assert query["client_id"] == ["meta-app"]
    assert query["code_challenge"] == ["challenge"]
    assert query["code_challenge_method"] == ["S256"]
    assert query["state"] == ["state-1"]
    assert "instagram_content_publish" in query["scope"][0]


def test_login_url_requires_app_id(monkeypatch) -> None:
    monkeypatch.delenv("META_APP_ID", raising=False)
    with pytest.raises(OAuthError):
        meta_client.build_login_url("https://x/cb", "c", "s")


def test_exchange_code_sends_verifier_and_secret(monkeypatch) -> None:
    captured = {}

    def fake_get(path, params):
        captured["path"] = path
        captured["params"] = params
        return {"access_token": "user-token"}

    monkeypatch.setenv("META_APP_SECRET", "shh")
    monkeypatch.setattr(meta_client, "_get", fake_get)
    assert meta_client.exchange_code("code-1", "https://x/cb", "verifier-1") == "user-token"
    assert captured["path"] == "oauth/access_token"
    assert captured["params"]["code_verifier"] == "verifier-1"
    assert captured["params"]["client_secret"] == "shh"


def test_exchange_code_surfaces_graph_error(monkeypatch) -> None:
    monkeypatch.setattr(meta_client, "_get", lambda path, params: {"error": {"message": "bad code"}})
    with pytest.raises(OAuthError, match="bad code"):
        meta_client.exchange_code("code-1", "https://x/cb", "verifier-1")


def test_create_media_builds_reel_and_image_payloads(monkeypatch) -> None:
    payloads = []

    def fake_post(path, payload):
        payloads.append((path, payload))
        return {"id": "container-1"}

    monkeypatch.setattr(meta_client, "_post", fake_post)
    meta_client.create_media("ig-1", "tok", "https://cdn/v.mp4", "cap", is_reel=True, location_id="loc-9")
    meta_client.create_media("ig-1", "tok", "https://cdn/p.jpg", "cap", is_reel=False)

    (reel_path, reel), (_, image) = payloads
    assert reel_path == "ig-1/media"
    assert reel["media_type"] == "REELS"
    assert reel["video_url"] == "https://cdn/v.mp4"
    assert reel["location_id"] == "loc-9"
    assert image["media_type"] == "IMAGE"
    assert image["image_url"] == "https://cdn/p.jpg"
    assert "location_id" not in image


def test_create_media_error_includes_code(monkeypatch) -> None:
    monkeypatch.setattr(
        meta_client, "_post", lambda path, payload: {"error": {"code": 9004, "message": "Only photo or video"}}
    )
    with pytest.raises(GraphAPIError) as excinfo:
        meta_client.create_media("ig-1", "tok", "https://cdn/x", "cap", is_reel=False)
    assert excinfo.value.code == 9004
    assert "(9004)" in str(excinfo.value)


def test_publish_media_waits_until_finished(monkeypatch) -> None:
    statuses = iter(["IN_PROGRESS", "IN_PROGRESS", "FINISHED"])
    posts = []
    monkeypatch.setattr(meta_client, "_get", lambda path, params: {"status_code": next(statuses)})
    monkeypatch.setattr(meta_client, "_post", lambda path, payload: posts.append(path) or {"id": "media-1"})

    assert meta_client.publish_media("ig-1", "tok", "container-1") == {"id": "media-1"}
    assert posts == ["ig-1/media_publish"]


@pytest.mark.parametrize(
    "status, message",
    [("ERROR", "processing failed"), ("EXPIRED", "expired")],
)
def test_wait_for_media_ready_terminal_states(monkeypatch, status, message) -> None:
    monkeypatch.setattr(meta_client, "_get", lambda path, params: {"status_code": status})
    with pytest.raises(MediaProcessingError, match=message):
        meta_client.wait_for_media_ready("container-1", "tok")


def test_wait_for_media_ready_times_out(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(meta_client, "_get", lambda path, params: calls.append(path) or {"status_code": "IN_PROGRESS"})
    with pytest.raises(MediaProcessingError, match="timed out"):
        meta_client.wait_for_media_ready("container-1", "tok", max_attempts=3)
    assert len(calls) == 3


def test_insight_metrics_by_media_type() -> None:
    assert meta_client.insight_metrics("IMAGE").endswith("saved")
    assert "video_views" in meta_client.insight_metrics("REELS")
    assert meta_client.insight_metrics("STORY") == "engagement,impressions,reach"


def test_media_insights_values_and_views_fallback(monkeypatch) -> None:
    body = {
        "data": [
            {"name": "engagement", "values": [{"value": 12}]},
            {"name": "reach", "values": [{"value": 40}]},
            {"name": "saved", "values": [{"value": 2}]},
        ]
    }
    monkeypatch.setattr(meta_client, "_get", lambda path, params: body)
    insights = meta_client.get_media_insights("m-1", "tok", "IMAGE")
    assert insights == {"engagement": 12, "impressions": 0, "reach": 40, "saved": 2, "views": 40}


def test_media_insights_unsupported_media_is_not_available(monkeypatch) -> None:
    monkeypatch.setattr(meta_client, "_get", lambda path, params: {"error": {"code": 100, "message": "unsupported"}})
    insights = meta_client.get_media_insights("m-1", "tok", "IMAGE")
    assert set(insights.values()) == {meta_client.NOT_AVAILABLE}


def test_media_insights_other_errors_are_empty(monkeypatch) -> None:
    monkeypatch.setattr(meta_client, "_get", lambda path, params: {"error": {"code": 190, "message": "expired"}})
    assert meta_client.get_media_insights("m-1", "tok", "IMAGE") == {}


def test_reply_to_comment_posts_message(monkeypatch) -> None:
    captured = {}

    def fake_post(path, payload):
        captured.update(path=path, payload=payload)
        return {"id": "reply-1"}

    monkeypatch.setattr(meta_client, "_post", fake_post)
    assert meta_client.reply_to_comment("c-1", "Thanks!", "tok") == {"id": "reply-1"}
    assert captured["path"] == "c-1/replies"
    assert captured["payload"]["message"] == "Thanks!"
