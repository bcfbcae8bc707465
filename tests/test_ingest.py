from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from services.analytics.app import commands, main
from services.analytics.app.events import TrackActivity

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


class FakeSession:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, message))


def started(seconds_ago: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(seconds=seconds_ago)).isoformat()


@pytest.fixture
def stored(monkeypatch):
    records = []

    async def track_activity(session, redis, record):
        records.append(record)
        return len(records)

    monkeypatch.setattr(main, "async_session", FakeSession)
    monkeypatch.setattr(main.commands, "track_activity", track_activity)
    return records


@pytest.fixture
def client():
    return TestClient(main.app)


def test_track_stores_event(client, stored):
    resp = client.post(
        "/api/analytics/track?campaign=spring",
        json={
            "sessionId": "s1",
            "eventType": "pageView",
            "eventData": {"path": "/pl"},
            "sessionData": {"startTime": started(60)},
        },
        headers={"user-agent": CHROME_UA},
    )
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "activityId": 1}

    record = stored[0]
    assert record["user_id"] == "anonymous"
    assert record["event_data"]["campaignData"]["campaign"] == "spring"
    assert record["device_info"]["browser"] == "Chrome"


def test_short_session_never_reaches_store(client, stored):
    """開始 2 秒未満のイベントはゲートで落とされる"""
    resp = client.post(
        "/api/analytics/track",
        json={
            "sessionId": "s1",
            "eventType": "click",
            "sessionData": {"startTime": started(0.5)},
        },
    )
    assert resp.json() == {"success": True, "filtered": True}
    assert stored == []


def test_session_start_passes_gate(client, stored):
    resp = client.post(
        "/api/analytics/track",
        json={
            "sessionId": "s1",
            "eventType": "session_start",
            "sessionData": {"startTime": started(0)},
        },
    )
    assert resp.json()["activityId"] == 1


def test_non_object_campaign_data_is_ignored(client, stored):
    resp = client.post(
        "/api/analytics/track",
        json={
            "sessionId": "s1",
            "eventType": "pageView",
            "eventData": {"campaignData": "spring"},
            "sessionData": {"startTime": started(60)},
        },
    )
    assert resp.status_code == 200
    assert stored[0]["event_data"]["campaignData"]["campaign"] is None


def test_admin_is_skipped(client, stored):
    resp = client.post(
        "/api/analytics/track",
        json={
            "sessionId": "s1",
            "eventType": "pageView",
            "userContext": {"userRole": "admin"},
        },
    )
    assert resp.json()["message"] == "Admin user - tracking skipped"
    assert stored == []


def test_missing_session_id_is_rejected(client, stored):
    resp = client.post("/api/analytics/track", json={"eventType": "pageView"})
    assert resp.status_code == 422


def test_invalid_date_is_400(client, stored):
    resp = client.get("/api/analytics/conversions?startDate=not-a-date")
    assert resp.status_code == 400


def test_events_pagination(client, monkeypatch):
    captured = {}

    async def load_events_page(session, page, limit, user_id, event_type, start, end):
        captured.update(page=page, limit=limit, user_id=user_id, start=start)
        return [{"id": 1, "event_type": "pageView"}], 101

    monkeypatch.setattr(main, "async_session", FakeSession)
    monkeypatch.setattr(main.event_store, "load_events_page", load_events_page)
    body = client.get("/api/analytics/events?page=2&limit=50&userId=u1").json()

    assert body["data"]["pagination"] == {"total": 101, "page": 2, "pages": 3}
    assert captured == {"page": 2, "limit": 50, "user_id": "u1", "start": None}


def test_sessions_ignore_undefined_dates(client, monkeypatch):
    """フロントエンドが送る "undefined" は日付指定なしとして扱う"""
    captured = {}

    async def list_sessions(session, user_id, start, end, sort_field, sort_direction):
        captured.update(start=start, end=end, sort_field=sort_field)
        return []

    monkeypatch.setattr(main, "async_session", FakeSession)
    monkeypatch.setattr(main.queries, "list_sessions", list_sessions)
    resp = client.get(
        "/api/analytics/sessions?startDate=undefined&endDate=undefined&sortField=duration"
    )

    assert resp.json() == {"success": True, "data": []}
    assert captured == {"start": None, "end": None, "sort_field": "duration"}


# ── コマンド ────────────────────────────────────


def test_google_signup_records_conversion():
    activity = TrackActivity(
        sessionId="s1",
        userId="u1",
        eventType="user_login",
        eventData={"component": "GoogleLogin", "isNewUser": True, "path": "/login"},
    )
    record = commands.build_activity(activity)
    assert record["event_data"]["conversionData"]["subtype"] == "google"
    assert record["event_data"]["conversionData"]["source"] == "google"


@pytest.mark.asyncio
async def test_track_activity_records_transition_and_publishes(monkeypatch):
    transitions = []

    async def record_user_transition(session, session_id, previous, new):
        transitions.append((session_id, previous, new))

    async def append_activity(session, record):
        return 42

    monkeypatch.setattr(commands.event_store, "record_user_transition", record_user_transition)
    monkeypatch.setattr(commands.event_store, "append_activity", append_activity)

    activity = TrackActivity(
        sessionId="s1",
        userId="u1",
        eventType="user_login",
        eventData={"previousUserId": "anonymous"},
    )
    redis = FakeRedis()
    activity_id = await commands.track_activity(
        None, redis, commands.build_activity(activity)
    )

    assert activity_id == 42
    assert transitions == [("s1", "anonymous", "u1")]
    assert redis.published[0][0] == "activity_events"


@pytest.mark.asyncio
async def test_login_transition_targets_new_user_id(monkeypatch):
    transitions = []

    async def record_user_transition(session, session_id, previous, new):
        transitions.append((previous, new))

    async def append_activity(session, record):
        return 1

    monkeypatch.setattr(commands.event_store, "record_user_transition", record_user_transition)
    monkeypatch.setattr(commands.event_store, "append_activity", append_activity)

    activity = TrackActivity(
        sessionId="s1",
        userId="anonymous",
        newUserId="u1",
        eventType="user_login",
        eventData={"previousUserId": "anonymous"},
    )
    await commands.track_activity(None, None, commands.build_activity(activity))

    assert transitions == [("anonymous", "u1")]
