import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from services.analytics.app.collector import EventCollector


class FakeClock:
    def __init__(self):
        self.now = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sent():
    return []


def make_collector(clock, sent, handler=None, **kwargs):
    def default_handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "activityId": len(sent)})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler or default_handler))
    return EventCollector("http://analytics", client=client, clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_first_event_starts_session(clock, sent):
    """最初のイベントで session_start が先に積まれる"""
    collector = make_collector(clock, sent, user_id="u1")
    clock.advance(seconds=3)
    await collector.track("pageView", {"path": "/"})
    stats = await collector.flush()

    assert stats == {"sent": 2, "filtered": 0, "failed": 0}
    assert sorted(e["eventType"] for e in sent) == ["pageView", "session_start"]
    assert {e["sessionId"] for e in sent} == {collector.session_id}
    assert all(e["userId"] == "u1" for e in sent)


@pytest.mark.asyncio
async def test_debounce_replaces_rapid_repeats(clock, sent):
    collector = make_collector(clock, sent)
    collector.start_session()
    await collector.track("pageView", {"path": "/a"})
    clock.advance(milliseconds=100)
    await collector.track("pageView", {"path": "/b"})
    clock.advance(milliseconds=500)
    await collector.track("pageView", {"path": "/c"})

    paths = [e["eventData"].get("path") for e in collector.buffer]
    assert paths == [None, "/b", "/c"]


@pytest.mark.asyncio
async def test_admin_is_not_tracked(clock, sent):
    collector = make_collector(clock, sent, user_role="admin")
    collector.start_session()
    assert await collector.track("pageView") is False
    assert collector.buffer == []
    assert collector.end_session() is False


@pytest.mark.asyncio
async def test_session_expires_after_inactivity(clock, sent):
    collector = make_collector(clock, sent)
    first = collector.start_session()
    clock.advance(minutes=31)
    await collector.track("click")

    assert collector.session_id != first
    assert [e["eventType"] for e in collector.buffer][-2:] == ["session_start", "click"]


@pytest.mark.asyncio
async def test_end_session_requires_more_than_one_second(clock, sent):
    collector = make_collector(clock, sent)
    collector.start_session()
    clock.advance(milliseconds=800)
    assert collector.end_session() is False
    clock.advance(milliseconds=1200)
    assert collector.end_session() is True
    assert collector.buffer[-1]["eventType"] == "session_end"
    assert collector.buffer[-1]["eventData"]["duration"] == 2000


@pytest.mark.asyncio
async def test_auto_flush_at_batch_size(clock, sent):
    collector = make_collector(clock, sent, batch_size=3)
    collector.start_session()
    await collector.track("click")
    assert sent == []
    await collector.track("scroll")
    assert len(sent) == 3
    assert collector.buffer == []


@pytest.mark.asyncio
async def test_flush_counts_filtered_and_failed(clock, sent):
    def handler(request: httpx.Request) -> httpx.Response:
        event_type = json.loads(request.content)["eventType"]
        if event_type == "session_start":
            return httpx.Response(200, json={"success": True, "activityId": 1})
        if event_type == "click":
            return httpx.Response(200, json={"success": True, "filtered": True})
        return httpx.Response(500, json={"success": False})

    collector = make_collector(clock, sent, handler=handler)
    collector.start_session()
    await collector.track("click")
    await collector.track("scroll")

    assert await collector.flush() == {"sent": 1, "filtered": 1, "failed": 1}
    assert await collector.flush() == {"sent": 0, "filtered": 0, "failed": 0}
    await collector.aclose()


@pytest.mark.asyncio
async def test_flush_tolerates_non_object_response(clock, sent):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["ok"])

    collector = make_collector(clock, sent, handler=handler)
    collector.start_session()
    await collector.track("click")

    assert await collector.flush() == {"sent": 2, "filtered": 0, "failed": 0}
