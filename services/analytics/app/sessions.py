"""
Analytics Service — セッション集約

user_activity の行（1 行 = 1 イベント）を sessionId ごとにまとめ、
管理画面用のセッション一覧・コンバージョンセッション・ファネルを作る。

行は event_store.load_activity_rows が返す dict:
    {user_id, session_id, event_type, event_data, session_data,
     performance_metrics, device_info, timestamp}
"""

from datetime import datetime, timedelta

from .events import PAYMENT_CONVERSION_EVENTS, REGISTRATION_CONVERSION_EVENTS
from .sources import map_referrer_to_source

MIN_SESSION_DURATION = timedelta(seconds=1)
SORTABLE_FIELDS = ("startTime", "endTime", "eventCount", "duration")

ANONYMOUS_USER = {"name": "Anonymous User", "email": "anonymous"}
UNKNOWN_USER = {"name": "Unknown", "email": "unknown"}


def group_by_session(rows: list[dict]) -> dict[str, list[dict]]:
    """sessionId ごとに時系列順のイベント列を返す（セッションの出現順）。"""
    grouped: dict[str, list[dict]] = {}
    for row in sorted(rows, key=lambda r: r["timestamp"]):
        grouped.setdefault(row["session_id"], []).append(row)
    return grouped


def resolve_user(user_id: str, users: dict | None) -> dict:
    if user_id == "anonymous":
        return dict(ANONYMOUS_USER)
    return dict((users or {}).get(user_id) or UNKNOWN_USER)


def referenced_user_ids(rows: list[dict]) -> set[str]:
    """ユーザー情報の解決に必要な ID（匿名を除く）を集める。"""
    ids = set()
    for row in rows:
        ids.add(row["user_id"])
        previous = _previous_user_id(row.get("event_data") or {})
        if previous:
            ids.add(previous)
    ids.discard("anonymous")
    ids.discard(None)
    return ids


def _previous_user_id(event_data: dict) -> str | None:
    metadata = event_data.get("metadata") or {}
    return metadata.get("previousUserId") or event_data.get("previousUserId")


def _iso(value: datetime) -> str:
    return value.isoformat()


def _first_referrer(events: list[dict]) -> str:
    session_data = events[0].get("session_data") or {}
    referrer_data = session_data.get("referrerData") or {}
    return (
        referrer_data.get("firstReferrer")
        or session_data.get("firstReferrer")
        or (events[0].get("event_data") or {}).get("source")
        or "direct"
    )


def _source_details(events: list[dict]) -> dict:
    session_data = events[0].get("session_data") or {}
    utm = (session_data.get("referrerData") or {}).get("utmParams") or {}
    return {
        "source": map_referrer_to_source(_first_referrer(events)),
        "referrer": session_data.get("referrer") or "",
        "firstReferrer": session_data.get("firstReferrer") or "",
        "utmSource": utm.get("source") or "",
        "utmMedium": utm.get("medium") or "",
        "utmCampaign": utm.get("campaign") or "",
    }


def _event_summary(row: dict) -> dict:
    event_data = row.get("event_data") or {}
    session_data = row.get("session_data") or {}
    return {
        "eventType": row["event_type"],
        "component": event_data.get("component"),
        "path": event_data.get("path"),
        "action": event_data.get("action"),
        "timestamp": _iso(row["timestamp"]),
        "eventData": {
            "metadata": event_data.get("metadata"),
            "source": event_data.get("source"),
            "referrer": session_data.get("referrer"),
            "firstReferrer": session_data.get("firstReferrer"),
        },
        "performanceMetrics": row.get("performance_metrics"),
        "deviceInfo": row.get("device_info"),
        "userId": row["user_id"],
    }


def aggregate_sessions(
    rows: list[dict],
    sort_field: str = "startTime",
    sort_direction: str = "desc",
    users: dict | None = None,
) -> list[dict]:
    """
    イベント行をセッション単位に集約する。

    - startTime / endTime はイベント時刻の最小 / 最大
    - userId はセッション最後のイベントのユーザー（ログインで切り替わるため）
    - 1 秒未満のセッションは除外
    """
    if sort_field not in SORTABLE_FIELDS:
        sort_field = "startTime"

    sessions = []
    for session_id, events in group_by_session(rows).items():
        start, end = events[0]["timestamp"], events[-1]["timestamp"]
        if end - start < MIN_SESSION_DURATION:
            continue
        user_id = events[-1]["user_id"]
        transitions = [
            {
                "timestamp": _iso(e["timestamp"]),
                "previousUserId": _previous_user_id(e.get("event_data") or {}),
                "newUserId": e["user_id"],
            }
            for e in events
            if e["event_type"] == "user_login"
        ]
        sessions.append(
            {
                "_id": session_id,
                "sessionId": session_id,
                "userId": user_id,
                "startTime": start,
                "endTime": end,
                "duration": int((end - start).total_seconds() * 1000),
                "eventCount": len(events),
                "events": [_event_summary(e) for e in events],
                "userTransitions": transitions,
                "user": resolve_user(user_id, users),
                "sourceDetails": _source_details(events),
            }
        )

    sessions.sort(key=lambda s: s[sort_field], reverse=sort_direction == "desc")
    for s in sessions:
        s["startTime"] = _iso(s["startTime"])
        s["endTime"] = _iso(s["endTime"])
    return sessions


def classify_conversion(event_type: str) -> str:
    """conversion_* イベント名からコンバージョン種別を求める。"""
    if "google" in event_type:
        return "google"
    if "standard" in event_type:
        return "standard"
    if "top_up" in event_type:
        return "top_up"
    if "order" in event_type:
        return "order_payment"
    return "unknown"


def aggregate_conversion_sessions(
    rows: list[dict], users: dict | None = None
) -> dict:
    """conversion_* イベントを含むセッションを新しい順に返す。"""
    conversion_rows = [r for r in rows if r["event_type"].startswith("conversion_")]
    sessions = []
    for session_id, events in group_by_session(conversion_rows).items():
        first = events[0]
        event_data = first.get("event_data") or {}
        start, end = first["timestamp"], events[-1]["timestamp"]
        sessions.append(
            {
                "_id": session_id,
                "sessionId": session_id,
                "userId": first["user_id"],
                "startTime": start,
                "endTime": end,
                "conversionType": classify_conversion(first["event_type"]),
                "conversionValue": (event_data.get("conversionData") or {}).get(
                    "value"
                ),
                "source": event_data.get("source"),
                "path": event_data.get("path"),
                "eventCount": len(events),
                "deviceInfo": first.get("device_info"),
                "timeToConversion": int((end - start).total_seconds() * 1000),
                "user": resolve_user(first["user_id"], users),
            }
        )

    sessions.sort(key=lambda s: s["startTime"], reverse=True)
    for s in sessions:
        s["startTime"] = _iso(s["startTime"])
        s["endTime"] = _iso(s["endTime"])
    return {"sessions": sessions, "total": len(sessions)}


def funnel(rows: list[dict]) -> dict:
    """
    セッション → 登録 → 支払い のファネル。

    分母が 0 の場合は 1 として扱う（率は 0 になる）。
    """
    sessions: set[str] = set()
    registered: set[str] = set()
    paid: set[str] = set()
    for row in rows:
        sessions.add(row["session_id"])
        if row["event_type"] in REGISTRATION_CONVERSION_EVENTS:
            registered.add(row["session_id"])
        elif row["event_type"] in PAYMENT_CONVERSION_EVENTS:
            paid.add(row["session_id"])

    total = len(sessions)
    return {
        "totalSessions": total,
        "registrationRate": len(registered) / (total or 1) * 100,
        "paymentRate": len(paid) / (total or 1) * 100,
        "conversionRate": len(paid) / (len(registered) or 1) * 100,
    }
