"""
Analytics Service — 集計ビュー (Aggregation Views)

管理画面のチャート / テーブルが表示する形へ、集計済みデータを変換する。
副作用なし・I/O なし。
"""

import math
from datetime import datetime, timezone

from .events import HOME_TRACKING_EVENTS
from .gate import parse_timestamp

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

PERFORMANCE_KEYS = (
    "loadTime",
    "renderTime",
    "networkLatency",
    "firstPaint",
    "firstContentfulPaint",
)


def activity_overview(records: list[dict]) -> list[dict]:
    """
    イベント種別ごとの件数（円グラフ用）。

    ホーム画面の細かなトラッキング種別は homeTracking に 1 つにまとめる。
    並びは各カテゴリが最初に現れた順。
    """
    counts: dict[str, int] = {}
    for record in records:
        event_type = record.get("eventType")
        category = "homeTracking" if event_type in HOME_TRACKING_EVENTS else event_type
        counts[category] = counts.get(category, 0) + 1
    return [{"name": name, "value": value} for name, value in counts.items()]


def format_metric_value(value: float) -> str:
    if value < 1000:
        return f"{value:.2f}ms"
    return f"{value / 1000:.2f}s"


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and not math.isnan(value)
    )


def performance_metrics(records: list[dict]) -> dict:
    """
    パフォーマンス指標ごとの平均値。

    数値でない値・NaN は無視する。サンプルが 0 件の指標は "N/A"。
    """
    acc = {key: {"sum": 0.0, "count": 0} for key in PERFORMANCE_KEYS}
    for record in records:
        for key, value in (record.get("performanceMetrics") or {}).items():
            if key in acc and _is_number(value):
                acc[key]["sum"] += value
                acc[key]["count"] += 1

    return {
        key: {
            "average": metric["sum"] / metric["count"] if metric["count"] else None,
            "display": (
                format_metric_value(metric["sum"] / metric["count"])
                if metric["count"]
                else "N/A"
            ),
            "count": metric["count"],
        }
        for key, metric in acc.items()
    }


def summary_metrics(data: dict) -> list[dict]:
    """集計済みの値をそのままカードに載せる。"""
    data = data or {}
    return [
        {
            "title": "Aktywni Użytkownicy",
            "value": data.get("activeUsers") or 0,
            "description": "W ostatnich 24h",
        },
        {
            "title": "Sesje",
            "value": data.get("totalSessions") or 0,
            "description": "W tym miesiącu",
        },
        {"title": "Średni Czas Sesji", "value": f"{data.get('avgSessionTime') or 0}min"},
        {"title": "Współczynnik Odrzuceń", "value": f"{data.get('bounceRate') or 0}%"},
    ]


def _as_datetime(value) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return parse_timestamp(value)


def sessions_table(
    sessions: list[dict], page_size: int | None = None, page: int = 1
) -> list[dict]:
    """
    セッション一覧テーブルの行。

    並び順は startTime の降順のみ。ページングは単純なスライス。
    """
    ordered = sorted(
        sessions,
        key=lambda s: _as_datetime(s.get("startTime")) or _EPOCH,
        reverse=True,
    )
    if page_size:
        start = (max(page, 1) - 1) * page_size
        ordered = ordered[start:start + page_size]

    rows = []
    for session in ordered:
        start = _as_datetime(session.get("startTime"))
        end = _as_datetime(session.get("endTime"))
        user = session.get("user") or {}
        rows.append(
            {
                "id": session.get("_id"),
                "userName": user.get("name") or "Nieznany",
                "userEmail": user.get("email"),
                "startTime": start.strftime("%d.%m.%Y %H:%M:%S") if start else None,
                "durationSeconds": (
                    round((end - start).total_seconds()) if start and end else None
                ),
                "eventCount": session.get("eventCount", 0),
            }
        )
    return rows
