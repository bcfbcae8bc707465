"""
Analytics Service — クエリハンドラ (Read 側)

user_activity から行を読み出し、sessions / metrics / views の
純粋関数で管理画面向けの形に集計して返す。
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import event_store, metrics, sessions, views


async def get_dashboard_metrics(session: AsyncSession, time_range: str) -> dict:
    """直近 time_range のアクティブユーザー数・セッション数など"""
    since = datetime.now(timezone.utc) - timedelta(
        milliseconds=metrics.time_range_ms(time_range)
    )
    result = await session.execute(
        text("""
            SELECT COUNT(DISTINCT user_id) AS active_users,
                   COUNT(DISTINCT session_id) AS total_sessions,
                   AVG((session_data->>'duration')::float) AS avg_duration,
                   COUNT(*) AS total_events
            FROM user_activity
            WHERE timestamp >= :since
        """),
        {"since": since},
    )
    row = result.fetchone()
    bounced = (
        await session.execute(
            text("""
                SELECT COUNT(*) FROM (
                    SELECT session_id FROM user_activity
                    WHERE timestamp >= :since
                    GROUP BY session_id
                    HAVING COUNT(*) = 1
                ) AS single_event_sessions
            """),
            {"since": since},
        )
    ).scalar_one()

    total_sessions = row.total_sessions or 0
    return {
        "activeUsers": row.active_users or 0,
        "totalSessions": total_sessions,
        "avgSessionTime": round((row.avg_duration or 0) / 60000, 1),
        "totalEvents": row.total_events or 0,
        "bounceRate": round(bounced / total_sessions * 100, 1) if total_sessions else 0,
    }


async def list_sessions(
    session: AsyncSession,
    user_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    sort_field: str = "startTime",
    sort_direction: str = "desc",
) -> list[dict]:
    rows = await event_store.load_activity_rows(session, user_id, start, end)
    users = await event_store.load_users(session, sessions.referenced_user_ids(rows))
    return sessions.aggregate_sessions(rows, sort_field, sort_direction, users)


async def list_conversion_sessions(
    session: AsyncSession, start: datetime, end: datetime
) -> dict:
    rows = await event_store.load_activity_rows(
        session, start=start, end=end, event_prefix="conversion_"
    )
    users = await event_store.load_users(session, sessions.referenced_user_ids(rows))
    return sessions.aggregate_conversion_sessions(rows, users)


async def get_conversion_analytics(
    session: AsyncSession, start: datetime, end: datetime
) -> dict:
    rows = await event_store.load_activity_rows(session, start=start, end=end)
    return metrics.conversion_summary(rows)


async def get_dashboard_views(session: AsyncSession, time_range: str) -> dict:
    """管理画面ダッシュボードのカード・チャート・テーブルを 1 回で返す。"""
    since = datetime.now(timezone.utc) - timedelta(
        milliseconds=metrics.time_range_ms(time_range)
    )
    summary = await get_dashboard_metrics(session, time_range)
    rows = await event_store.load_activity_rows(session, start=since)
    users = await event_store.load_users(session, sessions.referenced_user_ids(rows))
    records = [
        {"eventType": r["event_type"], "performanceMetrics": r["performance_metrics"]}
        for r in rows
    ]
    return {
        "summary": views.summary_metrics(summary),
        "activity": views.activity_overview(records),
        "performance": views.performance_metrics(records),
        "sessions": views.sessions_table(
            sessions.aggregate_sessions(rows, users=users), page_size=10
        ),
    }
