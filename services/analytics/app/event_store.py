"""
Analytics Service — アクティビティストア

ユーザー操作イベントを PostgreSQL の user_activity テーブルに追記する。
ネストしたオブジェクト（eventData, sessionData 等）は JSONB 列に保存する。

    user_activity (
        id BIGSERIAL PRIMARY KEY,
        user_id TEXT, session_id TEXT, event_type TEXT,
        event_data JSONB, session_data JSONB, device_info JSONB,
        performance_metrics JSONB, user_context JSONB,
        user_agent TEXT, ip_address TEXT, locale TEXT,
        timestamp TIMESTAMPTZ
    )
"""

import json
from datetime import datetime, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

_JSON_COLUMNS = (
    "event_data",
    "session_data",
    "device_info",
    "performance_metrics",
    "user_context",
)


def _load_json(value):
    return json.loads(value) if isinstance(value, str) else value


def _row_to_dict(row) -> dict:
    data = dict(row._mapping)
    for column in _JSON_COLUMNS:
        if column in data:
            data[column] = _load_json(data[column])
    return data


async def append_activity(session: AsyncSession, activity: dict) -> int:
    """イベントを 1 件追記し、採番された ID を返す。"""
    result = await session.execute(
        text("""
            INSERT INTO user_activity
                (user_id, session_id, event_type, event_data, session_data,
                 device_info, performance_metrics, user_context,
                 user_agent, ip_address, locale, timestamp)
            VALUES
                (:user_id, :session_id, :event_type, :event_data, :session_data,
                 :device_info, :performance_metrics, :user_context,
                 :user_agent, :ip_address, :locale, :now)
            RETURNING id
        """),
        {
            "user_id": activity["user_id"],
            "session_id": activity["session_id"],
            "event_type": activity["event_type"],
            **{
                column: json.dumps(activity.get(column), default=str)
                for column in _JSON_COLUMNS
            },
            "user_agent": activity.get("user_agent"),
            "ip_address": activity.get("ip_address"),
            "locale": activity.get("locale"),
            "now": activity.get("timestamp") or datetime.now(timezone.utc),
        },
    )
    activity_id = result.scalar_one()
    await session.commit()
    return activity_id


async def record_user_transition(
    session: AsyncSession,
    session_id: str,
    previous_user_id: str,
    new_user_id: str,
) -> None:
    """
    ログインで匿名ユーザーが実ユーザーに切り替わったことを、
    同じセッションの過去イベントに記録する。
    """
    transition = {
        "fromUserId": previous_user_id,
        "toUserId": new_user_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    await session.execute(
        text("""
            UPDATE user_activity
            SET session_data = COALESCE(session_data, '{}'::jsonb)
                || jsonb_build_object('userTransitions', CAST(:transition AS jsonb))
            WHERE session_id = :session_id AND user_id = :previous_user_id
        """),
        {
            "transition": json.dumps(transition),
            "session_id": session_id,
            "previous_user_id": previous_user_id,
        },
    )


def _filters(
    user_id: str | None,
    event_type: str | None,
    start: datetime | None,
    end: datetime | None,
    event_prefix: str | None = None,
) -> tuple[str, dict]:
    clauses, params = [], {}
    if user_id:
        clauses.append("user_id = :user_id")
        params["user_id"] = user_id
    if event_type:
        clauses.append("event_type = :event_type")
        params["event_type"] = event_type
    if event_prefix:
        clauses.append("event_type LIKE :event_prefix")
        params["event_prefix"] = f"{event_prefix}%"
    if start is not None:
        clauses.append("timestamp >= :start")
        params["start"] = start
    if end is not None:
        clauses.append("timestamp <= :end")
        params["end"] = end
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


async def load_activity_rows(
    session: AsyncSession,
    user_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    event_prefix: str | None = None,
) -> list[dict]:
    """集約用にイベント行を時系列順で読み出す。"""
    where, params = _filters(user_id, None, start, end, event_prefix)
    result = await session.execute(
        text(f"""
            SELECT user_id, session_id, event_type, event_data, session_data,
                   device_info, performance_metrics, timestamp
            FROM user_activity
            {where}
            ORDER BY timestamp ASC, id ASC
        """),
        params,
    )
    return [_row_to_dict(row) for row in result.fetchall()]


async def load_events_page(
    session: AsyncSession,
    page: int,
    limit: int,
    user_id: str | None = None,
    event_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> tuple[list[dict], int]:
    """新しい順に 1 ページ分のイベントと総件数を返す。"""
    where, params = _filters(user_id, event_type, start, end)
    total = (
        await session.execute(text(f"SELECT COUNT(*) FROM user_activity {where}"), params)
    ).scalar_one()
    result = await session.execute(
        text(f"""
            SELECT * FROM user_activity
            {where}
            ORDER BY timestamp DESC
            LIMIT :limit OFFSET :offset
        """),
        {**params, "limit": limit, "offset": (page - 1) * limit},
    )
    events = []
    for row in result.fetchall():
        event = _row_to_dict(row)
        event["timestamp"] = event["timestamp"].isoformat() if event.get("timestamp") else None
        events.append(event)
    return events, total


async def load_users(session: AsyncSession, user_ids: set[str]) -> dict:
    """users リードモデルから名前とメールを引く。"""
    if not user_ids:
        return {}
    result = await session.execute(
        text("SELECT id, name, email FROM users WHERE id = ANY(:ids)"),
        {"ids": list(user_ids)},
    )
    return {
        str(row.id): {"name": row.name, "email": row.email}
        for row in result.fetchall()
    }
