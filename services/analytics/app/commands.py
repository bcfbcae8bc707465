"""
Analytics Service — コマンドハンドラ (Write 側)

セッションゲートを通過したイベントを保存し、
Redis Pub/Sub の activity_events チャネルへ発行する。
"""

import json
import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from . import event_store
from .events import TrackActivity
from .sources import detect_device

logger = logging.getLogger(__name__)

ACTIVITY_CHANNEL = "activity_events"


def build_activity(
    activity: TrackActivity,
    query: dict | None = None,
    headers: dict | None = None,
    client_ip: str | None = None,
) -> dict:
    """
    リクエストから保存用のレコードを組み立てる。

    - キャンペーン情報はクエリパラメータを eventData より優先する
    - User-Agent から判定したブラウザ / OS / デバイスを deviceInfo に足す
    - Google ログインの新規ユーザーは登録コンバージョンとして記録する
    """
    query = query or {}
    headers = headers or {}
    event_data = dict(activity.event_data)
    device_info = (
        activity.device_info.model_dump(by_alias=True, exclude_none=True)
        if activity.device_info
        else {}
    )
    device_info.update(detect_device(activity.user_agent or headers.get("user-agent")))

    campaign = event_data.get("campaignData")
    if not isinstance(campaign, dict):
        campaign = {}
    event_data["campaignData"] = {
        "campaign": query.get("campaign") or campaign.get("campaign"),
        "source": query.get("source") or campaign.get("source"),
        "device": query.get("device") or campaign.get("device") or device_info.get("device"),
    }

    if (
        activity.event_type == "user_login"
        and event_data.get("component") == "GoogleLogin"
        and event_data.get("isNewUser")
    ):
        event_data["conversionData"] = {
            "type": "registration",
            "subtype": "google",
            "value": 0,
            "status": "completed",
            "source": event_data.get("source") or "google",
            "path": event_data.get("path"),
        }

    def _dump(model):
        return model.model_dump(by_alias=True, exclude_none=True, mode="json") if model else None

    return {
        "user_id": activity.user_id or "anonymous",
        "new_user_id": activity.new_user_id or activity.user_id or "anonymous",
        "session_id": activity.session_id,
        "event_type": activity.event_type,
        "event_data": event_data,
        "session_data": _dump(activity.session_data),
        "device_info": device_info,
        "performance_metrics": _dump(activity.performance_metrics),
        "user_context": _dump(activity.user_context),
        "user_agent": headers.get("user-agent") or activity.user_agent,
        "ip_address": headers.get("x-forwarded-for") or client_ip,
        "locale": headers.get("accept-language"),
        "timestamp": datetime.now(timezone.utc),
    }


async def track_activity(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    record: dict,
) -> int:
    """
    イベント保存コマンド

    1. user_login なら同セッションの過去イベントにユーザー遷移を記録
    2. user_activity に追記
    3. activity_events チャネルへ発行（失敗してもリクエストは成功させる）
    """
    previous_user_id = record["event_data"].get("previousUserId")
    if record["event_type"] == "user_login" and previous_user_id:
        await event_store.record_user_transition(
            session,
            record["session_id"],
            previous_user_id,
            record.get("new_user_id") or record["user_id"],
        )

    activity_id = await event_store.append_activity(session, record)

    if redis is not None:
        try:
            await redis.publish(ACTIVITY_CHANNEL, json.dumps({
                "event_type": record["event_type"],
                "data": {
                    "id": activity_id,
                    "user_id": record["user_id"],
                    "session_id": record["session_id"],
                    "timestamp": record["timestamp"].isoformat(),
                },
            }, default=str))
        except aioredis.RedisError:
            logger.exception("Failed to publish activity %s", activity_id)

    return activity_id
