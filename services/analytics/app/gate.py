"""
Analytics Service — セッションゲート (Session Gate)

開始直後（2 秒未満）のセッションから届いたアナリティクスイベントを、
ビジネスロジックに到達する前に落とす ASGI ミドルウェア。

  ブラウザ ──POST──▶ SessionGate ──▶ /api/analytics/track
                        │
                        └─ 短すぎるセッション → 200 {success, filtered}

判定ルール:
  - eventType == "session_start" は常に通す（セッションを確立する最初のイベント）
  - sessionData.startTime があり、経過時間 < 2000ms なら破棄（エラーではない）
  - それ以外（sessionData / startTime が無い、JSON でない等）はそのまま通す

startTime はクライアント申告値をそのまま信頼する。
"""

import json
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

MIN_SESSION_DURATION_MS = 2000
SESSION_START_EVENT = "session_start"


def parse_timestamp(value) -> datetime | None:
    """ISO-8601 文字列またはエポックミリ秒を UTC の datetime に変換する。"""
    try:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        if not isinstance(value, str) or not value:
            return None
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def should_filter(payload, now: datetime | None = None) -> bool:
    """
    リクエストボディを破棄すべきかを判定する。

    判定できない場合は常に False（通す）を返す。例外は投げない。
    """
    if not isinstance(payload, dict):
        return False
    if payload.get("eventType") == SESSION_START_EVENT:
        return False

    session_data = payload.get("sessionData")
    if not isinstance(session_data, dict):
        return False
    start_time = parse_timestamp(session_data.get("startTime"))
    if start_time is None:
        return False

    now = now or datetime.now(timezone.utc)
    duration_ms = (now - start_time).total_seconds() * 1000
    return duration_ms < MIN_SESSION_DURATION_MS


class SessionGateMiddleware:
    """
    指定パスへの POST にセッションゲートを適用する ASGI ミドルウェア。

    ボディは一度すべて読み取り、通過させる場合は下流へそのまま再送する。
    """

    def __init__(
        self,
        app: ASGIApp,
        paths: tuple[str, ...] = ("/api/analytics/track",),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.app = app
        self.paths = paths
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if (
            scope["type"] != "http"
            or scope["method"] != "POST"
            or scope["path"] not in self.paths
        ):
            await self.app(scope, receive, send)
            return

        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunks.append(message.get("body", b""))
            if not message.get("more_body", False):
                break
        body = b"".join(chunks)

        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None

        if should_filter(payload, self.clock()):
            logger.debug(
                "Filtered short-session event: %s", payload.get("eventType")
            )
            response = JSONResponse({"success": True, "filtered": True})
            await response(scope, receive, send)
            return

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)
