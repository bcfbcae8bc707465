"""
Analytics Service — イベントコレクター (Event Collector)

UI の操作イベントをバッファし、まとめてインジェスト API へ送るクライアント。
フロントエンドのトラッキングフックと同じセッション規則に従う:

  - 30 分操作が無ければ新しいセッションを開始し session_start を送る
  - pageView 等は 300ms 以内の連続発火を 1 件にまとめる（デバウンス）
  - 管理者ユーザーはトラッキングしない
  - session_end は 1 秒を超えたセッションだけ送る

送信失敗はログに残して捨てる（トラッキングで利用者の操作を妨げない）。
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import httpx

logger = logging.getLogger(__name__)

SESSION_TIMEOUT = timedelta(minutes=30)
DEBOUNCE_WINDOW = timedelta(milliseconds=300)
MIN_SESSION_END = timedelta(seconds=1)
DEBOUNCED_EVENTS = frozenset(
    {"pageView", "modal_open", "modal_close", "navigation", "logo_click"}
)
TRACK_PATH = "/api/analytics/track"


class EventCollector:
    """インジェスト API へイベントを送るバッファ付きクライアント"""

    def __init__(
        self,
        base_url: str,
        user_id: str = "anonymous",
        user_role: str = "anonymous",
        batch_size: int = 20,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.user_role = user_role
        self.batch_size = batch_size
        self.client = client or httpx.AsyncClient(timeout=10.0)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.session_id: str | None = None
        self.session_start: datetime | None = None
        self.last_activity: datetime | None = None
        self.buffer: list[dict] = []
        self._buffered_at: list[datetime] = []

    @property
    def is_admin(self) -> bool:
        return self.user_role == "admin"

    def _session_expired(self, now: datetime) -> bool:
        return self.last_activity is None or now - self.last_activity >= SESSION_TIMEOUT

    def start_session(self) -> str:
        """有効なセッションがあれば継続し、無ければ新しく開始する。"""
        now = self.clock()
        if self.session_id and not self._session_expired(now):
            self.last_activity = now
            return self.session_id

        self.session_id = str(uuid.uuid4())
        self.session_start = now
        self.last_activity = now
        logger.info("Started analytics session %s", self.session_id)
        if not self.is_admin:
            self._enqueue("session_start", {"isNewSession": True}, now)
        return self.session_id

    def _payload(self, event_type: str, event_data: dict, now: datetime) -> dict:
        return {
            "sessionId": self.session_id,
            "userId": self.user_id,
            "eventType": event_type,
            "eventData": {**event_data, "timestamp": now.isoformat()},
            "sessionData": {
                "startTime": self.session_start.isoformat(),
                "endTime": now.isoformat(),
                "duration": int((now - self.session_start).total_seconds() * 1000),
                "isActive": True,
                "lastActivity": now.isoformat(),
            },
            "userContext": {
                "isLoggedIn": self.user_id != "anonymous",
                "userRole": self.user_role,
                "sessionId": self.session_id,
            },
        }

    def _enqueue(self, event_type: str, event_data: dict, now: datetime) -> None:
        payload = self._payload(event_type, event_data, now)
        if (
            event_type in DEBOUNCED_EVENTS
            and self.buffer
            and self.buffer[-1]["eventType"] == event_type
            and now - self._buffered_at[-1] < DEBOUNCE_WINDOW
        ):
            self.buffer[-1] = payload
            self._buffered_at[-1] = now
            return
        self.buffer.append(payload)
        self._buffered_at.append(now)

    async def track(self, event_type: str, event_data: dict | None = None) -> bool:
        """
        イベントをバッファに積む。

        管理者の場合は何もせず False を返す。
        バッファが batch_size に達したら自動で flush する。
        """
        if self.is_admin:
            logger.debug("Admin user - tracking disabled")
            return False

        now = self.clock()
        if self._session_expired(now):
            self.start_session()
        self.last_activity = now
        self._enqueue(event_type, event_data or {}, now)

        if len(self.buffer) >= self.batch_size:
            await self.flush()
        return True

    def end_session(self) -> bool:
        """1 秒を超えたセッションなら session_end を積む。"""
        if not self.session_id or self.is_admin:
            return False
        now = self.clock()
        duration = now - self.session_start
        if duration <= MIN_SESSION_END:
            return False
        self._enqueue(
            "session_end", {"duration": int(duration.total_seconds() * 1000)}, now
        )
        return True

    async def _post(self, payload: dict) -> dict:
        resp = await self.client.post(f"{self.base_url}{TRACK_PATH}", json=payload)
        resp.raise_for_status()
        return resp.json()

    async def flush(self) -> dict:
        """バッファ内のイベントを並列送信し、結果の件数を返す。"""
        pending, self.buffer, self._buffered_at = self.buffer, [], []
        if not pending:
            return {"sent": 0, "filtered": 0, "failed": 0}

        results = await asyncio.gather(
            *(self._post(p) for p in pending), return_exceptions=True
        )
        stats = {"sent": 0, "filtered": 0, "failed": 0}
        for payload, result in zip(pending, results):
            if isinstance(result, Exception):
                stats["failed"] += 1
                logger.warning(
                    "Failed to send %s event: %s", payload["eventType"], result
                )
            elif isinstance(result, dict) and result.get("filtered"):
                stats["filtered"] += 1
            else:
                stats["sent"] += 1
        return stats

    async def aclose(self) -> None:
        await self.flush()
        await self.client.aclose()
