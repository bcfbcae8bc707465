"""
Analytics Service — イベント定義

ブラウザから送られるユーザー操作イベント (UserActivity) のスキーマ。
ワイヤ形式はフロントエンドに合わせて camelCase、属性名は snake_case。
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

HOME_TRACKING_EVENTS = (
    "visibility",
    "engagement",
    "heroInteraction",
    "ctaClick",
    "featureHover",
    "serviceInteraction",
)

PAYMENT_CONVERSION_EVENTS = ("conversion_payment_top_up", "conversion_payment_order")
REGISTRATION_CONVERSION_EVENTS = (
    "conversion_registration_standard",
    "conversion_registration_google",
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SessionData(_WireModel):
    """クライアントが追跡しているセッションの状態"""
    start_time: datetime | None = Field(None, alias="startTime")
    end_time: datetime | None = Field(None, alias="endTime")
    duration: float | None = None
    is_active: bool | None = Field(None, alias="isActive")
    last_activity: datetime | None = Field(None, alias="lastActivity")
    first_referrer: str | None = Field(None, alias="firstReferrer")
    referrer: str | None = None
    landing_page: str | None = Field(None, alias="landingPage")


class PerformanceMetrics(_WireModel):
    load_time: float | None = Field(None, alias="loadTime")
    render_time: float | None = Field(None, alias="renderTime")
    network_latency: float | None = Field(None, alias="networkLatency")
    memory_usage: float | None = Field(None, alias="memoryUsage")
    first_paint: float | None = Field(None, alias="firstPaint")
    first_contentful_paint: float | None = Field(None, alias="firstContentfulPaint")


class DeviceInfo(_WireModel):
    screen_resolution: str | None = Field(None, alias="screenResolution")
    viewport_size: str | None = Field(None, alias="viewportSize")
    color_depth: int | None = Field(None, alias="colorDepth")
    time_zone: str | None = Field(None, alias="timeZone")
    browser: str | None = None
    os: str | None = None
    device: str | None = None
    language: str | None = None


class UserContext(_WireModel):
    is_logged_in: bool | None = Field(None, alias="isLoggedIn")
    user_role: str | None = Field(None, alias="userRole")
    visit_count: int | None = Field(None, alias="visitCount")
    is_returning_user: bool | None = Field(None, alias="isReturningUser")
    is_admin: bool | None = Field(None, alias="isAdmin")
    referrer: str | None = None
    landing_page: str | None = Field(None, alias="landingPage")


class TrackActivity(_WireModel):
    """/api/analytics/track に POST される 1 件のイベント"""
    session_id: str = Field(..., alias="sessionId", min_length=1)
    user_id: str = Field("anonymous", alias="userId")
    new_user_id: str | None = Field(None, alias="newUserId")
    event_type: str = Field(..., alias="eventType", min_length=1)
    event_data: dict = Field(default_factory=dict, alias="eventData")
    session_data: SessionData | None = Field(None, alias="sessionData")
    device_info: DeviceInfo | None = Field(None, alias="deviceInfo")
    performance_metrics: PerformanceMetrics | None = Field(
        None, alias="performanceMetrics"
    )
    user_context: UserContext | None = Field(None, alias="userContext")
    user_agent: str | None = Field(None, alias="userAgent")

    @property
    def is_admin(self) -> bool:
        ctx = self.user_context
        return bool(ctx and (ctx.is_admin or ctx.user_role == "admin"))
