"""
Order Service — コマンドハンドラ (Write 側)

放棄カートオファーの表示・非表示・割引適用を注文に記録する。
状態を変えたら Redis Pub/Sub の order_events チャネルへ発行する。
"""

import json
import logging
from datetime import datetime, timezone

import redis.asyncio as aioredis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .abandoned import ABANDONED_CART_DISCOUNT, AppliedDiscount

logger = logging.getLogger(__name__)

ORDER_CHANNEL = "order_events"


async def _publish(redis: aioredis.Redis | None, event_type: str, data: dict) -> None:
    if redis is None:
        return
    try:
        await redis.publish(ORDER_CHANNEL, json.dumps({
            "event_type": event_type,
            "data": data,
        }, default=str))
    except aioredis.RedisError:
        logger.exception("Failed to publish %s", event_type)


async def mark_offer_shown(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    order_id: str,
    offered_at: datetime,
) -> None:
    """
    オファーの初回表示時刻を記録する。

    既に記録済みなら上書きしない（有効期限は初回表示から数える）。
    """
    result = await session.execute(
        text("""
            UPDATE orders
            SET abandoned_cart_offered_at = :offered_at
            WHERE id = :id AND abandoned_cart_offered_at IS NULL
        """),
        {"id": order_id, "offered_at": offered_at},
    )
    await session.commit()
    if result.rowcount:
        await _publish(redis, "AbandonedCartOffered", {
            "order_id": order_id,
            "timestamp": offered_at.isoformat(),
        })


async def dismiss_offer(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    user_id: str,
    order_id: str,
) -> bool:
    """
    利用者がオファーを閉じた。

    注文は削除せず abandoned_cart_dismissed_at を立てるだけ。
    未払いの自分の注文でなければ何もしない。
    """
    now = datetime.now(timezone.utc)
    result = await session.execute(
        text("""
            UPDATE orders
            SET abandoned_cart_dismissed_at = :now
            WHERE id = :id AND user_id = :user_id AND payment_status = 'pending'
        """),
        {"id": order_id, "user_id": user_id, "now": now},
    )
    await session.commit()

    dismissed = bool(result.rowcount)
    if dismissed:
        await _publish(redis, "AbandonedCartDismissed", {
            "order_id": order_id,
            "user_id": user_id,
            "timestamp": now.isoformat(),
        })
    return dismissed


async def apply_discount(
    session: AsyncSession,
    redis: aioredis.Redis | None,
    user_id: str,
    applied: AppliedDiscount,
) -> float | None:
    """
    割引後の金額を注文に書き込む。

    残高で払える場合は注文を支払い済み・作業中にし、残高から差し引く。
    戻り値は差し引き後の残高（残高で払わなかった場合は None）。
    """
    params = {
        "id": applied.order.id,
        "price": applied.discounted_price,
        "discount": ABANDONED_CART_DISCOUNT,
    }
    if applied.paid_from_balance:
        await session.execute(
            text("""
                UPDATE orders
                SET total_price = :price, applied_discount = :discount,
                    payment_status = 'paid', status = 'w trakcie'
                WHERE id = :id
            """),
            params,
        )
        result = await session.execute(
            text("""
                UPDATE users SET account_balance = account_balance - :amount
                WHERE id = :user_id
                RETURNING account_balance
            """),
            {"amount": applied.amount_usd, "user_id": user_id},
        )
        remaining = float(result.scalar_one())
    else:
        await session.execute(
            text("""
                UPDATE orders
                SET total_price = :price, applied_discount = :discount
                WHERE id = :id
            """),
            params,
        )
        remaining = None
    await session.commit()

    await _publish(redis, "AbandonedCartDiscountApplied", {
        "order_id": applied.order.id,
        "user_id": user_id,
        "total_price": applied.discounted_price,
        "paid_from_balance": applied.paid_from_balance,
    })
    return remaining
