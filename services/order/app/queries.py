"""
Order Service — クエリハンドラ (Read 側)

ダッシュボードの注文履歴・支払い履歴と、放棄カート判定用の注文を返す。
"""

import json

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Order, Payment, attachment_url


def _json(value, default):
    if value is None:
        return default
    return json.loads(value) if isinstance(value, str) else value


def _with_url(attachment: dict | None, bucket: str) -> dict | None:
    """url が無くキーだけ保存されている添付ファイルに S3 の URL を補う。"""
    if not attachment:
        return attachment
    if not attachment.get("url") and attachment.get("key") and bucket:
        attachment = {**attachment, "url": attachment_url(bucket, attachment["key"])}
    return attachment


def row_to_order(row, bucket: str = "") -> Order:
    attachments = _json(row.attachments, {})
    for kind in ("pdf", "docx", "image"):
        attachments[kind] = _with_url(attachments.get(kind), bucket)
    attachments["other"] = [_with_url(a, bucket) for a in attachments.get("other") or []]

    return Order(
        id=str(row.id),
        user=str(row.user_id),
        order_number=row.order_number,
        items=_json(row.items, []),
        total_price=float(row.total_price),
        total_price_original=(
            float(row.total_price_original)
            if row.total_price_original is not None
            else None
        ),
        applied_discount=row.applied_discount or 0,
        exchange_rate=row.exchange_rate,
        currency=row.currency,
        status=row.status,
        payment_status=row.payment_status,
        declared_delivery_date=row.declared_delivery_date,
        actual_delivery_date=row.actual_delivery_date,
        attachments=attachments,
        user_attachments=[
            _with_url(a, bucket) for a in _json(row.user_attachments, [])
        ],
        created_at=row.created_at,
        abandoned_cart_offered_at=row.abandoned_cart_offered_at,
        abandoned_cart_dismissed_at=row.abandoned_cart_dismissed_at,
    )


def row_to_payment(row) -> Payment:
    return Payment(
        id=str(row.id),
        user=str(row.user_id),
        amount=float(row.amount),
        amount_pln=float(row.amount_pln),
        paid_amount=float(row.paid_amount),
        currency=row.currency,
        exchange_rate=row.exchange_rate,
        type=row.type,
        status=row.status,
        applied_discount=row.applied_discount or 0,
        related_order=str(row.related_order_id) if row.related_order_id else None,
        stripe_session_id=row.stripe_session_id,
        metadata=_json(row.metadata, None),
        created_at=row.created_at,
    )


async def get_order(
    session: AsyncSession, order_id: str, bucket: str = ""
) -> Order | None:
    result = await session.execute(
        text("SELECT * FROM orders WHERE id = :id"),
        {"id": order_id},
    )
    row = result.fetchone()
    return row_to_order(row, bucket) if row else None


async def list_orders(
    session: AsyncSession, user_id: str, bucket: str = ""
) -> list[Order]:
    """利用者の注文履歴（新しい順）"""
    result = await session.execute(
        text("""
            SELECT * FROM orders
            WHERE user_id = :user_id
            ORDER BY created_at DESC
        """),
        {"user_id": user_id},
    )
    return [row_to_order(row, bucket) for row in result.fetchall()]


async def list_payments(session: AsyncSession, user_id: str) -> list[Payment]:
    """利用者の支払い履歴（新しい順）"""
    result = await session.execute(
        text("""
            SELECT * FROM payments
            WHERE user_id = :user_id
            ORDER BY created_at DESC
        """),
        {"user_id": user_id},
    )
    return [row_to_payment(row) for row in result.fetchall()]


async def get_latest_pending_order(
    session: AsyncSession, user_id: str
) -> Order | None:
    """未払いのまま残っている最新の注文"""
    result = await session.execute(
        text("""
            SELECT * FROM orders
            WHERE user_id = :user_id
              AND payment_status = 'pending'
              AND status = 'pending'
            ORDER BY created_at DESC
            LIMIT 1
        """),
        {"user_id": user_id},
    )
    row = result.fetchone()
    return row_to_order(row) if row else None


async def get_pending_order(
    session: AsyncSession, user_id: str, order_id: str
) -> Order | None:
    """利用者自身の未払い注文"""
    result = await session.execute(
        text("""
            SELECT * FROM orders
            WHERE id = :id AND user_id = :user_id AND payment_status = 'pending'
        """),
        {"id": order_id, "user_id": user_id},
    )
    row = result.fetchone()
    return row_to_order(row) if row else None


async def get_account_balance(session: AsyncSession, user_id: str) -> float | None:
    """アカウント残高 (USD)。利用者が存在しなければ None"""
    result = await session.execute(
        text("SELECT account_balance FROM users WHERE id = :id"),
        {"id": user_id},
    )
    row = result.fetchone()
    if row is None:
        return None
    return float(row.account_balance or 0)
