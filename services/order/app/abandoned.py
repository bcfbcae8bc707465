"""
Order Service — 放棄カート (Abandoned Cart)

未払いのまま放置された直近の注文を見つけ、期間限定の割引オファーを作る。

  - 対象: paymentStatus=pending かつ status=pending の最新注文
  - 注文から 24 時間を過ぎたものは対象外
  - オファーは初回表示から 15 分間有効
  - 割引は元の金額の 20%
  - 利用者が閉じた (dismiss) オファーは force 指定時のみ再表示
  - 適用時、残高 (USD) で足りればその場で支払い済みにする
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from .models import Currency, Order, OrderPaymentStatus, OrderStatus

ABANDONED_CART_DISCOUNT = 20
OFFER_DURATION = timedelta(minutes=15)
MAX_ORDER_AGE = timedelta(hours=24)


class OfferUnavailable(Exception):
    """オファーを提示できない（注文なし / 期限切れ）"""


class OfferExpired(OfferUnavailable):
    """初回表示から 15 分を過ぎた"""


@dataclass(frozen=True)
class AbandonedOffer:
    order: Order
    offered_at: datetime
    expires_at: datetime
    original_price: float
    discounted_price: float
    dismissed: bool

    def to_dict(self, include_created_at: bool = True) -> dict:
        data = {
            "orderId": self.order.id,
            "orderNumber": self.order.order_number,
            "originalPrice": self.original_price,
            "discountedPrice": self.discounted_price,
            "discount": ABANDONED_CART_DISCOUNT,
            "currency": self.order.currency.value,
            "itemsCount": len(self.order.items),
            "items": [
                {
                    "topic": item.topic,
                    "length": item.length,
                    "contentType": item.content_type,
                }
                for item in self.order.items
            ],
            "expiresAt": self.expires_at.isoformat(),
        }
        if include_created_at:
            data["createdAt"] = (
                self.order.created_at.isoformat() if self.order.created_at else None
            )
        return data


@dataclass(frozen=True)
class AppliedDiscount:
    order: Order
    original_price: float
    discounted_price: float
    amount_usd: float | None
    paid_from_balance: bool


def is_abandoned(order: Order) -> bool:
    return (
        order.payment_status == OrderPaymentStatus.PENDING
        and order.status == OrderStatus.PENDING
    )


def discounted(price: float) -> float:
    return round(price * (1 - ABANDONED_CART_DISCOUNT / 100), 2)


def original_price(order: Order) -> float:
    if order.total_price_original is not None:
        return order.total_price_original
    return order.total_price


def check_window(order: Order, now: datetime) -> datetime | None:
    """表示済みのオファーの有効期限。期限切れなら OfferExpired。"""
    if order.abandoned_cart_offered_at is None:
        return None
    expires_at = order.abandoned_cart_offered_at + OFFER_DURATION
    if now > expires_at:
        raise OfferExpired("Offer expired")
    return expires_at


def evaluate_offer(order: Order | None, now: datetime) -> AbandonedOffer:
    """
    注文に対するオファーを作る。

    まだ一度も表示していなければ now を初回表示時刻とみなす
    （呼び出し側で abandonedCartOfferedAt を保存すること）。
    """
    if order is None or not is_abandoned(order):
        raise OfferUnavailable("No abandoned order found")
    if order.created_at and now - order.created_at > MAX_ORDER_AGE:
        raise OfferUnavailable("Abandoned order expired")

    expires_at = check_window(order, now) or now + OFFER_DURATION
    original = original_price(order)
    return AbandonedOffer(
        order=order,
        offered_at=order.abandoned_cart_offered_at or now,
        expires_at=expires_at,
        original_price=original,
        discounted_price=discounted(original),
        dismissed=order.abandoned_cart_dismissed_at is not None,
    )


def to_usd(order: Order, amount: float) -> float | None:
    """注文通貨の金額を USD に換算する。PLN で為替レートが無ければ None。"""
    if order.currency == Currency.USD:
        return amount
    if not order.exchange_rate:
        return None
    return round(amount / order.exchange_rate, 2)


def apply_discount(
    order: Order | None, balance_usd: float, now: datetime
) -> AppliedDiscount:
    """
    未払い注文に割引を適用する。

    期限切れは OfferExpired、対象の注文が無ければ OfferUnavailable。
    残高で割引後の金額を払えるなら paid_from_balance=True。
    """
    if order is None or order.payment_status != OrderPaymentStatus.PENDING:
        raise OfferUnavailable("Order not found or already paid")
    check_window(order, now)

    original = original_price(order)
    price = discounted(original)
    amount_usd = to_usd(order, price)
    return AppliedDiscount(
        order=order,
        original_price=original,
        discounted_price=price,
        amount_usd=amount_usd,
        paid_from_balance=(
            amount_usd is not None and max(balance_usd, 0) >= amount_usd
        ),
    )
