from datetime import datetime, timedelta, timezone

import pytest

from services.order.app.abandoned import (
    OfferExpired,
    OfferUnavailable,
    apply_discount,
    discounted,
    evaluate_offer,
)
from services.order.app.models import Order

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_order(**overrides) -> Order:
    data = {
        "id": "o1",
        "user": "u1",
        "orderNumber": 1042,
        "items": [
            {
                "topic": "Rewolucja francuska",
                "length": 2000,
                "price": 99.99,
                "contentType": "referat",
                "language": "pol",
            }
        ],
        "totalPrice": 99.99,
        "declaredDeliveryDate": NOW + timedelta(days=3),
        "createdAt": NOW - timedelta(hours=2),
    }
    data.update(overrides)
    return Order(**data)


def test_discount_is_twenty_percent():
    assert discounted(100) == 80
    assert discounted(99.99) == 79.99


def test_first_display_starts_offer_window():
    """初回表示では now から 15 分の有効期限"""
    offer = evaluate_offer(make_order(), NOW)
    data = offer.to_dict()

    assert offer.offered_at == NOW
    assert data["expiresAt"] == (NOW + timedelta(minutes=15)).isoformat()
    assert data["originalPrice"] == 99.99
    assert data["discountedPrice"] == 79.99
    assert data["discount"] == 20
    assert data["itemsCount"] == 1
    assert data["items"][0]["contentType"] == "referat"
    assert "createdAt" in data


def test_original_price_preferred():
    offer = evaluate_offer(make_order(totalPriceOriginal=150), NOW)
    assert offer.original_price == 150
    assert offer.discounted_price == 120


def test_offer_expires_fifteen_minutes_after_first_display():
    order = make_order(abandonedCartOfferedAt=NOW - timedelta(minutes=16))
    with pytest.raises(OfferUnavailable):
        evaluate_offer(order, NOW)


def test_offer_still_valid_within_window():
    order = make_order(abandonedCartOfferedAt=NOW - timedelta(minutes=10))
    offer = evaluate_offer(order, NOW)
    assert offer.expires_at == NOW + timedelta(minutes=5)


def test_order_older_than_a_day_is_skipped():
    with pytest.raises(OfferUnavailable):
        evaluate_offer(make_order(createdAt=NOW - timedelta(hours=25)), NOW)


def test_paid_or_missing_order():
    with pytest.raises(OfferUnavailable):
        evaluate_offer(None, NOW)
    with pytest.raises(OfferUnavailable):
        evaluate_offer(make_order(paymentStatus="paid"), NOW)


def test_dismissed_offer_created_at_depends_on_view():
    offer = evaluate_offer(make_order(abandonedCartDismissedAt=NOW), NOW)
    assert offer.dismissed is True
    assert "createdAt" not in offer.to_dict(include_created_at=False)
    assert offer.to_dict()["createdAt"] == (NOW - timedelta(hours=2)).isoformat()


# ── 割引の適用 ──────────────────────────────────


def test_apply_paid_from_balance_in_usd():
    order = make_order(currency="USD", totalPriceOriginal=50)
    applied = apply_discount(order, balance_usd=45, now=NOW)

    assert applied.discounted_price == 40
    assert applied.amount_usd == 40
    assert applied.paid_from_balance is True


def test_apply_converts_pln_with_exchange_rate():
    order = make_order(totalPrice=100, exchangeRate=4)
    applied = apply_discount(order, balance_usd=10, now=NOW)

    assert applied.discounted_price == 80
    assert applied.amount_usd == 20
    assert applied.paid_from_balance is False


def test_apply_without_exchange_rate_needs_checkout():
    applied = apply_discount(make_order(totalPrice=100), balance_usd=1000, now=NOW)
    assert applied.amount_usd is None
    assert applied.paid_from_balance is False


def test_apply_after_offer_window_is_expired():
    order = make_order(abandonedCartOfferedAt=NOW - timedelta(minutes=20))
    with pytest.raises(OfferExpired):
        apply_discount(order, balance_usd=0, now=NOW)


def test_apply_to_paid_order_is_unavailable():
    with pytest.raises(OfferUnavailable) as exc:
        apply_discount(make_order(paymentStatus="paid"), balance_usd=0, now=NOW)
    assert not isinstance(exc.value, OfferExpired)
    with pytest.raises(OfferUnavailable):
        apply_discount(None, balance_usd=0, now=NOW)
