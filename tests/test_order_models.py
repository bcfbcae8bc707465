from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from services.order.app.models import (
    Currency,
    OrderItem,
    OrderPaymentStatus,
    OrderStatus,
    Payment,
    PaymentType,
    attachment_url,
)
from services.order.app.queries import row_to_order, row_to_payment

CREATED = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def item(**overrides):
    data = {"length": 1000, "price": 49.0, "contentType": "artykul", "language": "pol"}
    data.update(overrides)
    return data


def test_order_item_accepts_allowed_values():
    parsed = OrderItem(**item(length=3000, language="eng"))
    assert parsed.length == 3000
    assert parsed.guidelines == ""


@pytest.mark.parametrize("overrides", [{"length": 123}, {"language": "xx"}])
def test_order_item_rejects_unknown_values(overrides):
    with pytest.raises(ValidationError):
        OrderItem(**item(**overrides))


def test_payment_defaults_and_aliases():
    payment = Payment(
        id="p1",
        user="u1",
        amount=10,
        amountPLN=43.2,
        paidAmount=10,
        currency="USD",
        type="top_up",
    )
    assert payment.currency == Currency.USD
    assert payment.type == PaymentType.TOP_UP
    assert payment.applied_discount == 0
    assert payment.model_dump(by_alias=True)["amountPLN"] == 43.2


def test_attachment_url():
    assert attachment_url("bucket", "/orders/o1.pdf") == "https://bucket.s3.amazonaws.com/orders/o1.pdf"


def test_row_to_order_fills_attachment_urls():
    row = SimpleNamespace(
        id=7,
        user_id=3,
        order_number=1001,
        items='[{"length": 500, "price": 20, "contentType": "post", "language": "eng"}]',
        total_price="20.00",
        total_price_original=None,
        applied_discount=None,
        exchange_rate=None,
        currency="PLN",
        status="w trakcie",
        payment_status="paid",
        declared_delivery_date=CREATED,
        actual_delivery_date=None,
        attachments={"pdf": {"filename": "a.pdf", "key": "orders/a.pdf"}},
        user_attachments=None,
        created_at=CREATED,
        abandoned_cart_offered_at=None,
        abandoned_cart_dismissed_at=None,
    )
    order = row_to_order(row, "smart-edu")

    assert order.id == "7"
    assert order.user == "3"
    assert order.status == OrderStatus.IN_PROGRESS
    assert order.payment_status == OrderPaymentStatus.PAID
    assert order.items[0].length == 500
    assert order.attachments.pdf.url == "https://smart-edu.s3.amazonaws.com/orders/a.pdf"
    assert order.model_dump(by_alias=True, mode="json")["totalPrice"] == 20.0


def test_row_to_payment():
    row = SimpleNamespace(
        id=1,
        user_id=3,
        amount=100,
        amount_pln=100,
        paid_amount=80,
        currency="PLN",
        exchange_rate=None,
        type="order_payment",
        status="completed",
        applied_discount=None,
        related_order_id=7,
        stripe_session_id="cs_1",
        metadata='{"source": "checkout"}',
        created_at=CREATED,
    )
    payment = row_to_payment(row)
    assert payment.related_order == "7"
    assert payment.applied_discount == 0
    assert payment.metadata == {"source": "checkout"}
