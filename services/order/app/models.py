"""
Order Service — 注文・支払いレコード定義

注文 (Order) と支払い (Payment) の永続化スキーマ。
ステータスは列挙値の所属チェックだけを行い、遷移ルールは持たない。
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

ALLOWED_LENGTHS = (100, 200, 300, 400, 500, 750, 1000, 1500, 2000, 2500, 3000)
ALLOWED_LANGUAGES = ("pol", "eng", "ger", "ukr", "fra", "esp", "ros", "por")


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "w trakcie"
    COMPLETED = "zakończone"
    CANCELLED = "anulowane"


class OrderPaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Currency(str, Enum):
    PLN = "PLN"
    USD = "USD"


class PaymentType(str, Enum):
    TOP_UP = "top_up"
    ORDER_PAYMENT = "order_payment"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Attachment(_Record):
    filename: str
    url: str | None = None
    upload_date: datetime | None = Field(None, alias="uploadDate")


class OrderAttachments(_Record):
    pdf: Attachment | None = None
    docx: Attachment | None = None
    image: Attachment | None = None
    other: list[Attachment] = Field(default_factory=list)


class OrderItem(_Record):
    """注文明細 (1 本の文章)"""
    topic: str | None = None
    length: int
    price: float
    content_type: str = Field(..., alias="contentType")
    language: str
    guidelines: str = ""
    content: str = ""

    @field_validator("length")
    @classmethod
    def _check_length(cls, value: int) -> int:
        if value not in ALLOWED_LENGTHS:
            raise ValueError(f"length must be one of {ALLOWED_LENGTHS}")
        return value

    @field_validator("language")
    @classmethod
    def _check_language(cls, value: str) -> str:
        if value not in ALLOWED_LANGUAGES:
            raise ValueError(f"language must be one of {ALLOWED_LANGUAGES}")
        return value


class Order(_Record):
    id: str
    user: str
    order_number: int | None = Field(None, alias="orderNumber")
    items: list[OrderItem] = Field(default_factory=list)
    total_price: float = Field(..., alias="totalPrice")
    total_price_original: float | None = Field(None, alias="totalPriceOriginal")
    applied_discount: float = Field(0, alias="appliedDiscount")
    exchange_rate: float | None = Field(None, alias="exchangeRate")
    currency: Currency = Currency.PLN
    status: OrderStatus = OrderStatus.PENDING
    payment_status: OrderPaymentStatus = Field(
        OrderPaymentStatus.PENDING, alias="paymentStatus"
    )
    declared_delivery_date: datetime = Field(..., alias="declaredDeliveryDate")
    actual_delivery_date: datetime | None = Field(None, alias="actualDeliveryDate")
    attachments: OrderAttachments = Field(default_factory=OrderAttachments)
    user_attachments: list[Attachment] = Field(
        default_factory=list, alias="userAttachments"
    )
    created_at: datetime | None = Field(None, alias="createdAt")
    abandoned_cart_offered_at: datetime | None = Field(
        None, alias="abandonedCartOfferedAt"
    )
    abandoned_cart_dismissed_at: datetime | None = Field(
        None, alias="abandonedCartDismissedAt"
    )


class Payment(_Record):
    id: str
    user: str
    amount: float
    amount_pln: float = Field(..., alias="amountPLN")
    paid_amount: float = Field(..., alias="paidAmount")
    currency: Currency = Currency.PLN
    exchange_rate: float | None = Field(None, alias="exchangeRate")
    type: PaymentType
    status: PaymentStatus = PaymentStatus.PENDING
    applied_discount: float = Field(0, alias="appliedDiscount")
    related_order: str | None = Field(None, alias="relatedOrder")
    stripe_session_id: str | None = Field(None, alias="stripeSessionId")
    metadata: dict | None = None
    created_at: datetime | None = Field(None, alias="createdAt")


def attachment_url(bucket: str, key: str) -> str:
    """S3 のオブジェクトキーから公開 URL を作る。"""
    return f"https://{bucket}.s3.amazonaws.com/{key.lstrip('/')}"
