from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from storefront.schemas.common import PaginationMeta


# Inbound gateway entities. Unknown fields are ignored; only the keys used
# for reconciliation are declared.
class PaymentEntity(BaseModel):
    id: str = Field(min_length=1)
    order_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    method: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class OrderEntity(BaseModel):
    id: str = Field(min_length=1)
    amount: Optional[int] = None
    amount_paid: Optional[int] = None
    receipt: Optional[str] = None
    status: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class RefundEntity(BaseModel):
    id: str = Field(min_length=1)
    payment_id: Optional[str] = None
    amount: Optional[int] = None
    status: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class PaymentCapturedEvent(BaseModel):
    event: str = "payment.captured"
    payment: Optional[PaymentEntity] = None


class PaymentFailedEvent(BaseModel):
    event: str = "payment.failed"
    payment: Optional[PaymentEntity] = None


class OrderPaidEvent(BaseModel):
    event: str = "order.paid"
    order: Optional[OrderEntity] = None
    payment: Optional[PaymentEntity] = None


class RefundEvent(BaseModel):
    event: str
    refund: Optional[RefundEntity] = None


class UnknownEvent(BaseModel):
    event: str


GatewayEvent = Union[PaymentCapturedEvent, PaymentFailedEvent, OrderPaidEvent, RefundEvent, UnknownEvent]


class WebhookAckOut(BaseModel):
    ok: bool = True
    result: str
    log_id: int


class WebhookLogOut(BaseModel):
    id: int
    event: str
    signature_header: str
    received_at: datetime
    processed: bool
    processing_result: str | None = None
    gateway_payment_id: str | None = None
    gateway_order_id: str | None = None
    order_id: str | None = None
    payload: str | None = None
    payload_base64: str | None = Field(default=None, description="Exact received bytes, base64 encoded")


class WebhookLogListOut(BaseModel):
    items: list[WebhookLogOut]
    pagination: PaginationMeta
    processed: bool | None = None


class PaymentVerifyIn(BaseModel):
    gateway_order_id: str = Field(min_length=1, max_length=64)
    gateway_payment_id: str = Field(min_length=1, max_length=64)
    signature: str = Field(min_length=1, max_length=255)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "gateway_order_id": "order_N5f7Yx2Qp1",
                "gateway_payment_id": "pay_N5f8Aa3Rz9",
                "signature": "9ef4dffbfd84f1318f6739a3ce19f9d85851857ae648f114332d8401e0949a3d",
            }
        }
    )


class PaymentVerifyOut(BaseModel):
    success: bool
    redirect: str | None = None
