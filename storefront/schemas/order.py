from datetime import datetime

from pydantic import BaseModel

from storefront.schemas.common import PaginationMeta


class OrderItemOut(BaseModel):
    product_id: str
    product_name: str
    image_url: str | None = None
    unit_price: float
    quantity: int
    line_total: float


class OrderOut(BaseModel):
    id: str
    customer_id: str | None = None
    customer_name: str
    email: str
    address: str
    payment_method: str
    currency: str
    total_amount: float
    order_status: str
    payment_status: str
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    created_at: datetime
    approved_at: datetime | None = None
    cancelled_at: datetime | None = None
    items: list[OrderItemOut]


class OrderListOut(BaseModel):
    items: list[OrderOut]
    pagination: PaginationMeta
