from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class CheckoutIn(BaseModel):
    customer_name: str = Field(min_length=1, max_length=150)
    email: EmailStr
    address: str = Field(min_length=1, max_length=500)
    payment_method: Literal["cod", "online"] = "online"

    @field_validator("customer_name", "address")
    @classmethod
    def strip_required_text(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value cannot be blank")
        return cleaned

    @field_validator("payment_method", mode="before")
    @classmethod
    def normalize_payment_method(cls, value: str) -> str:
        return str(value or "").strip().lower()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer_name": "Asha Rao",
                "email": "shopper@example.com",
                "address": "12 MG Road, Bengaluru 560001",
                "payment_method": "online",
            }
        }
    )


class GatewayPaymentOut(BaseModel):
    provider: str
    key_id: str
    gateway_order_id: str
    amount: int
    currency: str


class CheckoutOut(BaseModel):
    order_id: str
    order_status: str
    payment_status: str
    payment_method: str
    total_amount: float
    currency: str
    payment: GatewayPaymentOut | None = None
    payment_error: str | None = None
