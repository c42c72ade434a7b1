from pydantic import BaseModel, ConfigDict, Field


class CartItemIn(BaseModel):
    product_id: str = Field(min_length=1, max_length=36)
    quantity: int = Field(default=1, ge=1, le=1000)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"product_id": "prd_linen_shirt", "quantity": 2}
        }
    )


class CartLineOut(BaseModel):
    product_id: str
    name: str
    image_url: str | None = None
    price: float
    quantity: int
    line_total: float


class CartOut(BaseModel):
    source: str
    items: list[CartLineOut]
    total: float
    item_count: int
