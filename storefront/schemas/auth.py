from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class RegisterIn(BaseModel):
    email: EmailStr
    full_name: str = Field(max_length=255)
    password: str = Field(min_length=8, max_length=128)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"email": "shopper@example.com", "full_name": "Asha Rao", "password": "linen-summer-26"}
        }
    )

    @field_validator("full_name")
    @classmethod
    def strip_full_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("full_name must not be blank")
        return value


class LoginIn(BaseModel):
    # Plain str: accounts are looked up case-insensitively, not validated here.
    email: str = Field(min_length=1, max_length=255)
    password: str

    @field_validator("email")
    @classmethod
    def strip_email(cls, value: str) -> str:
        return value.strip()


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    merged_cart_items: int = Field(default=0, description="Guest cart lines folded into the account on sign-in")


class UserProfileOut(BaseModel):
    id: str
    email: EmailStr
    full_name: Optional[str] = None
    role: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
