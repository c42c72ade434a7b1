import json
from typing import List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WEBHOOK_SECRET = "dev-webhook-secret"
DEFAULT_GATEWAY_KEY_SECRET = "dev-gateway-secret"
_PLACEHOLDER_SECRETS = {"", "change_me", "changeme", "secret"}
_PRODUCTION_ENVS = {"prod", "production"}
_LOCAL_ENVS = {"dev", "development", "local", "staging", "stage"}


def _split_origins(raw: object) -> List[str]:
    """Accept a JSON list, a comma separated string or an actual list."""
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            raw = json.loads(text)
            if not isinstance(raw, list):
                raise ValueError("CORS_ORIGINS JSON value must be a list")
        else:
            raw = text.split(",")
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"Unsupported CORS_ORIGINS value: {raw!r}")
    return [str(item).strip() for item in raw if str(item).strip()]


class Settings(BaseSettings):
    app_name: str = "Storefront Checkout"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = Field(default=60, ge=1, le=43_200)

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # PAYMENT GATEWAY
    gateway_provider: str = "stub"
    gateway_key_id: str = "rzp_test_key"
    gateway_key_secret: str = DEFAULT_GATEWAY_KEY_SECRET
    gateway_webhook_secret: str = DEFAULT_WEBHOOK_SECRET
    gateway_api_base_url: str = "https://api.razorpay.com"
    gateway_currency: str = Field(default="INR", min_length=3, max_length=3)
    gateway_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    gateway_create_order_max_attempts: int = Field(default=3, ge=1, le=10)
    checkout_success_path: str = "/checkout/success"

    # SESSION CART
    session_cookie_name: str = "storefront_session"
    session_cookie_max_age_days: int = Field(default=7, ge=1, le=365)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: object) -> List[str]:
        return _split_origins(value)

    @field_validator("env", "gateway_provider", mode="before")
    @classmethod
    def lowercase(cls, value: str) -> str:
        return str(value or "").strip().lower()

    @field_validator("gateway_currency", mode="before")
    @classmethod
    def uppercase_currency(cls, value: str) -> str:
        return str(value or "").strip().upper()

    @property
    def is_production(self) -> bool:
        return self.env in _PRODUCTION_ENVS

    @property
    def is_local(self) -> bool:
        return self.env in _LOCAL_ENVS

    @model_validator(mode="after")
    def refuse_unsafe_production(self) -> "Settings":
        if not self.is_production:
            return self

        problems = []
        secret = self.secret_key.strip()
        if secret.lower() in _PLACEHOLDER_SECRETS or len(secret) < 32:
            problems.append("SECRET_KEY must be a random value of at least 32 characters")
        if self.gateway_webhook_secret.strip() in {"", DEFAULT_WEBHOOK_SECRET}:
            problems.append("GATEWAY_WEBHOOK_SECRET must be set")
        if self.gateway_key_secret.strip() in {"", DEFAULT_GATEWAY_KEY_SECRET}:
            problems.append("GATEWAY_KEY_SECRET must be set")
        if self.gateway_provider == "stub":
            problems.append("GATEWAY_PROVIDER cannot be 'stub'")
        if "*" in self.cors_origins or self.cors_origin_regex:
            problems.append("CORS must list explicit origins")
        if problems:
            raise ValueError("Unsafe production settings: " + "; ".join(problems))
        return self


settings = Settings()
