import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx

from storefront.core.config import settings
from storefront.core.money import to_minor_units
from storefront.core.observability import log_event

logger = logging.getLogger("storefront.payments")


class GatewayError(RuntimeError):
    pass


@dataclass(frozen=True)
class GatewayOrderRequest:
    amount: Decimal
    currency: str
    receipt: str


@dataclass(frozen=True)
class GatewayOrderResult:
    provider: str
    gateway_order_id: str
    amount_minor: int
    currency: str


class PaymentGateway(Protocol):
    name: str
    key_id: str

    def create_order(self, request: GatewayOrderRequest) -> GatewayOrderResult:
        ...


class StubPaymentGateway:
    """Offline gateway. The same receipt always maps to the same remote order id."""

    name = "stub"

    def __init__(self, key_id: str = "rzp_test_stub"):
        self.key_id = key_id

    def create_order(self, request: GatewayOrderRequest) -> GatewayOrderResult:
        digest = hashlib.sha256(request.receipt.encode("utf-8")).hexdigest()
        return GatewayOrderResult(
            provider=self.name,
            gateway_order_id=f"order_{digest[:14]}",
            amount_minor=to_minor_units(request.amount),
            currency=request.currency,
        )


class RazorpayGateway:
    """
    Creates remote orders over the Razorpay REST API.

    Transport failures and 5xx replies are retried with the same receipt, so
    a retry after a lost response cannot produce a second remote order for
    the same local order. 4xx replies are not retried.
    """

    name = "razorpay"

    def __init__(
        self,
        *,
        key_id: str,
        key_secret: str,
        base_url: str,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 0.2,
        transport: httpx.BaseTransport | None = None,
    ):
        self.key_id = key_id
        self._key_secret = key_secret
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            auth=(self.key_id, self._key_secret),
            timeout=self._timeout,
            transport=self._transport,
        )

    def create_order(self, request: GatewayOrderRequest) -> GatewayOrderResult:
        amount_minor = to_minor_units(request.amount)
        body = {
            "amount": amount_minor,
            "currency": request.currency,
            "receipt": request.receipt,
            "payment_capture": 1,
        }

        last_error = "no attempt made"
        with self._client() as client:
            for attempt in range(1, self._max_attempts + 1):
                try:
                    response = client.post("/v1/orders", json=body)
                except httpx.TransportError as exc:
                    last_error = f"{type(exc).__name__}: {exc}"
                else:
                    if response.status_code >= 500:
                        last_error = f"HTTP {response.status_code}"
                    elif response.status_code >= 400:
                        raise GatewayError(
                            f"Gateway rejected order creation (HTTP {response.status_code})"
                        )
                    else:
                        data = response.json()
                        gateway_order_id = data.get("id") if isinstance(data, dict) else None
                        if not gateway_order_id:
                            raise GatewayError("Gateway response did not include an order id")
                        return GatewayOrderResult(
                            provider=self.name,
                            gateway_order_id=str(gateway_order_id),
                            amount_minor=int(data.get("amount", amount_minor)),
                            currency=str(data.get("currency", request.currency)),
                        )

                if attempt < self._max_attempts:
                    log_event(
                        logger,
                        "gateway.create_order_retry",
                        level=logging.WARNING,
                        receipt=request.receipt,
                        attempt=attempt,
                        error=last_error,
                    )
                    if self._retry_backoff_seconds > 0:
                        time.sleep(self._retry_backoff_seconds * attempt)

        raise GatewayError(f"Gateway order creation failed after {self._max_attempts} attempts: {last_error}")


def _build_razorpay_gateway() -> RazorpayGateway:
    return RazorpayGateway(
        key_id=settings.gateway_key_id,
        key_secret=settings.gateway_key_secret,
        base_url=settings.gateway_api_base_url,
        timeout_seconds=settings.gateway_timeout_seconds,
        max_attempts=settings.gateway_create_order_max_attempts,
    )


_GATEWAY_FACTORIES = {
    "stub": lambda: StubPaymentGateway(key_id=settings.gateway_key_id),
    "razorpay": _build_razorpay_gateway,
}


def get_payment_gateway(name: str | None = None) -> PaymentGateway:
    normalized = (name or settings.gateway_provider or "").strip().lower()
    factory = _GATEWAY_FACTORIES.get(normalized)
    if not factory:
        available = ", ".join(sorted(_GATEWAY_FACTORIES.keys()))
        raise ValueError(f"Unknown payment gateway '{name or settings.gateway_provider}'. Available: {available}")
    return factory()


def compute_client_signature(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_client_signature(
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: str,
) -> bool:
    if not gateway_order_id or not gateway_payment_id or not signature:
        return False
    expected = compute_client_signature(gateway_order_id, gateway_payment_id, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))
