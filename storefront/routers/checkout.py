import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.config import settings
from storefront.core.deps import get_db
from storefront.core.observability import log_event
from storefront.core.security_current import RequestIdentity, get_request_identity
from storefront.models.order import Order
from storefront.schemas.checkout import CheckoutIn, CheckoutOut, GatewayPaymentOut
from storefront.schemas.payment import PaymentVerifyIn, PaymentVerifyOut
from storefront.services.checkout_service import (
    CheckoutContact,
    CheckoutRejected,
    place_order,
    record_client_verification,
    start_online_payment,
)
from storefront.services.payment_gateway import (
    GatewayError,
    GatewayOrderResult,
    PaymentGateway,
    get_payment_gateway,
)

router = APIRouter(prefix="/checkout", tags=["checkout"])
logger = logging.getLogger("storefront.checkout")


def get_gateway() -> PaymentGateway:
    try:
        return get_payment_gateway()
    except ValueError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _payment_out(gateway: PaymentGateway, result: GatewayOrderResult) -> GatewayPaymentOut:
    return GatewayPaymentOut(
        provider=result.provider,
        key_id=gateway.key_id,
        gateway_order_id=result.gateway_order_id,
        amount=result.amount_minor,
        currency=result.currency,
    )


def _checkout_out(
    order: Order,
    *,
    payment: GatewayPaymentOut | None = None,
    payment_error: str | None = None,
) -> CheckoutOut:
    return CheckoutOut(
        order_id=order.id,
        order_status=order.order_status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        total_amount=float(order.total_amount),
        currency=order.currency,
        payment=payment,
        payment_error=payment_error,
    )


@router.post(
    "",
    response_model=CheckoutOut,
    summary="Place an order from the caller's cart",
    description=(
        "Validates stock, creates the order, decrements stock and clears the cart in one transaction. "
        "Online orders also get a gateway order; if the gateway is unreachable the order is kept and "
        "payment can be retried."
    ),
    responses=error_responses(400, 401, 404, 422, 500),
)
def checkout(
    payload: CheckoutIn,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
    gateway: PaymentGateway = Depends(get_gateway),
):
    contact = CheckoutContact(
        customer_name=payload.customer_name,
        email=str(payload.email),
        address=payload.address,
        payment_method=payload.payment_method,
    )
    try:
        order = place_order(db, identity=identity, contact=contact, currency=settings.gateway_currency)
    except CheckoutRejected as exc:
        status_code = 404 if exc.code == "product_not_found" else 400
        raise HTTPException(status_code=status_code, detail=exc.message) from exc

    if order.payment_method != "online":
        return _checkout_out(order)

    try:
        result = start_online_payment(db, order, gateway)
    except GatewayError as exc:
        log_event(logger, "checkout.gateway_unavailable", level=logging.WARNING, order_id=order.id, error=str(exc))
        return _checkout_out(order, payment_error=str(exc))
    return _checkout_out(order, payment=_payment_out(gateway, result))


@router.post(
    "/orders/{order_id}/payment",
    response_model=CheckoutOut,
    summary="Create or reuse the gateway order for a pending online order",
    responses=error_responses(400, 401, 404, 422, 500, 502),
)
def retry_order_payment(
    order_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
    gateway: PaymentGateway = Depends(get_gateway),
):
    order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
    if not order or not identity.can_see_order(order.customer_id, order.session_id):
        raise HTTPException(status_code=404, detail="Order not found")

    try:
        result = start_online_payment(db, order, gateway)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return _checkout_out(order, payment=_payment_out(gateway, result))


@router.post(
    "/verify",
    response_model=PaymentVerifyOut,
    summary="Verify the payment signature returned to the browser",
    description=(
        "A valid signature is recorded as a tentative confirmation only. "
        "The order is approved when the gateway webhook arrives."
    ),
    responses=error_responses(422, 500),
)
def verify_payment(payload: PaymentVerifyIn, db: Session = Depends(get_db)):
    verified = record_client_verification(
        db,
        gateway_order_id=payload.gateway_order_id,
        gateway_payment_id=payload.gateway_payment_id,
        signature=payload.signature,
        secret=settings.gateway_key_secret,
    )
    if not verified:
        return PaymentVerifyOut(success=False)
    return PaymentVerifyOut(success=True, redirect=settings.checkout_success_path)
