from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.db.unit_of_work import unit_of_work
from storefront.models.order import Order
from storefront.models.webhook_log import WebhookLog
from storefront.schemas.payment import (
    GatewayEvent,
    OrderPaidEvent,
    PaymentCapturedEvent,
    PaymentFailedEvent,
    RefundEvent,
)

PAID_ORDER_STATUSES = {"approved", "shipped", "delivered"}
PAID_PAYMENT_STATUSES = {"captured", "completed", "refunded"}
# Order states a confirmed capture may (re)approve.
APPROVABLE_ORDER_STATUSES = {"pending", "cancelled"}
_MAX_RESULT_LENGTH = 255


def _order_by_gateway_id(db: Session, gateway_order_id: str | None) -> Order | None:
    if not gateway_order_id:
        return None
    return db.execute(
        select(Order).where(Order.gateway_order_id == gateway_order_id).with_for_update()
    ).scalar_one_or_none()


def _payment_already_processed(db: Session, gateway_payment_id: str, *, exclude_log_id: int) -> bool:
    on_order = db.execute(
        select(Order.id).where(Order.gateway_payment_id == gateway_payment_id)
    ).first()
    if on_order is not None:
        return True
    prior_log = db.execute(
        select(WebhookLog.id).where(
            WebhookLog.gateway_payment_id == gateway_payment_id,
            WebhookLog.event == "payment.captured",
            WebhookLog.processed.is_(True),
            WebhookLog.processing_result == "PaymentCaptured",
            WebhookLog.id != exclude_log_id,
        )
    ).first()
    return prior_log is not None


def _apply_capture(db: Session, order: Order, gateway_payment_id: str | None) -> bool:
    """
    Record a confirmed payment on ``order``. The write only lands while the
    order has no payment id yet, so two concurrent deliveries of the same
    capture cannot both apply it. Returns False when the guard did not match.
    """
    values: dict = {"payment_status": "captured"}
    if gateway_payment_id:
        values["gateway_payment_id"] = gateway_payment_id
    if order.order_status in APPROVABLE_ORDER_STATUSES:
        values["order_status"] = "approved"
        values["approved_at"] = datetime.now(timezone.utc)
        values["cancelled_at"] = None

    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.gateway_payment_id.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.expire(order)
    return result.rowcount == 1


def _reconcile_captured(db: Session, log: WebhookLog, event: PaymentCapturedEvent) -> str:
    payment = event.payment
    if payment is None:
        return "MissingPaymentEntity"
    log.gateway_payment_id = payment.id
    log.gateway_order_id = payment.order_id

    if _payment_already_processed(db, payment.id, exclude_log_id=log.id):
        return f"AlreadyProcessed:{payment.id}"

    order = _order_by_gateway_id(db, payment.order_id)
    if order is None:
        return "OrderNotFound"
    log.order_id = order.id

    if order.gateway_payment_id and order.gateway_payment_id != payment.id:
        return f"DuplicatePaymentForOrder:{order.gateway_payment_id}"
    if not _apply_capture(db, order, payment.id):
        # A concurrent delivery wrote a payment id after the lookup.
        if order.gateway_payment_id != payment.id:
            return f"DuplicatePaymentForOrder:{order.gateway_payment_id}"
        return f"AlreadyProcessed:{payment.id}"
    return "PaymentCaptured"


def _reconcile_failed(db: Session, log: WebhookLog, event: PaymentFailedEvent) -> str:
    payment = event.payment
    if payment is None:
        return "MissingPaymentEntity"
    log.gateway_payment_id = payment.id
    log.gateway_order_id = payment.order_id

    order = _order_by_gateway_id(db, payment.order_id)
    if order is None:
        return "OrderNotFound"
    log.order_id = order.id

    if order.payment_status in PAID_PAYMENT_STATUSES:
        return f"PaymentFailedIgnored:{order.payment_status}"
    if order.order_status in PAID_ORDER_STATUSES:
        return f"PaymentFailedIgnored:{order.order_status}"

    if order.payment_status != "failed" or order.order_status != "cancelled":
        order.payment_status = "failed"
        order.order_status = "cancelled"
        order.cancelled_at = datetime.now(timezone.utc)
    return "PaymentFailed"


def _reconcile_order_paid(db: Session, log: WebhookLog, event: OrderPaidEvent) -> str:
    remote = event.order
    if remote is None:
        return "MissingOrderEntity"
    log.gateway_order_id = remote.id

    order = _order_by_gateway_id(db, remote.id)
    if order is None:
        return "OrderNotFound"
    log.order_id = order.id

    if order.order_status in PAID_ORDER_STATUSES or order.payment_status in PAID_PAYMENT_STATUSES:
        return "OrderAlreadyPaid"

    payment_id = None
    if event.payment is not None:
        log.gateway_payment_id = event.payment.id
        if not _payment_already_processed(db, event.payment.id, exclude_log_id=log.id):
            payment_id = event.payment.id

    if not _apply_capture(db, order, payment_id):
        return "OrderAlreadyPaid"
    return "OrderMarkedPaid"


def _reconcile_refund(db: Session, log: WebhookLog, event: RefundEvent) -> str:
    refund = event.refund
    if refund is None:
        return "MissingRefundEntity"

    if refund.payment_id:
        log.gateway_payment_id = refund.payment_id
        order = db.execute(
            select(Order).where(Order.gateway_payment_id == refund.payment_id)
        ).scalar_one_or_none()
        if order is not None:
            log.order_id = order.id
            log.gateway_order_id = order.gateway_order_id
    return f"RefundReceived:{refund.id}"


def reconcile(db: Session, *, log: WebhookLog, event: GatewayEvent) -> str:
    """
    Apply an authenticated gateway event to the matching order and write the
    outcome back onto ``log``, both in one unit of work. Returns the
    processing result recorded on the log.
    """
    with unit_of_work(db):
        if isinstance(event, PaymentCapturedEvent):
            result = _reconcile_captured(db, log, event)
        elif isinstance(event, PaymentFailedEvent):
            result = _reconcile_failed(db, log, event)
        elif isinstance(event, OrderPaidEvent):
            result = _reconcile_order_paid(db, log, event)
        elif isinstance(event, RefundEvent):
            result = _reconcile_refund(db, log, event)
        else:
            result = f"Ignored:{event.event}"

        log.processed = True
        log.processing_result = result[:_MAX_RESULT_LENGTH]
    return result
