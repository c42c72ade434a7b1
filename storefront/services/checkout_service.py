import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.id_utils import generate_shortuuid
from storefront.core.money import ZERO_MONEY, to_minor_units, to_money
from storefront.core.observability import log_event
from storefront.core.security_current import RequestIdentity
from storefront.db.unit_of_work import unit_of_work
from storefront.models.order import Order, OrderItem
from storefront.services.cart_service import CartStore
from storefront.services.inventory_service import decrement_stock, lock_products
from storefront.services.payment_gateway import (
    GatewayOrderRequest,
    GatewayOrderResult,
    PaymentGateway,
    verify_client_signature,
)

logger = logging.getLogger("storefront.checkout")


class CheckoutRejected(Exception):
    def __init__(self, code: str, message: str, *, product_id: str | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.product_id = product_id


@dataclass(frozen=True)
class CheckoutContact:
    customer_name: str
    email: str
    address: str
    payment_method: str


def _aggregate_quantities(store: CartStore) -> "OrderedDict[str, int]":
    quantities: OrderedDict[str, int] = OrderedDict()
    for line in store.lines():
        quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
    return quantities


def place_order(
    db: Session,
    *,
    identity: RequestIdentity,
    contact: CheckoutContact,
    currency: str,
) -> Order:
    """
    Turn the caller's cart into an order.

    Stock is checked and decremented under row locks in the same unit of work
    that inserts the order and clears the cart. Any rejection rolls the whole
    unit back, so a refused checkout leaves orders, stock and cart untouched.
    """
    with unit_of_work(db):
        store = CartStore(db, identity)
        quantities = _aggregate_quantities(store)
        if not quantities:
            raise CheckoutRejected("empty_cart", "Cart is empty")

        products = lock_products(db, quantities.keys())
        for product_id, quantity in quantities.items():
            product = products.get(product_id)
            if product is None or not product.active:
                raise CheckoutRejected(
                    "product_not_found",
                    f"Product not found: {product_id}",
                    product_id=product_id,
                )
            if product.stock_quantity < quantity:
                raise CheckoutRejected(
                    "insufficient_stock",
                    f"Insufficient stock for {product.name}",
                    product_id=product_id,
                )

        order = Order(
            id=generate_shortuuid(),
            customer_id=identity.user_id,
            session_id=identity.session_id,
            customer_name=contact.customer_name,
            email=contact.email,
            address=contact.address,
            payment_method=contact.payment_method,
            currency=currency,
            order_status="pending",
            payment_status="pending",
            total_amount=ZERO_MONEY,
        )

        total = ZERO_MONEY
        for position, (product_id, quantity) in enumerate(quantities.items()):
            product = products[product_id]
            unit_price = to_money(product.price)
            line_total = to_money(unit_price * quantity)
            total += line_total
            order.items.append(
                OrderItem(
                    id=generate_shortuuid(),
                    product_id=product.id,
                    product_name=product.name,
                    image_url=product.image_url,
                    unit_price=unit_price,
                    quantity=quantity,
                    line_total=line_total,
                    position=position,
                )
            )
        order.total_amount = to_money(total)
        db.add(order)

        for product_id, quantity in quantities.items():
            if not decrement_stock(db, product_id=product_id, quantity=quantity):
                raise CheckoutRejected(
                    "insufficient_stock",
                    f"Insufficient stock for {products[product_id].name}",
                    product_id=product_id,
                )

        if contact.payment_method == "cod":
            order.order_status = "approved"
            order.approved_at = datetime.now(timezone.utc)

        store.clear()
        db.flush()

    db.refresh(order)
    log_event(
        logger,
        "checkout.order_placed",
        order_id=order.id,
        customer_id=order.customer_id,
        payment_method=order.payment_method,
        total_amount=str(order.total_amount),
        lines=len(quantities),
    )
    return order


def start_online_payment(db: Session, order: Order, gateway: PaymentGateway) -> GatewayOrderResult:
    """
    Create (or reuse) the remote gateway order for a pending online order.

    Runs after the checkout unit has committed. The local order id is the
    receipt, so a retry after a failure asks the gateway for the same order.
    """
    if order.payment_method != "online":
        raise ValueError("Only online orders take a gateway payment")
    if order.order_status != "pending" or order.payment_status != "pending":
        raise ValueError(f"Order is not awaiting payment (status={order.order_status})")

    if order.gateway_order_id:
        return GatewayOrderResult(
            provider=gateway.name,
            gateway_order_id=order.gateway_order_id,
            amount_minor=to_minor_units(order.total_amount),
            currency=order.currency,
        )

    # Release any read transaction before the network call.
    db.commit()
    result = gateway.create_order(
        GatewayOrderRequest(amount=to_money(order.total_amount), currency=order.currency, receipt=order.id)
    )

    with unit_of_work(db):
        locked = db.execute(
            select(Order).where(Order.id == order.id).with_for_update()
        ).scalar_one()
        if not locked.gateway_order_id:
            locked.gateway_receipt = order.id
            locked.gateway_order_id = result.gateway_order_id
        stored_id = locked.gateway_order_id

    log_event(
        logger,
        "checkout.gateway_order_created",
        order_id=order.id,
        gateway_order_id=stored_id,
        provider=result.provider,
    )
    if stored_id != result.gateway_order_id:
        return GatewayOrderResult(
            provider=result.provider,
            gateway_order_id=stored_id,
            amount_minor=result.amount_minor,
            currency=result.currency,
        )
    return result


def record_client_verification(
    db: Session,
    *,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    secret: str,
) -> bool:
    """
    Check the signature the browser relays after payment.

    A valid signature is only a tentative confirmation: it is noted on a
    still-pending order and never changes order or payment status. Approval
    comes from the gateway webhook alone.
    """
    if not verify_client_signature(gateway_order_id, gateway_payment_id, signature, secret):
        log_event(
            logger,
            "checkout.verify_rejected",
            level=logging.WARNING,
            gateway_order_id=gateway_order_id,
        )
        return False

    with unit_of_work(db):
        order = db.execute(
            select(Order).where(Order.gateway_order_id == gateway_order_id).with_for_update()
        ).scalar_one_or_none()
        if order is None:
            return False
        if order.order_status == "pending" and order.payment_status == "pending":
            order.tentative_payment_id = gateway_payment_id
            order.payment_verified_at = datetime.now(timezone.utc)

    return True

