from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from storefront.core.api_docs import error_responses
from storefront.core.deps import get_db
from storefront.core.security_current import RequestIdentity, get_current_user, get_request_identity
from storefront.models.order import Order
from storefront.models.user import User
from storefront.schemas.common import PaginationMeta
from storefront.schemas.order import OrderItemOut, OrderListOut, OrderOut

router = APIRouter(prefix="/orders", tags=["orders"])


def _order_out(order: Order) -> OrderOut:
    return OrderOut(
        id=order.id,
        customer_id=order.customer_id,
        customer_name=order.customer_name,
        email=order.email,
        address=order.address,
        payment_method=order.payment_method,
        currency=order.currency,
        total_amount=float(order.total_amount),
        order_status=order.order_status,
        payment_status=order.payment_status,
        gateway_order_id=order.gateway_order_id,
        gateway_payment_id=order.gateway_payment_id,
        created_at=order.created_at,
        approved_at=order.approved_at,
        cancelled_at=order.cancelled_at,
        items=[
            OrderItemOut(
                product_id=item.product_id,
                product_name=item.product_name,
                image_url=item.image_url,
                unit_price=float(item.unit_price),
                quantity=item.quantity,
                line_total=float(item.line_total),
            )
            for item in order.items
        ],
    )


@router.get(
    "",
    response_model=OrderListOut,
    summary="List the current user's orders",
    responses=error_responses(401, 422, 500),
)
def list_my_orders(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    total_count = int(
        db.execute(select(func.count(Order.id)).where(Order.customer_id == user.id)).scalar_one()
    )
    orders = db.execute(
        select(Order)
        .where(Order.customer_id == user.id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    count = len(orders)

    return OrderListOut(
        items=[_order_out(order) for order in orders],
        pagination=PaginationMeta(
            total=total_count,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total_count,
        ),
    )


@router.get(
    "/{order_id}",
    response_model=OrderOut,
    summary="Get an order",
    description="Visible to its customer, to the guest session that placed it, and to admins.",
    responses=error_responses(401, 404, 500),
)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    order = db.execute(
        select(Order).where(Order.id == order_id).options(selectinload(Order.items))
    ).scalar_one_or_none()
    if not order or not identity.can_see_order(order.customer_id, order.session_id):
        raise HTTPException(status_code=404, detail="Order not found")
    return _order_out(order)
