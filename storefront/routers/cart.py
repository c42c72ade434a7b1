from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storefront.core.api_docs import error_responses
from storefront.core.deps import get_db
from storefront.core.money import ZERO_MONEY, to_money
from storefront.core.security_current import RequestIdentity, get_request_identity
from storefront.db.unit_of_work import unit_of_work
from storefront.schemas.cart import CartItemIn, CartLineOut, CartOut
from storefront.services.cart_service import CartProductNotFound, CartStore

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_out(store: CartStore) -> CartOut:
    lines = store.lines()
    total = sum((line.line_total for line in lines), ZERO_MONEY)
    return CartOut(
        source=store.source,
        items=[
            CartLineOut(
                product_id=line.product_id,
                name=line.name,
                image_url=line.image_url,
                price=float(line.price),
                quantity=line.quantity,
                line_total=float(line.line_total),
            )
            for line in lines
        ],
        total=float(to_money(total)),
        item_count=sum(line.quantity for line in lines),
    )


@router.get(
    "",
    response_model=CartOut,
    summary="Get the caller's cart",
    description="Guests get the cart bound to their session; signed-in users get their account cart.",
    responses=error_responses(401, 500),
)
def get_cart(
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    return _cart_out(CartStore(db, identity))


@router.post(
    "/items",
    response_model=CartOut,
    summary="Add a product to the cart",
    responses=error_responses(401, 404, 422, 500),
)
def add_cart_item(
    payload: CartItemIn,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    store = CartStore(db, identity)
    try:
        with unit_of_work(db):
            store.add(payload.product_id, payload.quantity)
    except CartProductNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _cart_out(store)


@router.delete(
    "/items/{product_id}",
    response_model=CartOut,
    summary="Remove a product from the cart",
    responses=error_responses(401, 500),
)
def remove_cart_item(
    product_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    store = CartStore(db, identity)
    with unit_of_work(db):
        store.remove(product_id)
    return _cart_out(store)


@router.post(
    "/items/{product_id}/increase",
    response_model=CartOut,
    summary="Increase a line's quantity by one",
    responses=error_responses(401, 500),
)
def increase_cart_item(
    product_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    store = CartStore(db, identity)
    with unit_of_work(db):
        store.increase(product_id)
    return _cart_out(store)


@router.post(
    "/items/{product_id}/decrease",
    response_model=CartOut,
    summary="Decrease a line's quantity by one",
    description="A line that reaches zero is removed.",
    responses=error_responses(401, 500),
)
def decrease_cart_item(
    product_id: str,
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    store = CartStore(db, identity)
    with unit_of_work(db):
        store.decrease(product_id)
    return _cart_out(store)


@router.delete(
    "",
    response_model=CartOut,
    summary="Empty the cart",
    responses=error_responses(401, 500),
)
def clear_cart(
    db: Session = Depends(get_db),
    identity: RequestIdentity = Depends(get_request_identity),
):
    store = CartStore(db, identity)
    with unit_of_work(db):
        store.clear()
    return _cart_out(store)
