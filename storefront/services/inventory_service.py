from collections.abc import Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.models.product import Product


def get_product(db: Session, product_id: str) -> Product | None:
    return db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()


def get_stock(db: Session, product_id: str) -> int:
    stock = db.execute(select(Product.stock_quantity).where(Product.id == product_id)).scalar_one_or_none()
    return int(stock or 0)


def lock_products(db: Session, product_ids: Iterable[str]) -> dict[str, Product]:
    """
    Load products for a stock decision, holding row locks until the caller's
    unit of work ends. Rows are locked in id order so concurrent checkouts
    over overlapping carts cannot deadlock each other.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    rows = db.execute(
        select(Product)
        .where(Product.id.in_(ids))
        .order_by(Product.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalars().all()
    return {product.id: product for product in rows}


def decrement_stock(db: Session, *, product_id: str, quantity: int) -> bool:
    """
    Compare-and-swap decrement. Returns False, changing nothing, when the
    row no longer holds ``quantity`` units.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    result = db.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    cached = db.identity_map.get(db.identity_key(Product, product_id))
    if cached is not None:
        db.expire(cached, ["stock_quantity"])
    return result.rowcount == 1
