import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.core.money import to_money
from storefront.core.observability import log_event
from storefront.core.security_current import RequestIdentity
from storefront.models.cart import Cart, CartItem, SessionCart
from storefront.models.product import Product
from storefront.services.inventory_service import get_product

logger = logging.getLogger("storefront.cart")


class CartProductNotFound(LookupError):
    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


@dataclass(frozen=True)
class CartLine:
    product_id: str
    name: str
    image_url: str | None
    price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return to_money(self.price * self.quantity)


class CartBackend(Protocol):
    source: str

    def lines(self) -> list[CartLine]:
        ...

    def add(self, product: Product, quantity: int) -> None:
        ...

    def remove(self, product_id: str) -> None:
        ...

    def change_quantity(self, product_id: str, delta: int) -> None:
        ...

    def clear(self) -> None:
        ...


def _session_line(raw: dict[str, Any]) -> CartLine:
    return CartLine(
        product_id=str(raw["product_id"]),
        name=str(raw.get("name") or ""),
        image_url=raw.get("image_url"),
        price=to_money(raw.get("price") or 0),
        quantity=int(raw["quantity"]),
    )


def _session_payload(line: CartLine) -> dict[str, Any]:
    return {
        "product_id": line.product_id,
        "name": line.name,
        "image_url": line.image_url,
        "price": str(line.price),
        "quantity": line.quantity,
    }


class SessionCartBackend:
    """Guest cart stored server-side under the caller's session id."""

    source = "session"

    def __init__(self, db: Session, session_id: str):
        self.db = db
        self.session_id = session_id

    def _row(self) -> SessionCart | None:
        return self.db.execute(
            select(SessionCart).where(SessionCart.session_id == self.session_id)
        ).scalar_one_or_none()

    def _save(self, lines: list[CartLine]) -> None:
        row = self._row()
        if row is None:
            row = SessionCart(session_id=self.session_id, items_json=[])
            self.db.add(row)
        # Reassign so the JSON column is marked dirty.
        row.items_json = [_session_payload(line) for line in lines]
        self.db.flush()

    def lines(self) -> list[CartLine]:
        row = self._row()
        if row is None or not row.items_json:
            return []
        return [_session_line(raw) for raw in row.items_json]

    def add(self, product: Product, quantity: int) -> None:
        lines = self.lines()
        for index, line in enumerate(lines):
            if line.product_id == product.id:
                lines[index] = CartLine(
                    product_id=line.product_id,
                    name=line.name,
                    image_url=line.image_url,
                    price=line.price,
                    quantity=line.quantity + quantity,
                )
                break
        else:
            lines.append(
                CartLine(
                    product_id=product.id,
                    name=product.name,
                    image_url=product.image_url,
                    price=to_money(product.price),
                    quantity=quantity,
                )
            )
        self._save(lines)

    def remove(self, product_id: str) -> None:
        lines = self.lines()
        remaining = [line for line in lines if line.product_id != product_id]
        if len(remaining) != len(lines):
            self._save(remaining)

    def change_quantity(self, product_id: str, delta: int) -> None:
        lines = self.lines()
        updated: list[CartLine] = []
        changed = False
        for line in lines:
            if line.product_id != product_id:
                updated.append(line)
                continue
            changed = True
            quantity = line.quantity + delta
            if quantity > 0:
                updated.append(
                    CartLine(
                        product_id=line.product_id,
                        name=line.name,
                        image_url=line.image_url,
                        price=line.price,
                        quantity=quantity,
                    )
                )
        if changed:
            self._save(updated)

    def clear(self) -> None:
        row = self._row()
        if row is not None:
            self.db.delete(row)
            self.db.flush()


class PersistedCartBackend:
    """Signed-in user's cart; names and prices are read live from the catalog."""

    source = "persisted"

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def _cart(self, *, create: bool) -> Cart | None:
        cart = self.db.execute(
            select(Cart)
            .where(Cart.user_id == self.user_id)
            .options(selectinload(Cart.items))
        ).scalar_one_or_none()
        if cart is None and create:
            cart = get_or_create_user_cart(self.db, self.user_id)
        return cart

    def _item(self, cart: Cart | None, product_id: str) -> CartItem | None:
        if cart is None:
            return None
        return next((item for item in cart.items if item.product_id == product_id), None)

    def lines(self) -> list[CartLine]:
        rows = self.db.execute(
            select(CartItem, Product)
            .join(Cart, Cart.id == CartItem.cart_id)
            .join(Product, Product.id == CartItem.product_id)
            .where(Cart.user_id == self.user_id)
            .order_by(CartItem.position, CartItem.id)
        ).all()
        return [
            CartLine(
                product_id=product.id,
                name=product.name,
                image_url=product.image_url,
                price=to_money(product.price),
                quantity=item.quantity,
            )
            for item, product in rows
        ]

    def add(self, product: Product, quantity: int) -> None:
        cart = self._cart(create=True)
        _add_to_cart(cart, product.id, quantity)
        self.db.flush()

    def remove(self, product_id: str) -> None:
        cart = self._cart(create=False)
        item = self._item(cart, product_id)
        if item is not None:
            cart.items.remove(item)
            self.db.flush()

    def change_quantity(self, product_id: str, delta: int) -> None:
        cart = self._cart(create=False)
        item = self._item(cart, product_id)
        if item is None:
            return
        item.quantity += delta
        if item.quantity <= 0:
            cart.items.remove(item)
        self.db.flush()

    def clear(self) -> None:
        cart = self._cart(create=False)
        if cart is not None and cart.items:
            cart.items.clear()
            self.db.flush()


def get_or_create_user_cart(db: Session, user_id: str) -> Cart:
    cart = db.execute(
        select(Cart).where(Cart.user_id == user_id).options(selectinload(Cart.items))
    ).scalar_one_or_none()
    if cart is None:
        cart = Cart(user_id=user_id)
        db.add(cart)
        db.flush()
    return cart


def _add_to_cart(cart: Cart, product_id: str, quantity: int) -> None:
    existing = next((item for item in cart.items if item.product_id == product_id), None)
    if existing is not None:
        existing.quantity += quantity
        return
    next_position = max((item.position for item in cart.items), default=-1) + 1
    cart.items.append(CartItem(product_id=product_id, quantity=quantity, position=next_position))


class CartStore:
    """
    One cart contract for every caller. Guests get the session cart, signed-in
    users get their persisted cart; callers never pick the backend themselves.

    Nothing here commits: wrap calls in a unit of work.
    """

    def __init__(self, db: Session, identity: RequestIdentity):
        self.db = db
        self.identity = identity
        if identity.is_authenticated:
            self.backend: CartBackend = PersistedCartBackend(db, identity.user_id)
        else:
            self.backend = SessionCartBackend(db, identity.session_id)

    @property
    def source(self) -> str:
        return self.backend.source

    def lines(self) -> list[CartLine]:
        return self.backend.lines()

    def add(self, product_id: str, quantity: int = 1) -> None:
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        product = get_product(self.db, product_id)
        if product is None or not product.active:
            raise CartProductNotFound(product_id)
        self.backend.add(product, quantity)

    def remove(self, product_id: str) -> None:
        self.backend.remove(product_id)

    def increase(self, product_id: str) -> None:
        self.backend.change_quantity(product_id, 1)

    def decrease(self, product_id: str) -> None:
        self.backend.change_quantity(product_id, -1)

    def clear(self) -> None:
        self.backend.clear()


def merge_session_into_persisted(db: Session, *, session_id: str, user_id: str) -> int:
    """
    Fold the guest cart for ``session_id`` into ``user_id``'s cart: matching
    products have quantities summed, others are appended in session order.

    The session cart is deleted in the same unit as the merge, so a repeated
    call finds nothing and returns 0. Lines whose product has left the catalog
    are dropped. Returns the number of lines merged. Does not commit.
    """
    row = db.execute(
        select(SessionCart).where(SessionCart.session_id == session_id).with_for_update()
    ).scalar_one_or_none()
    if row is None:
        return 0

    session_lines = [_session_line(raw) for raw in (row.items_json or [])]
    db.delete(row)
    if not session_lines:
        return 0

    known_ids = set(
        db.execute(
            select(Product.id).where(Product.id.in_([line.product_id for line in session_lines]))
        ).scalars().all()
    )
    cart = get_or_create_user_cart(db, user_id)
    merged = 0
    for line in session_lines:
        if line.product_id not in known_ids or line.quantity <= 0:
            continue
        _add_to_cart(cart, line.product_id, line.quantity)
        merged += 1
    db.flush()

    log_event(logger, "cart.merged", user_id=user_id, lines=merged)
    return merged
