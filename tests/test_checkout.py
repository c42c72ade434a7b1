import json
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import func, select

from conftest import GUEST_SESSION, auth_headers, guest_headers, login, seed_product, seed_user
from storefront.core.security_current import RequestIdentity
from storefront.db.unit_of_work import unit_of_work
from storefront.models.order import Order, OrderItem
from storefront.models.product import Product
from storefront.routers.checkout import get_gateway
from storefront.main import app
from storefront.services.cart_service import CartStore
from storefront.services.checkout_service import CheckoutContact, CheckoutRejected, place_order
from storefront.services.inventory_service import decrement_stock, get_stock
from storefront.services.payment_gateway import (
    GatewayError,
    GatewayOrderRequest,
    RazorpayGateway,
    StubPaymentGateway,
)

CONTACT = {
    "customer_name": "Asha Rao",
    "email": "asha@example.com",
    "address": "12 MG Road, Bengaluru",
}


def _snapshot(session_local) -> dict:
    with session_local() as db:
        return {
            "orders": db.execute(select(func.count(Order.id))).scalar_one(),
            "order_items": db.execute(select(func.count(OrderItem.id))).scalar_one(),
            "stock": dict(db.execute(select(Product.id, Product.stock_quantity)).all()),
        }


def _fill_guest_cart(client, lines: dict[str, int], session_id: str = GUEST_SESSION) -> None:
    for product_id, quantity in lines.items():
        res = client.post(
            "/cart/items",
            json={"product_id": product_id, "quantity": quantity},
            headers=guest_headers(session_id),
        )
        assert res.status_code == 200, res.text


def test_empty_cart_checkout_is_rejected(test_context):
    client, session_local = test_context

    res = client.post("/checkout", json={**CONTACT, "payment_method": "cod"}, headers=guest_headers())
    assert res.status_code == 400
    assert res.json()["error"]["message"] == "Cart is empty"
    assert _snapshot(session_local)["orders"] == 0


def test_insufficient_stock_leaves_everything_untouched(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", stock=5)
    seed_product(session_local, product_id="prd_scarf", name="Silk Scarf", stock=1)
    _fill_guest_cart(client, {"prd_shirt": 2, "prd_scarf": 3})
    before = _snapshot(session_local)

    res = client.post("/checkout", json={**CONTACT, "payment_method": "cod"}, headers=guest_headers())
    assert res.status_code == 400
    assert res.json()["error"]["message"] == "Insufficient stock for Silk Scarf"

    assert _snapshot(session_local) == before
    cart = client.get("/cart", headers=guest_headers()).json()
    assert {item["product_id"]: item["quantity"] for item in cart["items"]} == {"prd_shirt": 2, "prd_scarf": 3}


def test_product_deactivated_after_adding_is_not_found(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt")
    _fill_guest_cart(client, {"prd_shirt": 1})
    with session_local() as db:
        db.get(Product, "prd_shirt").active = False
        db.commit()

    res = client.post("/checkout", json={**CONTACT, "payment_method": "cod"}, headers=guest_headers())
    assert res.status_code == 404
    assert _snapshot(session_local)["orders"] == 0


def test_cod_checkout_snapshots_prices_decrements_stock_and_clears_cart(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", price="25.50", stock=5)
    seed_product(session_local, product_id="prd_scarf", name="Silk Scarf", price="12.00", stock=3)
    _fill_guest_cart(client, {"prd_shirt": 2, "prd_scarf": 1})

    res = client.post("/checkout", json={**CONTACT, "payment_method": "cod"}, headers=guest_headers())
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["total_amount"] == 63.0
    assert body["order_status"] == "approved"
    assert body["payment_status"] == "pending"
    assert body["payment"] is None

    snapshot = _snapshot(session_local)
    assert snapshot["stock"] == {"prd_shirt": 3, "prd_scarf": 2}
    assert snapshot["order_items"] == 2

    with session_local() as db:
        order = db.get(Order, body["order_id"])
        assert order.customer_id is None
        assert order.session_id == GUEST_SESSION
        assert order.approved_at is not None
        assert order.gateway_order_id is None
        items = sorted(order.items, key=lambda item: item.position)
        assert [(item.product_id, item.unit_price, item.quantity) for item in items] == [
            ("prd_shirt", Decimal("25.50"), 2),
            ("prd_scarf", Decimal("12.00"), 1),
        ]
        assert sum(item.line_total for item in items) == order.total_amount

    assert client.get("/cart", headers=guest_headers()).json()["items"] == []

    with session_local() as db:
        db.get(Product, "prd_shirt").price = Decimal("99.00")
        db.commit()
    order_view = client.get(f"/orders/{body['order_id']}", headers=guest_headers()).json()
    assert order_view["items"][0]["unit_price"] == 25.5


def test_online_checkout_stays_pending_with_gateway_order(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", price="25.50")
    seed_user(session_local, email="asha@example.com")
    token = login(client, email="asha@example.com").json()["access_token"]
    client.post("/cart/items", json={"product_id": "prd_shirt", "quantity": 2}, headers=auth_headers(token))

    res = client.post("/checkout", json={**CONTACT, "payment_method": "online"}, headers=auth_headers(token))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["order_status"] == "pending"
    assert body["payment_status"] == "pending"
    assert body["payment"]["provider"] == "stub"
    assert body["payment"]["amount"] == 5100
    assert body["payment"]["currency"] == "INR"

    with session_local() as db:
        order = db.get(Order, body["order_id"])
        assert order.gateway_order_id == body["payment"]["gateway_order_id"]
        assert order.gateway_receipt == order.id
        assert order.gateway_payment_id is None

    retry = client.post(f"/checkout/orders/{body['order_id']}/payment", headers=auth_headers(token))
    assert retry.status_code == 200, retry.text
    assert retry.json()["payment"]["gateway_order_id"] == body["payment"]["gateway_order_id"]

    listing = client.get("/orders", headers=auth_headers(token)).json()
    assert [order["id"] for order in listing["items"]] == [body["order_id"]]


class _FailingGateway:
    name = "razorpay"
    key_id = "rzp_test_key"

    def create_order(self, request: GatewayOrderRequest):
        raise GatewayError("Gateway order creation failed after 3 attempts: HTTP 503")


def test_gateway_outage_keeps_order_and_allows_retry(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", stock=4)
    _fill_guest_cart(client, {"prd_shirt": 1})

    app.dependency_overrides[get_gateway] = lambda: _FailingGateway()
    res = client.post("/checkout", json={**CONTACT, "payment_method": "online"}, headers=guest_headers())
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["payment"] is None
    assert "HTTP 503" in body["payment_error"]
    assert _snapshot(session_local)["stock"] == {"prd_shirt": 3}

    failed_retry = client.post(f"/checkout/orders/{body['order_id']}/payment", headers=guest_headers())
    assert failed_retry.status_code == 502
    assert failed_retry.json()["error"]["code"] == "bad_gateway"

    app.dependency_overrides[get_gateway] = lambda: StubPaymentGateway()
    retry = client.post(f"/checkout/orders/{body['order_id']}/payment", headers=guest_headers())
    assert retry.status_code == 200, retry.text
    assert retry.json()["payment"]["gateway_order_id"].startswith("order_")

    other_guest = client.post(
        f"/checkout/orders/{body['order_id']}/payment",
        headers=guest_headers("someone-else-0001"),
    )
    assert other_guest.status_code == 404


def test_stock_decrement_refuses_to_go_below_zero(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", stock=2)

    with session_local() as db:
        assert db.get(Product, "prd_shirt").stock_quantity == 2
        with unit_of_work(db):
            assert decrement_stock(db, product_id="prd_shirt", quantity=2) is True
        with unit_of_work(db):
            assert decrement_stock(db, product_id="prd_shirt", quantity=1) is False
        assert get_stock(db, "prd_shirt") == 0


def test_concurrent_checkout_sold_out_between_read_and_decrement(test_context, monkeypatch):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", stock=1)
    identity = RequestIdentity(session_id=GUEST_SESSION)

    with session_local() as db:
        with unit_of_work(db):
            CartStore(db, identity).add("prd_shirt", 1)

    # Another buyer takes the last unit after our stock check but before our decrement.
    import storefront.services.checkout_service as checkout_service

    real_decrement = checkout_service.decrement_stock

    def decrement_after_competitor(db, *, product_id, quantity):
        with session_local() as other:
            with unit_of_work(other):
                assert real_decrement(other, product_id=product_id, quantity=1)
        return real_decrement(db, product_id=product_id, quantity=quantity)

    monkeypatch.setattr(checkout_service, "decrement_stock", decrement_after_competitor)

    with session_local() as db:
        contact = CheckoutContact(
            customer_name="Asha Rao",
            email="asha@example.com",
            address="12 MG Road",
            payment_method="cod",
        )
        with pytest.raises(CheckoutRejected) as exc_info:
            place_order(db, identity=identity, contact=contact, currency="INR")
        assert exc_info.value.code == "insufficient_stock"

    snapshot = _snapshot(session_local)
    assert snapshot["orders"] == 0
    assert snapshot["stock"] == {"prd_shirt": 0}
    with session_local() as db:
        assert len(CartStore(db, identity).lines()) == 1


def test_razorpay_gateway_retries_server_errors_with_same_receipt():
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append({"body": body, "auth": request.headers.get("authorization")})
        if len(requests) < 3:
            return httpx.Response(503, json={"error": "unavailable"})
        return httpx.Response(200, json={"id": "order_Rz123", "amount": body["amount"], "currency": "INR"})

    gateway = RazorpayGateway(
        key_id="rzp_test_key",
        key_secret="rzp_secret",
        base_url="https://api.razorpay.test",
        max_attempts=3,
        retry_backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    result = gateway.create_order(GatewayOrderRequest(amount=Decimal("51.00"), currency="INR", receipt="ord_1"))

    assert result.gateway_order_id == "order_Rz123"
    assert result.amount_minor == 5100
    assert len(requests) == 3
    assert {req["body"]["receipt"] for req in requests} == {"ord_1"}
    assert requests[0]["body"] == {"amount": 5100, "currency": "INR", "receipt": "ord_1", "payment_capture": 1}
    assert requests[0]["auth"].startswith("Basic ")


def test_razorpay_gateway_does_not_retry_client_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error": {"description": "bad amount"}})

    gateway = RazorpayGateway(
        key_id="rzp_test_key",
        key_secret="rzp_secret",
        base_url="https://api.razorpay.test",
        max_attempts=3,
        retry_backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(GatewayError):
        gateway.create_order(GatewayOrderRequest(amount=Decimal("1.00"), currency="INR", receipt="ord_2"))
    assert len(calls) == 1


def test_razorpay_gateway_gives_up_after_transport_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    gateway = RazorpayGateway(
        key_id="rzp_test_key",
        key_secret="rzp_secret",
        base_url="https://api.razorpay.test",
        max_attempts=2,
        retry_backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(GatewayError, match="after 2 attempts"):
        gateway.create_order(GatewayOrderRequest(amount=Decimal("1.00"), currency="INR", receipt="ord_3"))
    assert len(calls) == 2


def test_stub_gateway_is_deterministic_per_receipt():
    gateway = StubPaymentGateway()
    first = gateway.create_order(GatewayOrderRequest(amount=Decimal("10.005"), currency="INR", receipt="ord_9"))
    second = gateway.create_order(GatewayOrderRequest(amount=Decimal("10.005"), currency="INR", receipt="ord_9"))
    assert first == second
    assert first.amount_minor == 1001
