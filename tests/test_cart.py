from sqlalchemy import select

from conftest import GUEST_SESSION, auth_headers, guest_headers, login, seed_product, seed_user
from storefront.core.security_current import RequestIdentity
from storefront.db.unit_of_work import unit_of_work
from storefront.models.cart import SessionCart
from storefront.models.product import Product
from storefront.services.cart_service import CartStore, merge_session_into_persisted


def _quantities(cart_json: dict) -> dict[str, int]:
    return {item["product_id"]: item["quantity"] for item in cart_json["items"]}


def test_guest_cart_add_change_and_remove(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", price="25.50")
    seed_product(session_local, product_id="prd_scarf", name="Silk Scarf", price="12.00")

    res = client.post("/cart/items", json={"product_id": "prd_shirt", "quantity": 2}, headers=guest_headers())
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["source"] == "session"
    assert _quantities(body) == {"prd_shirt": 2}
    assert body["total"] == 51.0

    client.post("/cart/items", json={"product_id": "prd_scarf"}, headers=guest_headers())
    client.post("/cart/items", json={"product_id": "prd_shirt", "quantity": 1}, headers=guest_headers())
    body = client.get("/cart", headers=guest_headers()).json()
    assert [item["product_id"] for item in body["items"]] == ["prd_shirt", "prd_scarf"]
    assert _quantities(body) == {"prd_shirt": 3, "prd_scarf": 1}
    assert body["item_count"] == 4

    body = client.post("/cart/items/prd_scarf/decrease", headers=guest_headers()).json()
    assert _quantities(body) == {"prd_shirt": 3}

    body = client.post("/cart/items/prd_shirt/increase", headers=guest_headers()).json()
    assert _quantities(body) == {"prd_shirt": 4}

    body = client.delete("/cart/items/prd_shirt", headers=guest_headers()).json()
    assert body["items"] == []
    assert body["total"] == 0.0


def test_guest_carts_are_isolated_by_session(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt")

    client.post("/cart/items", json={"product_id": "prd_shirt"}, headers=guest_headers("guest-session-aaaa1"))
    other = client.get("/cart", headers=guest_headers("guest-session-bbbb2")).json()
    assert other["items"] == []


def test_new_guest_gets_session_id_header(test_context):
    client, session_local = test_context
    res = client.get("/cart")
    assert res.status_code == 200
    assert len(res.headers["X-Session-Id"]) >= 16


def test_adding_unknown_or_inactive_product_is_404(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_retired", name="Retired Tee", active=False)

    missing = client.post("/cart/items", json={"product_id": "prd_missing"}, headers=guest_headers())
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "not_found"

    retired = client.post("/cart/items", json={"product_id": "prd_retired"}, headers=guest_headers())
    assert retired.status_code == 404


def test_signed_in_cart_is_persisted_and_uses_live_prices(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt", price="20.00")
    seed_user(session_local, email="asha@example.com")
    token = login(client, email="asha@example.com").json()["access_token"]

    res = client.post("/cart/items", json={"product_id": "prd_shirt", "quantity": 2}, headers=auth_headers(token))
    assert res.status_code == 200, res.text
    assert res.json()["source"] == "persisted"

    with session_local() as db:
        db.get(Product, "prd_shirt").price = 22
        db.commit()

    body = client.get("/cart", headers=auth_headers(token)).json()
    assert body["items"][0]["price"] == 22.0
    assert body["total"] == 44.0

    body = client.delete("/cart", headers=auth_headers(token)).json()
    assert body["items"] == []


def test_login_merges_guest_cart_into_empty_account_cart(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt")
    seed_user(session_local, email="asha@example.com")

    client.post("/cart/items", json={"product_id": "prd_shirt", "quantity": 2}, headers=guest_headers())

    res = login(client, email="asha@example.com", session_id=GUEST_SESSION)
    assert res.status_code == 200, res.text
    assert res.json()["merged_cart_items"] == 1
    token = res.json()["access_token"]

    body = client.get("/cart", headers=auth_headers(token, GUEST_SESSION)).json()
    assert body["source"] == "persisted"
    assert _quantities(body) == {"prd_shirt": 2}

    with session_local() as db:
        assert db.execute(
            select(SessionCart).where(SessionCart.session_id == GUEST_SESSION)
        ).scalar_one_or_none() is None

    again = login(client, email="asha@example.com", session_id=GUEST_SESSION)
    assert again.json()["merged_cart_items"] == 0
    body = client.get("/cart", headers=auth_headers(token)).json()
    assert _quantities(body) == {"prd_shirt": 2}


def test_merge_sums_matching_lines_and_appends_new_ones(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt")
    seed_product(session_local, product_id="prd_scarf", name="Silk Scarf")
    user_id = seed_user(session_local, email="asha@example.com")

    with session_local() as db:
        with unit_of_work(db):
            CartStore(db, RequestIdentity(session_id="account-session-01", user_id=user_id)).add("prd_shirt", 1)
        with unit_of_work(db):
            guest = CartStore(db, RequestIdentity(session_id=GUEST_SESSION))
            guest.add("prd_shirt", 2)
            guest.add("prd_scarf", 1)

        with unit_of_work(db):
            merged = merge_session_into_persisted(db, session_id=GUEST_SESSION, user_id=user_id)
        assert merged == 2

        lines = CartStore(db, RequestIdentity(session_id=GUEST_SESSION, user_id=user_id)).lines()
        assert [(line.product_id, line.quantity) for line in lines] == [("prd_shirt", 3), ("prd_scarf", 1)]

        with unit_of_work(db):
            assert merge_session_into_persisted(db, session_id=GUEST_SESSION, user_id=user_id) == 0


def test_merge_drops_products_removed_from_catalog(test_context):
    client, session_local = test_context
    seed_product(session_local, product_id="prd_shirt", name="Linen Shirt")
    user_id = seed_user(session_local, email="asha@example.com")

    with session_local() as db:
        with unit_of_work(db):
            db.add(
                SessionCart(
                    session_id=GUEST_SESSION,
                    items_json=[
                        {"product_id": "prd_gone", "name": "Gone", "price": "5.00", "quantity": 1},
                        {"product_id": "prd_shirt", "name": "Linen Shirt", "price": "10.00", "quantity": 1},
                    ],
                )
            )
        with unit_of_work(db):
            merged = merge_session_into_persisted(db, session_id=GUEST_SESSION, user_id=user_id)
        assert merged == 1
