from conftest import stk_callback
from shared.security import create_access_token
from services.order_service.models import Order
from services.product_service.models import Product
from services.reservation_service.service import ReservationService


async def test_buyer_routes_require_a_buyer_token(client):
    assert (await client.get("/api/buyer/orders")).status_code == 401

    bad = {"Authorization": "Bearer not-a-jwt"}
    assert (await client.get("/api/buyer/orders", headers=bad)).status_code == 401

    farmer = create_access_token({"sub": "3", "role": "farmer", "farmer_id": 3})
    resp = await client.get("/api/buyer/orders", headers={"Authorization": f"Bearer {farmer}"})
    assert resp.status_code == 403


async def test_dual_role_account_uses_active_role(client, make_product):
    product_id = await make_product()
    token = create_access_token({"sub": "11", "role": "farmer", "active_role": "buyer", "buyer_id": 11})

    resp = await client.post(
        "/api/buyer/orders",
        headers={"Authorization": f"Bearer {token}"},
        json={"items": [{"product_id": product_id, "quantity": 1}], "delivery_address": "Nyeri"},
    )
    assert resp.status_code == 201
    assert resp.json()["order"]["buyer_id"] == 11


async def test_order_detail_exposes_payment_state_for_polling(client, buyer_headers, checkout, make_product):
    product_id = await make_product(quantity=10)
    order_id = (await checkout(product_id, quantity=2)).json()["order"]["id"]

    order = (await client.get(f"/api/buyer/orders/{order_id}", headers=buyer_headers)).json()["order"]
    assert order["payment_status"] == "pending"
    assert order["reservation_released"] is False
    assert order["payment"]["transaction_reference"] == "ws_CO_0001"

    await client.post("/api/mpesa/callback", json=stk_callback("ws_CO_0001", receipt="PAID0001"))

    order = (await client.get(f"/api/buyer/orders/{order_id}", headers=buyer_headers)).json()["order"]
    assert order["payment_status"] == "paid"
    assert order["reservation_released"] is True
    assert order["payment"]["payment_status"] == "completed"
    assert order["payment"]["mpesa_transaction_id"] == "PAID0001"


async def test_orders_are_scoped_to_their_buyer(client, checkout, make_product):
    product_id = await make_product(quantity=10)
    order_id = (await checkout(product_id, quantity=1)).json()["order"]["id"]
    other = create_access_token({"sub": "99", "role": "buyer", "buyer_id": 99})
    headers = {"Authorization": f"Bearer {other}"}

    assert (await client.get(f"/api/buyer/orders/{order_id}", headers=headers)).status_code == 404
    assert (await client.put(f"/api/buyer/orders/{order_id}/cancel", headers=headers)).status_code == 404
    assert (await client.get("/api/buyer/orders", headers=headers)).json()["count"] == 0


async def test_list_orders_newest_first(client, buyer_headers, checkout, make_product):
    product_id = await make_product(quantity=10)
    first = (await checkout(product_id, quantity=1, phone=None)).json()["order"]["id"]
    second = (await checkout(product_id, quantity=2, phone=None)).json()["order"]["id"]

    body = (await client.get("/api/buyer/orders", headers=buyer_headers)).json()
    assert body["count"] == 2
    assert [o["id"] for o in body["orders"]] == [second, first]
    assert body["orders"][0]["item_count"] == 1


async def test_cancel_restores_stock_exactly_once(client, buyer_headers, checkout, make_product, fetch, reservation_of):
    product_id = await make_product(quantity=10)
    order_id = (await checkout(product_id, quantity=3)).json()["order"]["id"]

    resp = await client.put(f"/api/buyer/orders/{order_id}/cancel", headers=buyer_headers)
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    assert (await fetch(Product, product_id)).quantity_available == 10
    order = await fetch(Order, order_id)
    assert order.status == "cancelled"
    assert order.payment_status == "failed"
    assert (await reservation_of(order_id)).released is True

    resp = await client.put(f"/api/buyer/orders/{order_id}/cancel", headers=buyer_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Only pending orders can be cancelled"

    # A failure callback arriving afterwards leaves stock alone
    await client.post("/api/mpesa/callback", json=stk_callback("ws_CO_0001", result_code=1032))
    assert (await fetch(Product, product_id)).quantity_available == 10


async def test_paid_order_cannot_be_cancelled(client, buyer_headers, checkout, make_product, fetch):
    product_id = await make_product(quantity=10)
    order_id = (await checkout(product_id, quantity=3)).json()["order"]["id"]
    await client.post("/api/mpesa/callback", json=stk_callback("ws_CO_0001"))

    resp = await client.put(f"/api/buyer/orders/{order_id}/cancel", headers=buyer_headers)

    assert resp.status_code == 400
    assert (await fetch(Product, product_id)).quantity_available == 7


async def test_receipt_only_after_payment(client, buyer_headers, checkout, make_product):
    product_id = await make_product(quantity=10, name="Sukuma wiki", price=20.0)
    order_id = (await checkout(product_id, quantity=5)).json()["order"]["id"]

    resp = await client.post(f"/api/buyer/orders/{order_id}/receipt", headers=buyer_headers)
    assert resp.status_code == 409

    await client.post("/api/mpesa/callback", json=stk_callback("ws_CO_0001", amount=100, receipt="RCPT777"))

    resp = await client.post(f"/api/buyer/orders/{order_id}/receipt", headers=buyer_headers)
    assert resp.status_code == 202
    receipt = resp.json()["receipt"]
    assert receipt["mpesa_receipt"] == "RCPT777"
    assert receipt["total_amount"] == 100.0
    assert receipt["items"] == [
        {"product_id": product_id, "name": "Sukuma wiki", "quantity": 5, "price_per_unit": 20.0, "subtotal": 100.0}
    ]

    assert (await client.post("/api/buyer/orders/4040/receipt", headers=buyer_headers)).status_code == 404


async def test_cancel_loses_to_a_payment_confirmed_mid_request(client, buyer_headers, checkout, make_product, fetch, monkeypatch):
    product_id = await make_product(quantity=10)
    order_id = (await checkout(product_id, quantity=3)).json()["order"]["id"]

    real_release = ReservationService.release

    async def release_after_payment(db, order_id, reason, **kwargs):
        # The buyer's payment lands after the order was read but before the release runs
        await client.post("/api/mpesa/callback", json=stk_callback("ws_CO_0001"))
        return await real_release(db, order_id, reason, **kwargs)

    monkeypatch.setattr(ReservationService, "release", staticmethod(release_after_payment))

    resp = await client.put(f"/api/buyer/orders/{order_id}/cancel", headers=buyer_headers)

    assert resp.status_code == 400
    assert resp.json()["message"] == "Only pending orders can be cancelled"
    order = await fetch(Order, order_id)
    assert order.status == "pending"
    assert order.payment_status == "paid"
    assert (await fetch(Product, product_id)).quantity_available == 7
