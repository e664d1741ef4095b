from bson import ObjectId
from pymongo.errors import PyMongoError

import services


def order_payload(user_id, product_id, quantity=2, price=10, total=20, method="card"):
    return {
        "userId": user_id,
        "items": [{"productId": product_id, "quantity": quantity, "price": price}],
        "totalAmount": total,
        "paymentMethod": method,
    }


def test_place_order_clears_cart(client, db, make_product, make_cart, user_id):
    p1 = make_product(price=10)
    make_cart(user_id, [{"productId": p1["id"], "quantity": 2}])

    resp = client.post("/api/orders", json=order_payload(user_id, p1["id"]))

    assert resp.status_code == 201
    order = resp.json()["data"]
    assert order["totalAmount"] == 20
    assert order["orderStatus"] == "processing"
    assert order["paymentStatus"] == "pending"
    assert order["paymentMethod"] == "card"
    assert order["totalItems"] == 2
    assert "orderDate" in order

    cart = db["cart"].find_one({"userId": ObjectId(user_id)})
    assert cart["items"] == []
    assert cart["total"] == 0


def test_total_mismatch_creates_nothing(client, db, make_product, make_cart, user_id):
    p1 = make_product(price=10)
    make_cart(user_id, [{"productId": p1["id"], "quantity": 2}])

    resp = client.post("/api/orders", json=order_payload(user_id, p1["id"], total=25))

    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Total amount mismatch with item prices"
    assert body["errors"][0]["field"] == "totalAmount"
    assert db["order"].count_documents({}) == 0
    assert db["cart"].find_one({"userId": ObjectId(user_id)})["total"] == 20


def test_total_match_is_exact(client, db, make_product, user_id):
    p1 = make_product(price=0.1)
    resp = client.post("/api/orders", json=order_payload(user_id, p1["id"], quantity=3, price=0.1, total=0.3))
    assert resp.status_code == 400
    assert db["order"].count_documents({}) == 0


def test_order_with_missing_product_is_404(client, db, user_id):
    resp = client.post("/api/orders", json=order_payload(user_id, str(ObjectId())))
    assert resp.status_code == 404
    assert db["order"].count_documents({}) == 0


def test_order_rejects_unknown_payment_method(client, make_product, user_id):
    p1 = make_product()
    resp = client.post("/api/orders", json=order_payload(user_id, p1["id"], method="crypto"))
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == "paymentMethod"


def test_order_without_cart_still_succeeds(client, make_product, user_id):
    p1 = make_product()
    resp = client.post("/api/orders", json=order_payload(user_id, p1["id"], method="cash on delivery"))
    assert resp.status_code == 201


def test_cart_clear_failure_keeps_order(client, db, make_product, make_cart, user_id, monkeypatch):
    p1 = make_product(price=10)
    make_cart(user_id, [{"productId": p1["id"], "quantity": 2}])

    def boom(db, user_id):
        raise PyMongoError("connection reset")

    monkeypatch.setattr(services, "clear_cart", boom)
    resp = client.post("/api/orders", json=order_payload(user_id, p1["id"]))

    assert resp.status_code == 201
    assert db["order"].count_documents({}) == 1
    assert db["cart"].find_one({"userId": ObjectId(user_id)})["total"] == 20


def test_order_prices_are_a_snapshot(client, make_product, user_id):
    p1 = make_product(price=10)
    order = client.post("/api/orders", json=order_payload(user_id, p1["id"])).json()["data"]

    client.put(f"/api/products/{p1['id']}", json={"name": "Widget", "price": 99, "stock": 5})
    client.put(f"/api/orders/{order['id']}", json={"paymentStatus": "paid"})

    fetched = client.get(f"/api/orders/{order['id']}").json()["data"]
    assert fetched["items"][0]["price"] == 10
    assert fetched["totalAmount"] == 20


def test_update_order_status_and_payment(client, make_product, user_id):
    p1 = make_product()
    order = client.post("/api/orders", json=order_payload(user_id, p1["id"])).json()["data"]

    resp = client.put(f"/api/orders/{order['id']}", json={"status": "shipped", "paymentMethod": "bank transfer"})

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["orderStatus"] == "shipped"
    assert data["paymentMethod"] == "bank transfer"
    assert data["paymentStatus"] == "pending"


def test_update_order_validation(client, make_product, user_id):
    p1 = make_product()
    order = client.post("/api/orders", json=order_payload(user_id, p1["id"])).json()["data"]

    assert client.put(f"/api/orders/{order['id']}", json={}).status_code == 400
    assert client.put(f"/api/orders/{order['id']}", json={"status": "lost"}).status_code == 400
    assert client.put(f"/api/orders/{ObjectId()}", json={"status": "shipped"}).status_code == 404


def test_patch_order_status(client, make_product, user_id):
    p1 = make_product()
    order = client.post("/api/orders", json=order_payload(user_id, p1["id"])).json()["data"]

    resp = client.patch(f"/api/orders/{order['id']}/status", json={"status": "delivered"})

    assert resp.status_code == 200
    assert resp.json()["data"]["orderStatus"] == "delivered"


def test_list_user_orders(client, make_product, user_id):
    p1 = make_product()
    assert client.get(f"/api/orders/user/{user_id}").status_code == 404

    client.post("/api/orders", json=order_payload(user_id, p1["id"]))
    client.post("/api/orders", json=order_payload(str(ObjectId()), p1["id"]))

    resp = client.get(f"/api/orders/user/{user_id}")
    assert resp.status_code == 200
    assert resp.json()["count"] == 1
    assert client.get("/api/orders").json()["count"] == 2
    assert client.get("/api/orders", params={"userId": user_id}).json()["count"] == 1


def test_get_and_delete_order(client, db, make_product, user_id):
    p1 = make_product()
    order = client.post("/api/orders", json=order_payload(user_id, p1["id"])).json()["data"]

    assert client.get(f"/api/orders/{order['id']}").status_code == 200
    assert client.delete(f"/api/orders/{order['id']}").status_code == 200
    assert db["order"].count_documents({}) == 0
    assert client.delete(f"/api/orders/{order['id']}").status_code == 404
    assert client.get(f"/api/orders/{order['id']}").status_code == 404


def test_order_lines_carry_product_details_without_touching_snapshot(client, make_product, user_id):
    p1 = make_product(name="Lamp", price=10)
    p2 = make_product(name="Desk", price=5)
    payload = {
        "userId": user_id,
        "items": [{"productId": p1["id"], "quantity": 2, "price": 10}, {"productId": p2["id"], "quantity": 1, "price": 5}],
        "totalAmount": 25,
        "paymentMethod": "card",
    }
    created = client.post("/api/orders", json=payload).json()["data"]
    assert created["items"][0]["product"] == {"name": "Lamp", "price": 10}

    client.put(f"/api/products/{p1['id']}", json={"price": 15})
    client.delete(f"/api/products/{p2['id']}")

    order = client.get(f"/api/orders/user/{user_id}").json()["data"][0]
    assert order["items"][0]["price"] == 10
    assert order["items"][0]["product"] == {"name": "Lamp", "price": 15}
    assert order["items"][1]["product"] is None
    assert order["totalAmount"] == 25


def test_update_order_accepts_order_status_spelling(client, make_product, user_id):
    p1 = make_product()
    order = client.post("/api/orders", json=order_payload(user_id, p1["id"])).json()["data"]

    resp = client.put(f"/api/orders/{order['id']}", json={"orderStatus": "cancelled"})

    assert resp.json()["data"]["orderStatus"] == "cancelled"
