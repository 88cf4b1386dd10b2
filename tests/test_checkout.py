from pricing import DELIVERY_CHARGE

DELIVERY = {
    "customer_name": "Alice",
    "physical_address": "12 Road, Dhaka",
    "phone": "01700000000",
    "payment_method": "Cash on Delivery",
}


def add(client, headers, product_id, quantity):
    return client.post("/api/cart", json={"product_id": product_id, "quantity": quantity}, headers=headers)


def test_quote_uses_effective_prices_and_coupon(client, user_headers, make_product):
    add(client, user_headers, make_product("Lamp", price=100, discount_percentage=25, stock=5), 2)
    add(client, user_headers, make_product("Chair", price=10, stock=5), 1)

    quote = client.get("/api/checkout/quote", headers=user_headers).json()
    assert quote["subtotal"] == 160.0
    assert quote["item_count"] == 3
    assert quote["total"] == round(160.0 + DELIVERY_CHARGE, 2)

    quote = client.get("/api/checkout/quote", params={"coupon_code": "SAVE10"}, headers=user_headers).json()
    assert quote["discount_amount"] == 16.0
    assert client.get("/api/checkout/quote", params={"coupon_code": "BOGUS"}, headers=user_headers).status_code == 400


def test_checkout_places_every_line(client, user_headers, make_product, db):
    add(client, user_headers, make_product("Lamp", price=100, discount_percentage=25, stock=5), 2)
    add(client, user_headers, make_product("Chair", price=10, stock=3), 3)

    res = client.post("/api/checkout", json={**DELIVERY, "coupon_code": "freeship"}, headers=user_headers)
    assert res.status_code == 201
    session = res.json()
    assert session["subtotal"] == 180.0
    assert session["discount_amount"] == 9.0
    assert session["delivery_charge"] == 0
    assert session["total"] == 171.0
    assert session["coupon_code"] == "FREESHIP"
    assert len(session["orders"]) == 2
    assert sorted(session["order_ids"]) == sorted(o["id"] for o in session["orders"])

    lamp_order = next(o for o in session["orders"] if o["product_title"] == "Lamp")
    assert lamp_order["unit_price"] == 75.0
    assert lamp_order["total_item_price"] == 150.0
    assert lamp_order["checkout_id"] == session["id"]

    assert db["product"].find_one({"title": "Lamp"})["stock"] == 3
    assert db["product"].find_one({"title": "Chair"})["stock"] == 0
    assert client.get("/api/cart", headers=user_headers).json()["items"] == []


def test_checkout_is_all_or_nothing(client, user_headers, make_product, db):
    lamp = make_product("Lamp", stock=5)
    chair = make_product("Chair", stock=3)
    add(client, user_headers, lamp, 2)
    add(client, user_headers, chair, 3)
    # someone else buys a chair after it went into the cart
    db["product"].update_one({"title": "Chair"}, {"$set": {"stock": 2}})

    res = client.post("/api/checkout", json=DELIVERY, headers=user_headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Not enough stock for Chair. Available: 2"
    assert db["product"].find_one({"title": "Lamp"})["stock"] == 5
    assert db["product"].find_one({"title": "Chair"})["stock"] == 2
    assert db["order"].count_documents({}) == 0
    assert db["checkout"].count_documents({}) == 0
    assert len(client.get("/api/cart", headers=user_headers).json()["items"]) == 2


def test_checkout_with_deleted_product_rolls_back(client, user_headers, make_product, db):
    lamp = make_product("Lamp", stock=5)
    chair = make_product("Chair", stock=5)
    add(client, user_headers, lamp, 1)
    add(client, user_headers, chair, 1)
    db["product"].delete_one({"title": "Chair"})

    res = client.post("/api/checkout", json=DELIVERY, headers=user_headers)
    assert res.status_code == 404
    assert db["product"].find_one({"title": "Lamp"})["stock"] == 5


def test_checkout_rejects_empty_cart_and_bad_coupon(client, user_headers, make_product, db):
    assert client.post("/api/checkout", json=DELIVERY, headers=user_headers).status_code == 400
    add(client, user_headers, make_product("Lamp", stock=5), 1)
    res = client.post("/api/checkout", json={**DELIVERY, "coupon_code": "nope"}, headers=user_headers)
    assert res.status_code == 400
    assert db["product"].find_one({"title": "Lamp"})["stock"] == 5


def test_checkout_electronic_payment_status(client, user_headers, make_product):
    add(client, user_headers, make_product("Lamp", stock=5), 1)
    body = {**DELIVERY, "payment_method": "bKash", "transaction_id": "TX9", "sender_number": "01900000000"}
    res = client.post("/api/checkout", json=body, headers=user_headers)
    assert res.status_code == 201
    assert res.json()["orders"][0]["status"] == "Payment Pending"


def test_quote_matches_charged_total_for_fractional_discounts(client, user_headers, make_product):
    add(client, user_headers, make_product("Lamp", price=9.99, discount_percentage=15, stock=20), 10)

    cart = client.get("/api/cart", headers=user_headers).json()
    quote = client.get("/api/checkout/quote", headers=user_headers).json()
    session = client.post("/api/checkout", json=DELIVERY, headers=user_headers).json()

    assert cart["subtotal"] == quote["subtotal"] == session["subtotal"] == 84.9
    assert quote["total"] == session["total"] == round(84.9 + DELIVERY_CHARGE, 2)
    assert session["orders"][0]["unit_price"] == 8.49
    assert session["orders"][0]["total_item_price"] == 84.9
