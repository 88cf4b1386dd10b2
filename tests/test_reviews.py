from tests.conftest import headers_for


def review(client, headers, product_id, rating=5, comment="Great lamp"):
    return client.post("/api/reviews", json={"product_id": product_id, "rating": rating, "comment": comment}, headers=headers)


def test_add_review_once_per_user_and_product(client, user_headers, make_product, db):
    lamp = make_product("Lamp")
    res = review(client, user_headers, lamp)
    assert res.status_code == 201
    assert res.json()["user_name"] == "Alice"
    assert res.json()["replies"] == []

    res = review(client, user_headers, lamp, rating=1)
    assert res.status_code == 409
    assert res.json()["message"] == "You have already reviewed this product."
    assert db["review"].count_documents({"user_id": "u1", "product_id": lamp}) == 1

    assert review(client, headers_for("u2"), lamp).status_code == 201


def test_review_validation(client, user_headers, make_product):
    lamp = make_product("Lamp")
    assert review(client, user_headers, "0" * 24).status_code == 404
    assert review(client, user_headers, lamp, rating=6).status_code == 400
    assert review(client, user_headers, lamp, comment="").status_code == 400
    assert review(client, user_headers, lamp, comment="x" * 1001).status_code == 400


def test_list_reviews_newest_first(client, user_headers, make_product):
    lamp = make_product("Lamp")
    review(client, user_headers, lamp, comment="first")
    review(client, headers_for("u2"), lamp, comment="second")

    res = client.get(f"/api/reviews/product/{lamp}")
    assert res.status_code == 200
    assert [r["comment"] for r in res.json()] == ["second", "first"]
    assert client.get("/api/reviews/product/bad").status_code == 400


def test_replies_are_appended(client, user_headers, make_product):
    lamp = make_product("Lamp")
    review_id = review(client, user_headers, lamp).json()["id"]

    bob = headers_for("u2", name="Bob", picture="https://img.example.com/bob.png")
    res = client.post(f"/api/reviews/{review_id}/reply", json={"reply_text": "Agreed"}, headers=bob)
    assert res.status_code == 201
    client.post(f"/api/reviews/{review_id}/reply", json={"reply_text": "Thanks!"}, headers=user_headers)

    replies = client.get(f"/api/reviews/product/{lamp}").json()[0]["replies"]
    assert [r["reply_text"] for r in replies] == ["Agreed", "Thanks!"]
    assert replies[0]["user_name"] == "Bob"
    assert replies[0]["user_photo_url"] == "https://img.example.com/bob.png"


def test_reply_to_missing_review(client, user_headers):
    res = client.post(f"/api/reviews/{'0' * 24}/reply", json={"reply_text": "hi"}, headers=user_headers)
    assert res.status_code == 404
    assert client.post("/api/reviews/bad/reply", json={"reply_text": "hi"}, headers=user_headers).status_code == 400
    assert client.post(f"/api/reviews/{'0' * 24}/reply", json={"reply_text": ""}, headers=user_headers).status_code == 400
