import logging

from jose import jwt

from auth import IdentityClaims, JoseIdentityProvider, Principal, can_access_user_resource, sync_shadow_user

from tests.conftest import SECRET, headers_for


def test_invalid_token_is_rejected(client):
    res = client.get("/api/cart", headers={"x-auth-token": "garbage"})
    assert res.status_code == 401
    assert res.json() == {"message": "Token is not valid or expired"}

    forged = jwt.encode({"sub": "u1"}, "other-secret", algorithm="HS256")
    assert client.get("/api/cart", headers={"x-auth-token": forged}).status_code == 401


def test_first_sight_creates_shadow_user(client, db, caplog):
    with caplog.at_level(logging.WARNING, logger="auth"):
        res = client.get("/api/cart", headers=headers_for("newbie", email="NewBie@Example.com", name="New Bie"))
    assert res.status_code == 200
    user = db["user"].find_one({"uid": "newbie"})
    assert user["role"] == "user"
    assert user["status"] == "active"
    assert user["email"] == "newbie@example.com"
    assert "newbie" in caplog.text

    client.get("/api/cart", headers=headers_for("newbie"))
    assert db["user"].count_documents({"uid": "newbie"}) == 1


def test_blocked_user_is_forbidden(client, db):
    db["user"].insert_one({"uid": "bad", "email": "bad@example.com", "name": "Bad", "role": "user", "status": "blocked"})
    res = client.get("/api/cart", headers=headers_for("bad"))
    assert res.status_code == 403


def test_provider_maps_claims():
    provider = JoseIdentityProvider(SECRET, ["HS256"], audience="storefront")
    token = jwt.encode({"user_id": "abc", "aud": "storefront", "email": "a@b.c", "name": "A", "picture": "p"}, SECRET, algorithm="HS256")
    assert provider.verify(token) == IdentityClaims(subject_id="abc", email="a@b.c", display_name="A", photo_url="p")


def test_sync_shadow_user_keeps_existing_row(db):
    db["user"].insert_one({"uid": "x", "email": "x@example.com", "name": "Stored", "role": "admin", "status": "active"})
    user = sync_shadow_user(db, IdentityClaims(subject_id="x", email="x@example.com", display_name="Claimed"))
    assert user["name"] == "Stored"
    assert user["role"] == "admin"


def test_sync_shadow_user_logs_only_when_it_creates(db, caplog):
    db["user"].insert_one({"uid": "other", "email": "taken@example.com", "name": "Other", "role": "user", "status": "active"})
    with caplog.at_level(logging.WARNING, logger="auth"):
        user = sync_shadow_user(db, IdentityClaims(subject_id="clash", email="taken@example.com"))
    assert user is None
    assert "created one" not in caplog.text


def test_can_access_user_resource():
    owner = Principal(id="u1", name="A")
    other = Principal(id="u2", name="B")
    admin = Principal(id="a", name="Admin", role="admin")
    assert can_access_user_resource(owner, "u1")
    assert not can_access_user_resource(other, "u1")
    assert can_access_user_resource(admin, "u1")
