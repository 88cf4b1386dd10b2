from typing import Any, Dict, List, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from pymongo.database import Database

from auth import Principal, get_current_user
from database import get_db, now, oid, serialize_doc
from pricing import cart_subtotal
from schemas import CartItem as CartItemSchema


router = APIRouter(prefix="/api/cart", tags=["cart"])

POPULATED_FIELDS = ("title", "price", "image", "stock", "discount_percentage")


def _live_products(db: Database, items: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    ids = [ObjectId(it["product_id"]) for it in items if ObjectId.is_valid(it.get("product_id", ""))]
    if not ids:
        return {}
    docs = db["product"].find({"_id": {"$in": ids}})
    return {str(d["_id"]): {"id": str(d["_id"]), **{f: d.get(f) for f in POPULATED_FIELDS}} for d in docs}


def populate_cart(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the live product to every line and compute the subtotal.

    The stored snapshot fields stay as they were when the line was added.
    """
    cart = serialize_doc(cart)
    products = _live_products(db, cart.get("items", []))
    items = []
    for it in cart.get("items", []):
        items.append({**it, "product": products.get(it["product_id"])})
    cart["items"] = items
    cart["subtotal"] = cart_subtotal(
        (it["product"]["price"], it["product"].get("discount_percentage"), it["quantity"]) if it["product"]
        else (it["price"], 0, it["quantity"])
        for it in items
    )
    return cart


def _empty_cart(user_id: str) -> Dict[str, Any]:
    return {"user_id": user_id, "items": [], "subtotal": 0.0}


def _save_items(db: Database, user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
    stamp = now()
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
        upsert=True,
    )
    return populate_cart(db, db["cart"].find_one({"user_id": user_id}))


def _find_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": oid(product_id, "Product ID")})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found.")
    return product


# Services

def get_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return _empty_cart(user_id)
    return populate_cart(db, cart)


def add_item(db: Database, user_id: str, product_id: str, quantity: int) -> Tuple[Dict[str, Any], bool]:
    """Add ``quantity`` of a product, merging into an existing line. Returns (cart, created)."""
    product = _find_product(db, product_id)
    product_id = str(product["_id"])
    if product["stock"] < quantity:
        raise HTTPException(status_code=400, detail=f"Not enough stock for {product['title']}. Available: {product['stock']}")

    cart = db["cart"].find_one({"user_id": user_id})
    items = list(cart.get("items", [])) if cart else []
    for it in items:
        if it["product_id"] == product_id:
            current = int(it["quantity"])
            if product["stock"] < current + quantity:
                raise HTTPException(status_code=400, detail=f"Cannot add more. Only {product['stock'] - current} more of {product['title']} available.")
            it["quantity"] = current + quantity
            break
    else:
        items.append(CartItemSchema(
            product_id=product_id,
            product_title=product["title"],
            product_image=product["image"],
            price=product["price"],
            quantity=quantity,
        ).model_dump())
    return _save_items(db, user_id, items), cart is None


def update_item_quantity(db: Database, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        raise HTTPException(status_code=404, detail="Cart not found for this user.")
    items = list(cart.get("items", []))
    line = next((it for it in items if it["product_id"] == product_id), None)
    if line is None:
        raise HTTPException(status_code=404, detail="Item not found in cart.")
    if quantity <= 0:
        return remove_item(db, user_id, product_id)
    product = _find_product(db, product_id)
    if product["stock"] < quantity:
        raise HTTPException(status_code=400, detail=f"Not enough stock for {product['title']}. Available: {product['stock']}")
    line["quantity"] = quantity
    return _save_items(db, user_id, items)


def remove_item(db: Database, user_id: str, product_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return _empty_cart(user_id)
    items = [it for it in cart.get("items", []) if it["product_id"] != product_id]
    return _save_items(db, user_id, items)


def clear_cart(db: Database, user_id: str) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart:
        return {"message": "Cart not found for this user, nothing to clear.", "cart": _empty_cart(user_id)}
    return {"message": "Cart cleared successfully.", "cart": _save_items(db, user_id, [])}


# Cart
class AddCartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateCartItem(BaseModel):
    quantity: int


@router.get("")
def get_cart_route(current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return get_cart(db, current_user.id)


@router.post("")
def add_to_cart(item: AddCartItem, response: Response, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    cart, created = add_item(db, current_user.id, item.product_id, item.quantity)
    if created:
        response.status_code = 201
    return cart


# Registered before /{product_id} so "clear" is not taken for an id
@router.delete("/clear")
def clear_cart_route(current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return clear_cart(db, current_user.id)


@router.put("/{product_id}")
def update_cart_item(product_id: str, item: UpdateCartItem, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return update_item_quantity(db, current_user.id, product_id, item.quantity)


@router.delete("/{product_id}")
def remove_cart_item(product_id: str, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return remove_item(db, current_user.id, product_id)
