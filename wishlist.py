from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from pymongo.database import Database

from auth import Principal, can_access_user_resource, get_current_user
from database import create_document, get_db, get_documents, oid, serialize_doc
from schemas import Wishlist as WishlistSchema

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])

JOINED_FIELDS = ("title", "price", "image", "category")


class WishlistIn(BaseModel):
    product_id: str


def add_to_wishlist(db: Database, user_id: str, product_id: str) -> Dict[str, Any]:
    product_oid = oid(product_id, "Product ID")
    if not db["product"].find_one({"_id": product_oid}):
        raise HTTPException(status_code=404, detail="Product not found.")
    entry = WishlistSchema(user_id=user_id, product_id=str(product_oid))
    if db["wishlist"].find_one(entry.model_dump()):
        raise HTTPException(status_code=409, detail="Product already in wishlist.")
    # concurrent duplicates still hit the unique index (409)
    entry_id = create_document(db, "wishlist", entry)
    return serialize_doc(db["wishlist"].find_one({"_id": oid(entry_id)}))


def remove_from_wishlist(db: Database, user_id: str, product_id: str) -> None:
    res = db["wishlist"].delete_one({"user_id": user_id, "product_id": product_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found in wishlist.")


def list_wishlist(db: Database, user_id: str) -> List[Dict[str, Any]]:
    entries = get_documents(db, "wishlist", {"user_id": user_id}, newest_first=True)
    ids = [oid(e["product_id"]) for e in entries]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})} if ids else {}
    result = []
    for e in entries:
        product = products.get(e["product_id"])
        if product is None:
            # product deleted since it was wishlisted
            continue
        item = serialize_doc(e)
        item["product"] = {"id": e["product_id"], **{f: product.get(f) for f in JOINED_FIELDS}}
        result.append(item)
    return result


def wishlist_status(db: Database, user_id: str, product_id: str) -> bool:
    return db["wishlist"].find_one({"user_id": user_id, "product_id": product_id}) is not None


@router.post("", status_code=201)
def add_to_wishlist_route(data: WishlistIn, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    entry = add_to_wishlist(db, current_user.id, data.product_id)
    return {"message": "Product added to wishlist.", "wishlist_item": entry}


@router.delete("/{product_id}")
def remove_from_wishlist_route(product_id: str, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    remove_from_wishlist(db, current_user.id, product_id)
    return {"message": "Product removed from wishlist."}


@router.get("/user/{uid}")
def list_wishlist_route(uid: str, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    if not can_access_user_resource(current_user, uid):
        raise HTTPException(status_code=403, detail="Unauthorized: You can only view your own wishlist.")
    return list_wishlist(db, uid)


@router.get("/status/{product_id}")
def wishlist_status_route(product_id: str, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return {"is_wishlisted": wishlist_status(db, current_user.id, product_id)}
