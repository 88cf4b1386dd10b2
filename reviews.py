from typing import Any, Dict, List

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from auth import Principal, get_current_user
from database import create_document, get_db, get_documents, now, oid, serialize_doc
from schemas import Reply as ReplySchema, Review as ReviewSchema

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


class ReviewIn(BaseModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=1000)


class ReplyIn(BaseModel):
    reply_text: str = Field(..., min_length=1, max_length=500)


def add_review(db: Database, principal: Principal, data: ReviewIn) -> Dict[str, Any]:
    product_oid = oid(data.product_id, "Product ID")
    if not db["product"].find_one({"_id": product_oid}):
        raise HTTPException(status_code=404, detail="Product not found.")
    product_id = str(product_oid)
    if db["review"].find_one({"user_id": principal.id, "product_id": product_id}):
        raise HTTPException(status_code=409, detail="You have already reviewed this product.")
    review = ReviewSchema(
        product_id=product_id,
        user_id=principal.id,
        user_name=principal.name,
        user_photo_url=principal.photo_url,
        rating=data.rating,
        comment=data.comment.strip(),
    )
    review_id = create_document(db, "review", review)
    return serialize_doc(db["review"].find_one({"_id": ObjectId(review_id)}))


def list_reviews(db: Database, product_id: str) -> List[Dict[str, Any]]:
    product_id = str(oid(product_id, "Product ID"))
    return [serialize_doc(r) for r in get_documents(db, "review", {"product_id": product_id}, newest_first=True)]


def add_reply(db: Database, principal: Principal, review_id: str, data: ReplyIn) -> Dict[str, Any]:
    reply = ReplySchema(
        user_id=principal.id,
        user_name=principal.name,
        user_photo_url=principal.photo_url,
        reply_text=data.reply_text.strip(),
        created_at=now(),
    )
    review = db["review"].find_one_and_update(
        {"_id": oid(review_id, "Review ID")},
        {"$push": {"replies": reply.model_dump()}},
        return_document=ReturnDocument.AFTER,
    )
    if not review:
        raise HTTPException(status_code=404, detail="Review not found.")
    return serialize_doc(review)


@router.post("", status_code=201)
def add_review_route(data: ReviewIn, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return add_review(db, current_user, data)


@router.get("/product/{product_id}")
def list_reviews_route(product_id: str, db: Database = Depends(get_db)):
    return list_reviews(db, product_id)


@router.post("/{review_id}/reply", status_code=201)
def add_reply_route(review_id: str, data: ReplyIn, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return add_reply(db, current_user, review_id, data)
