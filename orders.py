import logging
from typing import Any, Dict, List, Optional, get_args

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import Principal, can_access_user_resource, get_current_user, require_admin
from cart import get_cart
from database import create_document, get_db, get_documents, now, oid, serialize_doc
from pricing import checkout_totals, find_coupon, line_total, unit_price
from schemas import (
    ELECTRONIC_PAYMENT_METHODS, Checkout as CheckoutSchema, Order as OrderSchema,
    OrderStatus, PaymentMethod,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])
checkout_router = APIRouter(prefix="/api/checkout", tags=["checkout"])

ORDER_STATUSES = get_args(OrderStatus)


class DeliveryDetails(BaseModel):
    customer_name: str = Field(..., min_length=1)
    physical_address: str = Field(..., min_length=1)
    map_embed_link: str = ""
    phone: str = Field(..., min_length=1)
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    sender_number: Optional[str] = None

    @model_validator(mode="after")
    def check_payment_reference(self):
        if self.payment_method in ELECTRONIC_PAYMENT_METHODS:
            if not self.transaction_id or not self.sender_number:
                raise ValueError(f"Transaction ID and sender number are required for {self.payment_method} payments")
        else:
            self.transaction_id = None
            self.sender_number = None
        return self


class OrderIn(DeliveryDetails):
    product_id: str
    product_title: str = Field(..., min_length=1)
    product_image: str = Field(..., min_length=1)
    unit_price: float = Field(..., ge=0)
    ordered_quantity: int = Field(..., ge=1)
    total_item_price: float = Field(..., ge=0)
    status: Optional[OrderStatus] = None


class CheckoutIn(DeliveryDetails):
    coupon_code: Optional[str] = None


class StatusUpdate(BaseModel):
    status: str


def initial_status(payment_method: str) -> str:
    return "Payment Pending" if payment_method in ELECTRONIC_PAYMENT_METHODS else "Pending"


def reserve_stock(db: Database, product_id: str, quantity: int) -> Dict[str, Any]:
    """Atomically take ``quantity`` units; returns the product after the decrement."""
    obj_id = oid(product_id, "Product ID")
    product = db["product"].find_one_and_update(
        {"_id": obj_id, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if product:
        return product
    current = db["product"].find_one({"_id": obj_id})
    if not current:
        raise HTTPException(status_code=404, detail="Product not found.")
    raise HTTPException(status_code=400, detail=f"Not enough stock for {current['title']}. Available: {current['stock']}")


def release_stock(db: Database, product_id: str, quantity: int) -> None:
    db["product"].update_one({"_id": ObjectId(product_id)}, {"$inc": {"stock": quantity}, "$set": {"updated_at": now()}})


# Services

def place_order(db: Database, principal: Principal, data: OrderIn) -> Dict[str, Any]:
    reserve_stock(db, data.product_id, data.ordered_quantity)
    order = OrderSchema(
        user_id=principal.id,
        email=principal.email,
        customer_name=data.customer_name,
        product_id=data.product_id,
        product_title=data.product_title,
        product_image=data.product_image,
        unit_price=data.unit_price,
        ordered_quantity=data.ordered_quantity,
        total_item_price=round(data.unit_price * data.ordered_quantity, 2),
        physical_address=data.physical_address,
        map_embed_link=data.map_embed_link,
        phone=data.phone,
        payment_method=data.payment_method,
        transaction_id=data.transaction_id,
        sender_number=data.sender_number,
        status=data.status or initial_status(data.payment_method),
    )
    try:
        order_id = create_document(db, "order", order)
    except PyMongoError:
        logger.error("Saving order for product %s failed; releasing %d reserved units", data.product_id, data.ordered_quantity)
        release_stock(db, data.product_id, data.ordered_quantity)
        raise
    logger.info("Order %s placed by %s for %d x %s", order_id, principal.id, data.ordered_quantity, data.product_id)
    return serialize_doc(db["order"].find_one({"_id": ObjectId(order_id)}))


def checkout(db: Database, principal: Principal, data: CheckoutIn) -> Dict[str, Any]:
    """Turn the caller's cart into orders, all or nothing."""
    find_coupon(data.coupon_code)
    cart = db["cart"].find_one({"user_id": principal.id})
    items = cart.get("items", []) if cart else []
    if not items:
        raise HTTPException(status_code=400, detail="Cart is empty")

    checkout_id = ObjectId()
    reserved: List[tuple] = []
    order_ids: List[str] = []
    try:
        orders = []
        for it in items:
            product = reserve_stock(db, it["product_id"], it["quantity"])
            reserved.append((it["product_id"], it["quantity"]))
            price = unit_price(product["price"], product.get("discount_percentage"))
            orders.append(OrderSchema(
                user_id=principal.id,
                email=principal.email,
                customer_name=data.customer_name,
                product_id=it["product_id"],
                product_title=product["title"],
                product_image=product["image"],
                unit_price=price,
                ordered_quantity=it["quantity"],
                total_item_price=line_total(product["price"], product.get("discount_percentage"), it["quantity"]),
                physical_address=data.physical_address,
                map_embed_link=data.map_embed_link,
                phone=data.phone,
                payment_method=data.payment_method,
                transaction_id=data.transaction_id,
                sender_number=data.sender_number,
                status=initial_status(data.payment_method),
                checkout_id=str(checkout_id),
            ))
        totals = checkout_totals(sum(o.total_item_price for o in orders), data.coupon_code)
        for order in orders:
            order_ids.append(create_document(db, "order", order))
        session = CheckoutSchema(
            user_id=principal.id,
            order_ids=order_ids,
            coupon_code=data.coupon_code.strip().upper() if data.coupon_code else None,
            payment_method=data.payment_method,
            **totals,
        ).model_dump()
        session["_id"] = checkout_id
        create_document(db, "checkout", session)
    except Exception:
        for product_id, quantity in reserved:
            release_stock(db, product_id, quantity)
        if order_ids:
            db["order"].delete_many({"_id": {"$in": [ObjectId(i) for i in order_ids]}})
        logger.error("Checkout %s for %s failed; released %d reservations", checkout_id, principal.id, len(reserved))
        raise

    db["cart"].update_one({"user_id": principal.id}, {"$set": {"items": [], "updated_at": now()}})
    logger.info("Checkout %s placed %d orders for %s, total %.2f", checkout_id, len(order_ids), principal.id, totals["total"])
    result = serialize_doc(db["checkout"].find_one({"_id": checkout_id}))
    result["orders"] = [serialize_doc(o) for o in get_documents(db, "order", {"checkout_id": str(checkout_id)})]
    return result


def quote_checkout(db: Database, principal: Principal, coupon_code: Optional[str] = None) -> Dict[str, Any]:
    cart = get_cart(db, principal.id)
    totals = checkout_totals(cart["subtotal"], coupon_code)
    totals["item_count"] = sum(it["quantity"] for it in cart["items"])
    return totals


def list_user_orders(db: Database, uid: str) -> List[Dict[str, Any]]:
    return [serialize_doc(o) for o in get_documents(db, "order", {"user_id": uid}, newest_first=True)]


def list_orders(db: Database) -> List[Dict[str, Any]]:
    return [serialize_doc(o) for o in get_documents(db, "order", newest_first=True)]


def set_order_status(db: Database, order_id: str, status: str) -> Dict[str, Any]:
    obj_id = oid(order_id, "Order ID")
    if status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid order status provided.")
    order = db["order"].find_one_and_update(
        {"_id": obj_id},
        {"$set": {"status": status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not order:
        raise HTTPException(status_code=404, detail="Order not found.")
    logger.info("Order %s moved to %s", order_id, status)
    return serialize_doc(order)


# Orders
@router.post("", status_code=201)
def place_order_route(data: OrderIn, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return place_order(db, current_user, data)


@router.get("/user/{uid}")
def list_user_orders_route(uid: str, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    if not can_access_user_resource(current_user, uid):
        raise HTTPException(status_code=403, detail="Unauthorized: You can only view your own orders.")
    return list_user_orders(db, uid)


@router.get("")
def list_orders_route(current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return list_orders(db)


@router.put("/{order_id}/status")
def set_order_status_route(order_id: str, data: StatusUpdate, current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return set_order_status(db, order_id, data.status)


# Checkout
@checkout_router.get("/quote")
def quote_checkout_route(coupon_code: Optional[str] = None, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return quote_checkout(db, current_user, coupon_code)


@checkout_router.post("", status_code=201)
def checkout_route(data: CheckoutIn, current_user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return checkout(db, current_user, data)
