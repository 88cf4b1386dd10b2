import copy
import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import ConnectionFailure

from auth import Principal, require_admin
from database import create_document, get_db, get_documents, get_optional_db, now, oid, serialize_doc
from schemas import Product as ProductSchema, Rating

logger = logging.getLogger(__name__)

PRODUCTS_FIXTURE = os.getenv("PRODUCTS_FIXTURE", os.path.join(os.path.dirname(os.path.abspath(__file__)), "products.json"))
ALL_CATEGORIES = "All"

router = APIRouter(prefix="/api/products", tags=["products"])


def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def fixture_id(index: int) -> str:
    """Deterministic ObjectId-shaped id so seeded rows and fallback reads agree."""
    return f"{index + 1:024x}"


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def fixture_to_product(index: int, raw: Dict[str, Any]) -> Dict[str, Any]:
    meta = raw.get("meta") or {}
    product = ProductSchema(
        title=raw["title"],
        slug=slugify(raw["title"]),
        price=raw["price"],
        description=raw["description"],
        category=raw["category"],
        image=raw.get("thumbnail") or (raw.get("images") or [""])[0],
        stock=raw.get("stock", 0),
        rating=Rating(rate=raw.get("rating", 0), count=len(raw.get("reviews") or [])),
    ).model_dump()
    product["_id"] = ObjectId(fixture_id(index))
    product["created_at"] = _parse_date(meta.get("createdAt")) or now()
    product["updated_at"] = _parse_date(meta.get("updatedAt")) or product["created_at"]
    return product


@dataclass(frozen=True)
class CatalogFallback:
    """Read-only copy of the bundled product fixture, served when the store is down."""

    products: Tuple[Dict[str, Any], ...] = ()

    def filter(self, category: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        items = list(self.products)
        if category and category != ALL_CATEGORIES:
            items = [p for p in items if p.get("category") == category]
        if search:
            needle = search.lower()
            items = [p for p in items if needle in p.get("title", "").lower() or needle in p.get("description", "").lower()]
        return [copy.deepcopy(p) for p in items]

    def get(self, product_id: str) -> Optional[Dict[str, Any]]:
        for p in self.products:
            if p["id"] == product_id:
                return copy.deepcopy(p)
        return None

    def documents(self) -> List[Dict[str, Any]]:
        """Fixture rows in storage shape, for seeding."""
        docs = []
        for p in self.products:
            doc = copy.deepcopy(p)
            doc["_id"] = ObjectId(doc.pop("id"))
            docs.append(doc)
        return docs


def load_fixture(path: str = PRODUCTS_FIXTURE) -> CatalogFallback:
    try:
        with open(path) as f:
            raw = json.load(f)
    except FileNotFoundError:
        logger.warning("Product fixture %s not found; catalog fallback is empty", path)
        return CatalogFallback()
    products = tuple(serialize_doc(fixture_to_product(i, p)) for i, p in enumerate(raw.get("products", [])))
    logger.info("Loaded %d fixture products from %s", len(products), path)
    return CatalogFallback(products=products)


def get_catalog_fallback(request: Request) -> CatalogFallback:
    fallback = getattr(request.app.state, "catalog_fallback", None)
    if fallback is None:
        fallback = load_fixture()
        request.app.state.catalog_fallback = fallback
    return fallback


def seed_products(db: Database, fallback: CatalogFallback) -> int:
    if not fallback.products:
        logger.info("No products found in the fixture to seed.")
        return 0
    count = db["product"].count_documents({})
    if count:
        logger.info("Database already contains %d products. Skipping seeding.", count)
        return 0
    docs = fallback.documents()
    db["product"].insert_many(docs)
    logger.info("Seeded %d products from the fixture", len(docs))
    return len(docs)


# Services

def list_products(db: Optional[Database], fallback: CatalogFallback, category: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
    if db is None:
        logger.warning("Database not configured; serving products from the fixture")
        return fallback.filter(category, search)
    query: Dict[str, Any] = {}
    if category and category != ALL_CATEGORIES:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    try:
        products = [serialize_doc(d) for d in get_documents(db, "product", query)]
    except ConnectionFailure as e:
        logger.warning("Database unreachable (%s); serving products from the fixture", e)
        return fallback.filter(category, search)
    logger.debug("Fetched %d products with filters category=%r search=%r", len(products), category, search)
    return products


def get_product(db: Optional[Database], fallback: CatalogFallback, product_id: str) -> Dict[str, Any]:
    obj_id = oid(product_id, "Product ID")
    product = None
    if db is None:
        product = fallback.get(product_id)
    else:
        try:
            product = serialize_doc(db["product"].find_one({"_id": obj_id}))
        except ConnectionFailure as e:
            logger.warning("Database unreachable (%s); looking up product %s in the fixture", e, product_id)
            product = fallback.get(product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def list_categories(db: Optional[Database], fallback: CatalogFallback) -> List[str]:
    try:
        if db is None:
            raise ConnectionFailure("Database is not configured")
        categories = db["product"].distinct("category")
    except ConnectionFailure:
        categories = {p["category"] for p in fallback.products}
    return [ALL_CATEGORIES] + sorted(categories)


# Products
class ProductIn(BaseModel):
    title: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    stock: int = Field(..., ge=0)
    discount_percentage: float = Field(0, ge=0, le=100)


class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    category: Optional[str] = None
    image: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)


def create_product(db: Database, data: ProductIn) -> Dict[str, Any]:
    title = data.title.strip()
    slug = slugify(title)
    if not slug:
        raise HTTPException(status_code=400, detail="Title must contain letters or digits")
    if db["product"].find_one({"slug": slug}):
        raise HTTPException(status_code=409, detail="Product with this title already exists (duplicate slug)")
    product = ProductSchema(slug=slug, **{**data.model_dump(), "title": title})
    product_id = create_document(db, "product", product)
    return serialize_doc(db["product"].find_one({"_id": ObjectId(product_id)}))


def update_product(db: Database, product_id: str, data: ProductUpdate) -> Dict[str, Any]:
    obj_id = oid(product_id, "Product ID")
    # presence, not truthiness: price=0 and stock=0 are valid updates
    update_dict = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    if not update_dict:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "title" in update_dict:
        update_dict["title"] = update_dict["title"].strip()
        update_dict["slug"] = slugify(update_dict["title"])
        if not update_dict["slug"]:
            raise HTTPException(status_code=400, detail="Title must contain letters or digits")
        clash = db["product"].find_one({"slug": update_dict["slug"], "_id": {"$ne": obj_id}})
        if clash:
            raise HTTPException(status_code=409, detail="Product with this title already exists (duplicate slug)")
    update_dict["updated_at"] = now()
    res = db["product"].update_one({"_id": obj_id}, {"$set": update_dict})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(db["product"].find_one({"_id": obj_id}))


def delete_product(db: Database, product_id: str) -> None:
    obj_id = oid(product_id, "Product ID")
    res = db["product"].delete_one({"_id": obj_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Deleted product %s", product_id)


@router.get("")
def list_products_route(category: Optional[str] = None, search: Optional[str] = None, db: Optional[Database] = Depends(get_optional_db), fallback: CatalogFallback = Depends(get_catalog_fallback)):
    return list_products(db, fallback, category, search)


@router.get("/categories")
def list_categories_route(db: Optional[Database] = Depends(get_optional_db), fallback: CatalogFallback = Depends(get_catalog_fallback)):
    return list_categories(db, fallback)


@router.get("/{product_id}")
def get_product_route(product_id: str, db: Optional[Database] = Depends(get_optional_db), fallback: CatalogFallback = Depends(get_catalog_fallback)):
    return get_product(db, fallback, product_id)


@router.post("", status_code=201)
def create_product_route(data: ProductIn, current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return create_product(db, data)


@router.put("/{product_id}")
def update_product_route(product_id: str, data: ProductUpdate, current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return update_product(db, product_id, data)


@router.delete("/{product_id}")
def delete_product_route(product_id: str, current_user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    delete_product(db, product_id)
    return {"message": "Product removed"}
