import logging
import os
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import cart
import catalog
import orders
import reviews
import users
import wishlist

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

log = logging.getLogger("storefront")


def setup_logging():
    root = logging.getLogger()
    if any(getattr(h, "_storefront", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    handler._storefront = True
    root.addHandler(handler)
    root.setLevel(LOG_LEVEL)


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.catalog_fallback = catalog.load_fixture()
    if database.db is None:
        log.warning("DATABASE_URL not set; only the fixture catalog is available")
    else:
        try:
            database.ensure_indexes(database.db)
            catalog.seed_products(database.db, app.state.catalog_fallback)
        except PyMongoError as e:
            log.error("Database setup failed, continuing without seeding: %s", e)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(catalog.router)
app.include_router(cart.router)
app.include_router(orders.router)
app.include_router(orders.checkout_router)
app.include_router(reviews.router)
app.include_router(wishlist.router)
app.include_router(users.router)


# Errors are rendered as {"message": ...}
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{field}: {err['msg']}" if field else err["msg"])
    return JSONResponse(status_code=400, content={"message": "; ".join(problems) or "Invalid request"})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    log.warning("Duplicate key on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={"message": "Duplicate entry"})


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    log.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"message": "Server Error"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Server Error"})


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if database.DATABASE_URL else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
