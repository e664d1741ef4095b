import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
import services
from database import get_db
from errors import ApiError, envelope, field_errors
from schemas import CartCreate, OrderCreate, OrderStatusUpdate, OrderUpdate, ProductCreate, ProductUpdate, UserCreate, UserUpdate

logging.basicConfig(
    stream=sys.stdout,
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            database.ensure_indexes(database.db)
        except PyMongoError as e:
            logger.error("Could not create indexes: %s", e)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; requests touching the store will fail")
    yield


app = FastAPI(title="Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers

@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = field_errors(exc.errors())
    logger.warning("Validation error for request %s: %s", request.url.path, errors)
    return JSONResponse(status_code=400, content=envelope(False, message="Validation failed", errors=errors))


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Store error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=envelope(False, message=str(exc)))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=envelope(False, message=str(exc)))


# Health
@app.get("/")
def read_root():
    return {"message": "Shop API backend running"}

@app.get("/test")
def test_database():
    resp = {
        "backend": "ok",
        "database": "not_configured",
        "database_url": "set" if os.getenv("DATABASE_URL") else "not_set",
        "database_name": "set" if os.getenv("DATABASE_NAME") else "not_set",
        "collections": [],
    }
    if database.db is None:
        return resp
    try:
        resp["collections"] = database.db.list_collection_names()[:10]
        resp["database"] = "ok"
    except PyMongoError as e:
        resp["database"] = f"error: {str(e)[:80]}"
    return resp


# Users
@app.get("/api/users")
def list_users(db: Database = Depends(get_db)):
    users = services.list_users(db)
    return envelope(True, data=users, count=len(users))

@app.get("/api/users/{user_id}")
def get_user(user_id: str, db: Database = Depends(get_db)):
    return envelope(True, data=services.get_user(db, user_id))

@app.post("/api/users", status_code=201)
def create_user(payload: UserCreate, db: Database = Depends(get_db)):
    return envelope(True, data=services.create_user(db, payload), message="User created successfully")

@app.put("/api/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, db: Database = Depends(get_db)):
    return envelope(True, data=services.update_user(db, user_id, payload))

@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, db: Database = Depends(get_db)):
    services.delete_user(db, user_id)
    return envelope(True, message="User deleted successfully")


# Products
@app.get("/api/products")
def list_products(db: Database = Depends(get_db)):
    products = services.list_products(db)
    return envelope(True, data=products, count=len(products))

@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return envelope(True, data=services.get_product(db, product_id))

@app.post("/api/products", status_code=201)
def create_product(payload: ProductCreate, db: Database = Depends(get_db)):
    return envelope(True, data=services.create_product(db, payload))

@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db)):
    return envelope(True, data=services.update_product(db, product_id, payload))

@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db)):
    services.delete_product(db, product_id)
    return envelope(True, message="Product deleted successfully")


# Carts
@app.get("/api/carts")
def list_carts(userId: Optional[str] = None, db: Database = Depends(get_db)):
    carts = services.list_carts(db, userId)
    return envelope(True, data=carts, count=len(carts))

@app.get("/api/carts/user/{user_id}")
def get_user_cart(user_id: str, db: Database = Depends(get_db)):
    return envelope(True, data=services.get_user_cart(db, user_id))

@app.get("/api/carts/{cart_id}")
def get_cart(cart_id: str, db: Database = Depends(get_db)):
    return envelope(True, data=services.get_cart(db, cart_id))

@app.post("/api/carts", status_code=201)
def create_cart(payload: CartCreate, db: Database = Depends(get_db)):
    return envelope(True, data=services.create_cart(db, payload))

@app.put("/api/carts/{cart_id}")
def replace_cart(cart_id: str, payload: CartCreate, db: Database = Depends(get_db)):
    return envelope(True, data=services.replace_cart(db, cart_id, payload))

@app.delete("/api/carts/clear/{user_id}")
def clear_cart(user_id: str, db: Database = Depends(get_db)):
    cart = services.clear_cart(db, user_id)
    return envelope(True, data=cart, message="Cart cleared successfully")

@app.delete("/api/carts/{cart_id}")
def delete_cart(cart_id: str, db: Database = Depends(get_db)):
    services.delete_cart(db, cart_id)
    return envelope(True, message="Cart deleted successfully")


# Orders
@app.get("/api/orders")
def list_orders(userId: Optional[str] = None, db: Database = Depends(get_db)):
    orders = services.list_orders(db, userId)
    return envelope(True, data=orders, count=len(orders))

@app.get("/api/orders/user/{user_id}")
def list_user_orders(user_id: str, db: Database = Depends(get_db)):
    orders = services.list_user_orders(db, user_id)
    return envelope(True, data=orders, count=len(orders))

@app.get("/api/orders/{order_id}")
def get_order(order_id: str, db: Database = Depends(get_db)):
    return envelope(True, data=services.get_order(db, order_id))

@app.post("/api/orders", status_code=201)
def place_order(payload: OrderCreate, db: Database = Depends(get_db)):
    return envelope(True, data=services.place_order(db, payload))

@app.put("/api/orders/{order_id}")
def update_order(order_id: str, payload: OrderUpdate, db: Database = Depends(get_db)):
    return envelope(True, data=services.update_order(db, order_id, payload))

@app.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, db: Database = Depends(get_db)):
    update = OrderUpdate(order_status=payload.status)
    return envelope(True, data=services.update_order(db, order_id, update))

@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, db: Database = Depends(get_db)):
    services.delete_order(db, order_id)
    return envelope(True, message="Order deleted successfully")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
