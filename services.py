"""
Store and aggregate services.

Route handlers call into these functions with a pymongo Database. Derived
values (product availability, cart total) are recomputed here right before
every write and never on read. Reads only attach product name and price to
cart and order lines.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from passlib.context import CryptContext
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents, oid, serialize
from errors import NotFoundError, ValidationError
from schemas import (
    Cart,
    CartCreate,
    CartItem,
    Order,
    OrderCreate,
    OrderItem,
    OrderUpdate,
    Product,
    ProductCreate,
    ProductUpdate,
    User,
    UserCreate,
    UserUpdate,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _now():
    return datetime.now(timezone.utc)


def _get_or_404(db: Database, collection: str, id_str: str, label: str) -> dict:
    doc = db[collection].find_one({"_id": oid(id_str)})
    if not doc:
        raise NotFoundError(f"{label} not found")
    return doc


def _delete_or_404(db: Database, collection: str, id_str: str, label: str) -> None:
    result = db[collection].delete_one({"_id": oid(id_str)})
    if result.deleted_count == 0:
        raise NotFoundError(f"{label} not found")
    logger.info("Deleted %s %s", collection, id_str)


def _owner_filter(user_id: Optional[str]) -> dict:
    return {"userId": oid(user_id, field="userId")} if user_id else {}


def _sent_fields(payload, nullable=()) -> dict:
    """Fields present in the request body, keyed by stored name. Nulls are dropped unless nullable."""
    fields = payload.model_dump(by_alias=True, exclude_unset=True)
    return {k: v for k, v in fields.items() if v is not None or k in nullable}


# Totals and derived fields

def product_availability(stock: int) -> bool:
    return stock > 0


def cart_total(items: Iterable, prices: Dict[str, float]) -> float:
    """Sum of quantity x current product price, keyed by product id string."""
    return sum(prices[str(item.product_id)] * item.quantity for item in items)


def order_total(items: Iterable) -> float:
    """Sum of the snapshot unit price x quantity over order lines."""
    return sum(item.price * item.quantity for item in items)


def total_items(items: Iterable[dict]) -> int:
    return sum(item.get("quantity", 0) for item in items)


def average_rating(ratings: List[int]) -> float:
    if not ratings:
        return 0
    return round(sum(ratings) / len(ratings), 1)


def resolve_products(db: Database, product_ids: List[str]) -> Dict[str, dict]:
    """Look up every referenced product; the first missing one raises NotFoundError."""
    wanted = {ObjectId(pid) for pid in product_ids}
    found = {str(doc["_id"]): doc for doc in db["product"].find({"_id": {"$in": list(wanted)}})}
    for pid in product_ids:
        if pid not in found:
            raise NotFoundError(f"Product not found: {pid}")
    return found


# Products

def product_view(doc: dict) -> dict:
    data = serialize(doc)
    data["averageRating"] = average_rating(data.get("ratings") or [])
    return data


def _product_fields(payload: ProductCreate) -> dict:
    product = Product(**payload.model_dump(), is_available=product_availability(payload.stock))
    return product.model_dump(by_alias=True)


def list_products(db: Database) -> List[dict]:
    return [product_view(p) for p in get_documents(db, "product")]


def get_product(db: Database, product_id: str) -> dict:
    return product_view(_get_or_404(db, "product", product_id, "Product"))


def create_product(db: Database, payload: ProductCreate) -> dict:
    new_id = create_document(db, "product", _product_fields(payload))
    logger.info("Created product %s", new_id)
    return product_view(db["product"].find_one({"_id": new_id}))


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> dict:
    product_oid = oid(product_id)
    fields = _sent_fields(payload, nullable=("description",))
    if not fields:
        raise ValidationError("No updatable fields supplied")
    if "stock" in fields:
        fields["isAvailable"] = product_availability(fields["stock"])
    fields["updatedAt"] = _now()
    doc = db["product"].find_one_and_update(
        {"_id": product_oid}, {"$set": fields}, return_document=ReturnDocument.AFTER
    )
    if not doc:
        raise NotFoundError("Product not found")
    logger.info("Updated product %s: %s", product_id, sorted(k for k in fields if k != "updatedAt"))
    return product_view(doc)


def delete_product(db: Database, product_id: str) -> None:
    _delete_or_404(db, "product", product_id, "Product")


# Users

def user_view(doc: dict) -> dict:
    data = serialize(doc)
    data.pop("password", None)
    return data


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def _email_taken(db: Database, email: str, exclude_id: Optional[ObjectId] = None) -> bool:
    query = {"email": email}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return db["user"].find_one(query) is not None


def list_users(db: Database) -> List[dict]:
    return [user_view(u) for u in get_documents(db, "user")]


def get_user(db: Database, user_id: str) -> dict:
    return user_view(_get_or_404(db, "user", user_id, "User"))


def create_user(db: Database, payload: UserCreate) -> dict:
    if _email_taken(db, payload.email):
        raise ValidationError("Email already registered", field="email")
    fields = payload.model_dump()
    fields["password"] = hash_password(payload.password)
    try:
        new_id = create_document(db, "user", User(**fields))
    except DuplicateKeyError:
        raise ValidationError("Email already registered", field="email")
    logger.info("Created user %s", new_id)
    return user_view(db["user"].find_one({"_id": new_id}))


def update_user(db: Database, user_id: str, payload: UserUpdate) -> dict:
    existing = _get_or_404(db, "user", user_id, "User")
    fields = _sent_fields(payload, nullable=("address",))
    if not fields:
        raise ValidationError("No updatable fields supplied")
    if "email" in fields and _email_taken(db, fields["email"], exclude_id=existing["_id"]):
        raise ValidationError("Email already registered", field="email")
    if "password" in fields:
        fields["password"] = hash_password(fields["password"])
    fields["updatedAt"] = _now()

    try:
        doc = db["user"].find_one_and_update(
            {"_id": existing["_id"]}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ValidationError("Email already registered", field="email")
    if not doc:
        raise NotFoundError("User not found")
    logger.info("Updated user %s", user_id)
    return user_view(doc)


def delete_user(db: Database, user_id: str) -> None:
    _delete_or_404(db, "user", user_id, "User")


# Carts

def aggregate_views(db: Database, docs: List[dict]) -> List[dict]:
    """
    Serialize carts or orders and attach {name, price} of each line's product.

    All referenced products are fetched with one query. A line whose product
    has since been deleted gets product=None. Stored totals and order
    snapshot prices are returned as persisted.
    """
    views = [serialize(doc) for doc in docs]
    ids = {ObjectId(item["productId"]) for view in views for item in view.get("items") or []}
    products = {}
    if ids:
        for doc in db["product"].find({"_id": {"$in": list(ids)}}, {"name": 1, "price": 1}):
            products[str(doc["_id"])] = {"name": doc.get("name"), "price": doc.get("price")}
    for view in views:
        items = view.get("items") or []
        for item in items:
            item["product"] = products.get(item["productId"])
        view["totalItems"] = total_items(items)
    return views


def _aggregate_view(db: Database, doc: dict) -> dict:
    return aggregate_views(db, [doc])[0]


def _priced_items(db: Database, payload: CartCreate):
    products = resolve_products(db, [item.product_id for item in payload.items])
    prices = {pid: float(doc.get("price", 0)) for pid, doc in products.items()}
    items = [CartItem(product_id=ObjectId(i.product_id), quantity=i.quantity) for i in payload.items]
    return items, cart_total(items, prices)


def list_carts(db: Database, user_id: Optional[str] = None) -> List[dict]:
    return aggregate_views(db, get_documents(db, "cart", _owner_filter(user_id)))


def get_cart(db: Database, cart_id: str) -> dict:
    return _aggregate_view(db, _get_or_404(db, "cart", cart_id, "Cart"))


def get_user_cart(db: Database, user_id: str) -> dict:
    doc = db["cart"].find_one(_owner_filter(user_id))
    if not doc:
        raise NotFoundError("Cart not found for this user")
    return _aggregate_view(db, doc)


def create_cart(db: Database, payload: CartCreate) -> dict:
    items, total = _priced_items(db, payload)
    cart = Cart(user_id=ObjectId(payload.user_id), items=items, total=total, status="active")
    new_id = create_document(db, "cart", cart)
    logger.info("Created cart %s for user %s (total=%s)", new_id, payload.user_id, total)
    return _aggregate_view(db, db["cart"].find_one({"_id": new_id}))


def replace_cart(db: Database, cart_id: str, payload: CartCreate) -> dict:
    """Swap the whole item list and total; there is no merge with previous items."""
    cart_oid = oid(cart_id)
    items, total = _priced_items(db, payload)
    doc = db["cart"].find_one_and_update(
        {"_id": cart_oid},
        {"$set": {
            "userId": ObjectId(payload.user_id),
            "items": [i.model_dump(by_alias=True) for i in items],
            "total": total,
            "updatedAt": _now(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Cart not found")
    logger.info("Replaced cart %s (total=%s)", cart_id, total)
    return _aggregate_view(db, doc)


def clear_cart(db: Database, user_id: str) -> dict:
    doc = db["cart"].find_one_and_update(
        _owner_filter(user_id),
        {"$set": {"items": [], "total": 0, "updatedAt": _now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Cart not found for this user")
    logger.info("Cleared cart of user %s", user_id)
    return _aggregate_view(db, doc)


def delete_cart(db: Database, cart_id: str) -> None:
    _delete_or_404(db, "cart", cart_id, "Cart")


# Orders

def list_orders(db: Database, user_id: Optional[str] = None) -> List[dict]:
    return aggregate_views(db, get_documents(db, "order", _owner_filter(user_id)))


def list_user_orders(db: Database, user_id: str) -> List[dict]:
    orders = list_orders(db, user_id)
    if not orders:
        raise NotFoundError("No orders found for this user")
    return orders


def get_order(db: Database, order_id: str) -> dict:
    return _aggregate_view(db, _get_or_404(db, "order", order_id, "Order"))


def place_order(db: Database, payload: OrderCreate) -> dict:
    """
    Persist an order whose line prices are a snapshot of the payload.

    The supplied totalAmount has to match the line items exactly. Once the
    order is stored the user's cart is cleared; that step is best effort and
    its failure leaves the order in place.
    """
    computed = order_total(payload.items)
    if computed != payload.total_amount:
        logger.warning(
            "Rejected order for user %s: totalAmount=%s computed=%s",
            payload.user_id, payload.total_amount, computed,
        )
        raise ValidationError("Total amount mismatch with item prices", field="totalAmount")
    resolve_products(db, [item.product_id for item in payload.items])

    order = Order(
        user_id=ObjectId(payload.user_id),
        items=[OrderItem(product_id=ObjectId(i.product_id), quantity=i.quantity, price=i.price) for i in payload.items],
        total_amount=payload.total_amount,
        payment_method=payload.payment_method,
        shipping_address=payload.shipping_address,
    )
    new_id = create_document(db, "order", order)
    logger.info("Placed order %s for user %s (total=%s)", new_id, payload.user_id, payload.total_amount)

    try:
        clear_cart(db, payload.user_id)
    except NotFoundError:
        logger.info("User %s had no cart to clear after order %s", payload.user_id, new_id)
    except PyMongoError as e:
        logger.warning("Could not clear cart of user %s after order %s: %s", payload.user_id, new_id, e)

    return _aggregate_view(db, db["order"].find_one({"_id": new_id}))


def update_order(db: Database, order_id: str, payload: OrderUpdate) -> dict:
    order_oid = oid(order_id)
    fields = payload.model_dump(by_alias=True, exclude_none=True)
    if not fields:
        raise ValidationError("No updatable fields supplied")
    fields["updatedAt"] = _now()
    doc = db["order"].find_one_and_update(
        {"_id": order_oid}, {"$set": fields}, return_document=ReturnDocument.AFTER
    )
    if not doc:
        raise NotFoundError("Order not found")
    logger.info("Updated order %s: %s", order_id, sorted(k for k in fields if k != "updatedAt"))
    return _aggregate_view(db, doc)


def delete_order(db: Database, order_id: str) -> None:
    _delete_or_404(db, "order", order_id, "Order")
