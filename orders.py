"""
Order assembly, cancellation and queries.

An order document embeds its line items, so the header and the items are
written by one insert. Stock is reserved before that insert and released
again if the insert fails.
"""
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from pymongo.errors import PyMongoError

import database
import inventory
from errors import (
    InsufficientStock,
    InternalError,
    InvalidTransition,
    NotFoundError,
    ProductNotFound,
    ValidationError,
)
from order_status import CANCELLABLE_STATES, transition
from schemas import LineItem, Order, OrderItem, OrderStatus
from security import ensure_authorized

logger = structlog.get_logger(__name__)


def _load_product(product_id: str) -> Dict[str, Any]:
    try:
        key = database.oid(product_id)
    except ValidationError:
        raise ProductNotFound(f"Product with ID {product_id} not found")
    product = database.get_db().product.find_one({"_id": key})
    if not product:
        raise ProductNotFound(f"Product with ID {product_id} not found")
    return product


def verify_items(items: List[LineItem]) -> List[OrderItem]:
    """Check every line against the catalog and price it at the current product price."""
    verified = []
    for item in items:
        product = _load_product(item.product_id)
        available = inventory.available_stock(product, item.size)
        if available < item.quantity:
            label = product["name"] + (f" size {item.size}" if item.size else "")
            raise InsufficientStock(f"Insufficient stock for product {label}", available=available)
        verified.append(
            OrderItem(
                product_id=str(product["_id"]),
                size=item.size or None,
                quantity=item.quantity,
                price=float(product["price"]),
            )
        )
    return verified


def create_order(user_id: str, items: List[LineItem]) -> Dict[str, Any]:
    verified = verify_items(items)
    total_price = round(sum(item.price * item.quantity for item in verified), 2)

    line_items = [item.model_dump() for item in verified]
    inventory.reserve(line_items)

    order = Order(user_id=str(user_id), items=verified, total_price=total_price)
    try:
        order_id = database.create_document("order", order)
    except InternalError:
        failed = inventory.release(line_items)
        logger.error("Order insert failed, reservation released", user_id=user_id, not_restored=len(failed))
        raise

    logger.info("Order created", order_id=order_id, user_id=user_id, total_price=total_price, items=len(verified))
    return {"order_id": order_id, "total_price": total_price}


def _release_order(order: Dict[str, Any]) -> None:
    failed = inventory.release(order.get("items", []))
    if failed:
        logger.warning("Stock not fully restored after cancellation", order_id=str(order["_id"]), not_restored=len(failed))


def _find_order(order_id: str) -> Dict[str, Any]:
    order = database.get_db().order.find_one({"_id": database.oid(order_id)})
    if not order:
        raise NotFoundError("Order not found")
    return order


def cancel_order(order_id: str, caller: Dict[str, Any]) -> Dict[str, Any]:
    """Customer cancellation: own orders only, and only before shipping."""
    order = _find_order(order_id)
    ensure_authorized(caller, order["user_id"], "You do not have access to this order")
    if OrderStatus(order["status"]) not in CANCELLABLE_STATES:
        raise InvalidTransition(order["status"], OrderStatus.cancelled.value)

    updated = transition(order, OrderStatus.cancelled)
    _release_order(updated)
    logger.info("Order cancelled", order_id=order_id, by=caller["id"])
    return database.to_public(updated)


def update_order_status(order_id: str, status: OrderStatus) -> Dict[str, Any]:
    order = _find_order(order_id)
    updated = transition(order, status)
    if OrderStatus(status) == OrderStatus.cancelled:
        _release_order(updated)
    logger.info("Order status updated", order_id=order_id, status=OrderStatus(status).value)
    return database.to_public(updated)


def _with_product_details(order: Dict[str, Any]) -> Dict[str, Any]:
    order = database.to_public(order)
    product_ids = {item["product_id"] for item in order.get("items", [])}
    products = {}
    for product_id in product_ids:
        try:
            product = database.get_db().product.find_one({"_id": database.oid(product_id)}, {"name": 1, "price": 1, "images": 1})
        except PyMongoError as e:
            logger.error("Error fetching product for order", order_id=order["id"], product_id=product_id, error=str(e))
            product = None
        products[product_id] = product
    items = []
    for item in order.get("items", []):
        product = products.get(item["product_id"])
        items.append({
            **item,
            "subtotal": round(item["price"] * item["quantity"], 2),
            "product": {"name": product["name"], "price": product["price"]} if product else None,
            "product_image": (product.get("images") or [None])[0] if product else None,
        })
    order["items"] = items
    return order


def _owners(user_ids) -> Dict[str, Dict[str, Any]]:
    """Username and email of each order owner, keyed by user id."""
    keys = [ObjectId(u) for u in set(user_ids) if ObjectId.is_valid(u)]
    if not keys:
        return {}
    users = database.get_db().user.find({"_id": {"$in": keys}}, {"username": 1, "email": 1})
    return {str(u["_id"]): {"username": u["username"], "email": u["email"]} for u in users}


def list_orders(page: int, limit: int, status: Optional[OrderStatus] = None, user_id: Optional[str] = None):
    query: Dict[str, Any] = {}
    if status:
        query["status"] = OrderStatus(status).value
    if user_id:
        query["user_id"] = str(user_id)
    docs, pagination = database.paginate("order", query, page, limit)
    results = [_with_product_details(doc) for doc in docs]
    if not user_id:
        owners = _owners(doc["user_id"] for doc in results)
        for doc in results:
            doc["user"] = owners.get(doc["user_id"])
    return results, pagination


def get_order(order_id: str, caller: Dict[str, Any]) -> Dict[str, Any]:
    """Non-admin callers only ever see their own orders; anything else is 'not found'."""
    query: Dict[str, Any] = {"_id": database.oid(order_id)}
    if caller.get("role") != "admin":
        query["user_id"] = caller["id"]
    order = database.get_db().order.find_one(query)
    if not order:
        raise NotFoundError("Order not found")
    return _with_product_details(order)
