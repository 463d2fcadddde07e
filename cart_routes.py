"""
Shopping cart routes. Every route operates on the authenticated caller's cart.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo import DESCENDING

import catalog
import database
import inventory
from errors import InsufficientStock, NotFoundError, ValidationError
from schemas import CartItem, CartItemIn, CartQuantity
from security import get_current_user

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_items(user_id: str) -> List[Dict[str, Any]]:
    return database.get_documents("cart_item", {"user_id": user_id}, sort=[("created_at", DESCENDING)])


def _products_for(items: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    ids = list({database.oid(item["product_id"]) for item in items})
    if not ids:
        return {}
    return {str(p["_id"]): p for p in database.get_documents("product", {"_id": {"$in": ids}})}


def _cart_count(user_id: str) -> int:
    return database.get_db().cart_item.count_documents({"user_id": user_id})


def _check_stock(product: Dict[str, Any], size: Optional[str], quantity: int, total: bool = False) -> None:
    available = inventory.available_stock(product, size)
    if available < quantity:
        if total:
            message = f"Insufficient stock for a total of {quantity}. Available: {available}"
        else:
            message = f"Insufficient stock. Available: {available}"
        raise InsufficientStock(message, available=available)


def _get_own_item(item_id: str, user_id: str) -> Dict[str, Any]:
    item = database.get_db().cart_item.find_one({"_id": database.oid(item_id), "user_id": user_id})
    if not item:
        raise NotFoundError("Cart item not found")
    return item


@router.get("")
def get_cart(current_user: Dict[str, Any] = Depends(get_current_user)):
    items = _cart_items(current_user["id"])
    products = _products_for(items)

    processed = []
    for item in items:
        product = products.get(item["product_id"])
        if product is None:
            continue
        processed.append({
            "item_id": str(item["_id"]),
            "product_id": item["product_id"],
            "quantity": item["quantity"],
            "size": item.get("size"),
            "product": {
                "id": str(product["_id"]),
                "name": product["name"],
                "price": product["price"],
                "stock": product.get("stock", 0),
                "image": (product.get("images") or [None])[0],
            },
            "subtotal": round(product["price"] * item["quantity"], 2),
            "created_at": item.get("created_at"),
            "updated_at": item.get("updated_at"),
        })

    return {
        "success": True,
        "cart": {
            "items": processed,
            "item_count": sum(i["quantity"] for i in processed),
            "total": round(sum(i["subtotal"] for i in processed), 2),
        },
    }


@router.post("")
def add_to_cart(payload: CartItemIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    user_id = current_user["id"]
    product = catalog.get_product(payload.product_id)
    product_id = str(product["_id"])
    size = payload.size or None
    _check_stock(product, size, payload.quantity)

    collection = database.get_db().cart_item
    existing = collection.find_one({"user_id": user_id, "product_id": product_id, "size": size})
    if existing:
        new_quantity = existing["quantity"] + payload.quantity
        # Re-read stock for the merged quantity.
        _check_stock(catalog.get_product(product_id), size, new_quantity, total=True)
        collection.update_one(
            {"_id": existing["_id"]},
            {"$set": {"quantity": new_quantity, "updated_at": database.now()}},
        )
        item_id, quantity, message = str(existing["_id"]), new_quantity, "Item already in cart, quantity updated"
    else:
        cart_item = CartItem(user_id=user_id, product_id=product_id, quantity=payload.quantity, size=size)
        item_id = database.create_document("cart_item", cart_item)
        quantity, message = payload.quantity, "Item added to cart"

    logger.info("Cart item saved", user_id=user_id, product_id=product_id, size=size, quantity=quantity)
    return {
        "success": True,
        "message": message,
        "item": {
            "item_id": item_id,
            "product_id": product_id,
            "quantity": quantity,
            "size": size,
            "product": {"id": product_id, "name": product["name"], "price": product["price"]},
            "subtotal": round(product["price"] * quantity, 2),
        },
        "cart_count": _cart_count(user_id),
    }


@router.put("/{item_id}")
def update_cart_item(item_id: str, payload: CartQuantity, current_user: Dict[str, Any] = Depends(get_current_user)):
    item = _get_own_item(item_id, current_user["id"])
    product = catalog.get_product(item["product_id"])
    _check_stock(product, item.get("size"), payload.quantity)

    database.get_db().cart_item.update_one(
        {"_id": item["_id"]},
        {"$set": {"quantity": payload.quantity, "updated_at": database.now()}},
    )
    return {
        "success": True,
        "message": "Cart item quantity updated",
        "item": {
            "item_id": item_id,
            "product_id": item["product_id"],
            "quantity": payload.quantity,
            "size": item.get("size"),
            "subtotal": round(product["price"] * payload.quantity, 2),
        },
    }


@router.delete("/{item_id}")
def remove_from_cart(item_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    item = _get_own_item(item_id, current_user["id"])
    database.get_db().cart_item.delete_one({"_id": item["_id"]})
    return {
        "success": True,
        "message": "Item removed from cart",
        "cart_count": _cart_count(current_user["id"]),
    }


@router.delete("")
def clear_cart(current_user: Dict[str, Any] = Depends(get_current_user)):
    database.get_db().cart_item.delete_many({"user_id": current_user["id"]})
    return {"success": True, "message": "Cart cleared"}


@router.get("/count")
def cart_count(current_user: Dict[str, Any] = Depends(get_current_user)):
    items = _cart_items(current_user["id"])
    return {
        "success": True,
        "count": {"items": len(items), "quantity": sum(i["quantity"] for i in items)},
    }


@router.get("/summary")
def cart_summary(current_user: Dict[str, Any] = Depends(get_current_user)):
    items = _cart_items(current_user["id"])
    products = _products_for(items)
    priced = [(i, products[i["product_id"]]) for i in items if i["product_id"] in products]
    return {
        "success": True,
        "summary": {
            "item_count": len(priced),
            "total_quantity": sum(i["quantity"] for i, _ in priced),
            "total_amount": round(sum(p["price"] * i["quantity"] for i, p in priced), 2),
        },
    }


@router.get("/checkout")
def cart_checkout(current_user: Dict[str, Any] = Depends(get_current_user)):
    """Preview the cart as an order. Nothing is reserved and the cart is left as is."""
    items = _cart_items(current_user["id"])
    if not items:
        raise ValidationError("Cart is empty, cannot checkout")
    products = _products_for(items)

    stock_issues = []
    checkout_items = []
    for item in items:
        product = products.get(item["product_id"])
        if product is None:
            continue
        size = item.get("size")
        try:
            available = inventory.available_stock(product, size)
        except NotFoundError:
            available = 0
        if available < item["quantity"]:
            issue = {
                "product_id": item["product_id"],
                "product_name": product["name"],
                "requested": item["quantity"],
                "available": available,
            }
            if size:
                issue["size"] = size
            stock_issues.append(issue)
        checkout_items.append({
            "product_id": item["product_id"],
            "size": size,
            "quantity": item["quantity"],
            "price": product["price"],
            "subtotal": round(product["price"] * item["quantity"], 2),
            "product": {"name": product["name"], "image": (product.get("images") or [None])[0]},
        })

    if stock_issues:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": "Some items exceed the available stock",
                "stock_issues": stock_issues,
            },
        )

    return {
        "success": True,
        "checkout": {
            "items": checkout_items,
            "item_count": len(checkout_items),
            "total_amount": round(sum(i["subtotal"] for i in checkout_items), 2),
        },
    }
