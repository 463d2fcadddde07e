"""
Stock adjustment.

A stock row is either the general ``stock`` counter on a product document or
the ``stock`` counter of a ``product_size`` document. Every decrement is a
single conditional update executed by the store ("decrement only if current
stock covers the quantity"), so concurrent orders can never oversell a row.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

import database
from errors import AppError, InsufficientStock, InternalError, ProductNotFound, SizeNotFound

logger = structlog.get_logger(__name__)


def _stock_row(item: Dict[str, Any]) -> Tuple[Collection, Dict[str, Any]]:
    db = database.get_db()
    if item.get("size"):
        return db.product_size, {"product_id": str(item["product_id"]), "size": item["size"]}
    return db.product, {"_id": database.oid(item["product_id"])}


def _missing(item: Dict[str, Any]) -> AppError:
    if item.get("size"):
        return SizeNotFound(f"Size {item['size']} for product {item['product_id']} not found")
    return ProductNotFound(f"Product with ID {item['product_id']} not found")


def get_size(product_id: str, size: str) -> Optional[Dict[str, Any]]:
    return database.get_db().product_size.find_one({"product_id": str(product_id), "size": size})


def available_stock(product: Dict[str, Any], size: Optional[str] = None) -> int:
    """Current stock of the row an item for ``product``/``size`` would draw from."""
    if not size:
        return int(product.get("stock", 0))
    row = get_size(str(product["_id"]), size)
    if row is None:
        raise SizeNotFound(f"Size {size} for product {product.get('name', product['_id'])} not found")
    return int(row["stock"])


def _decrement(item: Dict[str, Any]) -> None:
    collection, query = _stock_row(item)
    quantity = int(item["quantity"])
    result = collection.update_one(
        {**query, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}},
    )
    if result.modified_count == 1:
        return
    row = collection.find_one(query, {"stock": 1})
    if row is None:
        raise _missing(item)
    label = f"product {item['product_id']}" + (f" size {item['size']}" if item.get("size") else "")
    raise InsufficientStock(
        f"Insufficient stock for {label}. Available: {row.get('stock', 0)}",
        available=row.get("stock", 0),
    )


def reserve(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Decrement stock for every item, or for none of them.

    Rows are decremented one at a time; if any item fails, the rows already
    decremented by this call are restored before the error is re-raised.
    """
    reserved: List[Dict[str, Any]] = []
    try:
        for item in items:
            _decrement(item)
            reserved.append(item)
    except (AppError, PyMongoError) as e:
        if reserved:
            failed = release(reserved)
            logger.warning(
                "Rolled back partial reservation",
                restored=len(reserved) - len(failed),
                not_restored=len(failed),
                error=str(e),
            )
        if isinstance(e, PyMongoError):
            raise InternalError("Server error while reserving stock")
        raise
    return reserved


def release(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Increment stock for every item; return the items that could not be restored."""
    failed: List[Dict[str, Any]] = []
    for item in items:
        try:
            collection, query = _stock_row(item)
            result = collection.update_one(query, {"$inc": {"stock": int(item["quantity"])}})
        except (AppError, PyMongoError) as e:
            logger.error("Stock release failed", product_id=item.get("product_id"), size=item.get("size"), error=str(e))
            failed.append(item)
            continue
        if result.matched_count == 0:
            logger.warning("Stock row missing on release", product_id=item.get("product_id"), size=item.get("size"))
            failed.append(item)
    return failed
