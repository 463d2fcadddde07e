"""
Catalog lookups shared by the product, category and cart routes.
"""
import re
from typing import Any, Dict, List, Optional

import structlog

import database
from errors import NotFoundError, ProductNotFound
from schemas import ProductSize

logger = structlog.get_logger(__name__)


def name_pattern(name: str) -> Dict[str, Any]:
    """Case-insensitive exact match on a name."""
    return {"$regex": f"^{re.escape(name)}$", "$options": "i"}


def search_pattern(text: str) -> Dict[str, Any]:
    return {"$regex": re.escape(text), "$options": "i"}


def get_category(category_id: str) -> Dict[str, Any]:
    category = database.get_db().category.find_one({"_id": database.oid(category_id)})
    if not category:
        raise NotFoundError("Category not found")
    return category


def get_product(product_id: str) -> Dict[str, Any]:
    product = database.get_db().product.find_one({"_id": database.oid(product_id)})
    if not product:
        raise ProductNotFound()
    return product


def sizes_for(product_id: str) -> List[Dict[str, Any]]:
    rows = database.get_documents("product_size", {"product_id": str(product_id)}, sort=[("size", 1)])
    return [{"size_id": str(row["_id"]), "size": row["size"], "stock": row["stock"]} for row in rows]


def replace_sizes(product_id: str, sizes: Optional[List[ProductSize]]) -> None:
    collection = database.get_db().product_size
    collection.delete_many({"product_id": str(product_id)})
    if sizes:
        collection.insert_many([{"product_id": str(product_id), "size": s.size, "stock": s.stock} for s in sizes])
    logger.debug("Replaced product sizes", product_id=str(product_id), count=len(sizes or []))


def with_details(product: Dict[str, Any]) -> Dict[str, Any]:
    """Public product document with its sizes and category attached."""
    public = database.to_public(product)
    public["sizes"] = sizes_for(public["id"])
    category = None
    if product.get("category_id"):
        category = database.get_db().category.find_one(
            {"_id": database.oid(product["category_id"])}, {"_id": 0, "name": 1, "description": 1}
        )
    public["category"] = category
    return public
