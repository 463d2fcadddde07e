from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query

import catalog
import database
import settings
from errors import NotFoundError, ValidationError
from schemas import Product, ProductIn, ProductUpdate
from security import require_admin

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


def _require_category(category_id: str) -> str:
    try:
        category = catalog.get_category(category_id)
    except (ValidationError, NotFoundError):
        raise ValidationError("Category not found")
    return str(category["_id"])


@router.get("")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    category: Optional[str] = None,
    search: Optional[str] = None,
):
    query: Dict[str, Any] = {}
    if category:
        query["category_id"] = database.normalize_id(category)
    if search:
        pattern = catalog.search_pattern(search)
        query["$or"] = [{"name": pattern}, {"description": pattern}]

    docs, pagination = database.paginate("product", query, page, limit)
    return {
        "success": True,
        "products": [catalog.with_details(d) for d in docs],
        "pagination": pagination,
    }


@router.get("/{product_id}")
def get_product(product_id: str):
    product = catalog.get_product(product_id)
    return {"success": True, "product": catalog.with_details(product)}


@router.post("", status_code=201)
def create_product(payload: ProductIn, admin: Dict[str, Any] = Depends(require_admin)):
    fields = payload.model_dump(exclude={"sizes"})
    fields["category_id"] = _require_category(payload.category_id)

    product = Product(**fields)
    new_id = database.create_document("product", product)
    if payload.sizes:
        catalog.replace_sizes(new_id, payload.sizes)

    logger.info("Product created", product_id=new_id, by=admin["id"])
    return {
        "success": True,
        "message": "Product created successfully",
        "product": catalog.with_details(catalog.get_product(new_id)),
    }


@router.put("/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    product = catalog.get_product(product_id)
    product_id = str(product["_id"])

    updates = payload.model_dump(exclude_unset=True, exclude={"sizes"})
    updates = {key: value for key, value in updates.items() if value is not None}
    if "category_id" in updates:
        updates["category_id"] = _require_category(updates["category_id"])
    if updates:
        updates["updated_at"] = database.now()
        database.get_db().product.update_one({"_id": product["_id"]}, {"$set": updates})
    if payload.sizes:
        catalog.replace_sizes(product_id, payload.sizes)

    logger.info("Product updated", product_id=product_id, by=admin["id"], fields=sorted(updates))
    return {
        "success": True,
        "message": "Product updated successfully",
        "product": catalog.with_details(catalog.get_product(product_id)),
    }


@router.delete("/{product_id}")
def delete_product(product_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    product = catalog.get_product(product_id)
    product_id = str(product["_id"])
    db = database.get_db()
    db.product_size.delete_many({"product_id": product_id})
    db.cart_item.delete_many({"product_id": product_id})
    db.product.delete_one({"_id": product["_id"]})
    logger.info("Product deleted", product_id=product_id, by=admin["id"])
    return {"success": True, "message": "Product deleted successfully"}
