from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query

import catalog
import database
import settings
from errors import ConflictError
from schemas import Category
from security import require_admin

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/categories", tags=["categories"])


def _ensure_unique_name(name: str, exclude_id=None) -> None:
    query: Dict[str, Any] = {"name": catalog.name_pattern(name)}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if database.get_db().category.find_one(query, {"_id": 1}):
        raise ConflictError("A category with the same name already exists")


@router.get("")
def list_categories():
    categories = database.get_documents("category", sort=[("name", 1)])
    return {"success": True, "categories": [database.to_public(c) for c in categories]}


@router.get("/{category_id}")
def get_category(category_id: str):
    return {"success": True, "category": database.to_public(catalog.get_category(category_id))}


@router.get("/{category_id}/products")
def list_category_products(
    category_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
):
    category = catalog.get_category(category_id)
    docs, pagination = database.paginate("product", {"category_id": str(category["_id"])}, page, limit)
    return {
        "success": True,
        "category": database.to_public(category),
        "products": [catalog.with_details(d) for d in docs],
        "pagination": pagination,
    }


@router.post("", status_code=201)
def create_category(payload: Category, admin: Dict[str, Any] = Depends(require_admin)):
    _ensure_unique_name(payload.name)
    new_id = database.create_document("category", payload)
    logger.info("Category created", category_id=new_id, by=admin["id"])
    return {
        "success": True,
        "message": "Category created successfully",
        "category": database.to_public(catalog.get_category(new_id)),
    }


@router.put("/{category_id}")
def update_category(category_id: str, payload: Category, admin: Dict[str, Any] = Depends(require_admin)):
    category = catalog.get_category(category_id)
    _ensure_unique_name(payload.name, exclude_id=category["_id"])

    updates: Dict[str, Optional[Any]] = {"name": payload.name, "updated_at": database.now()}
    if "description" in payload.model_fields_set:
        updates["description"] = payload.description
    database.get_db().category.update_one({"_id": category["_id"]}, {"$set": updates})

    logger.info("Category updated", category_id=category_id, by=admin["id"])
    return {
        "success": True,
        "message": "Category updated successfully",
        "category": database.to_public(catalog.get_category(category_id)),
    }


@router.delete("/{category_id}")
def delete_category(category_id: str, admin: Dict[str, Any] = Depends(require_admin)):
    category = catalog.get_category(category_id)
    if database.get_db().product.find_one({"category_id": str(category["_id"])}, {"_id": 1}):
        raise ConflictError("Cannot delete a category that is still used by products")
    database.get_db().category.delete_one({"_id": category["_id"]})
    logger.info("Category deleted", category_id=category_id, by=admin["id"])
    return {"success": True, "message": "Category deleted successfully"}
