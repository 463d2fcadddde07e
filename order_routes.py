from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

import orders
import settings
from schemas import OrderIn, OrderStatus, StatusUpdate
from security import get_current_user, require_admin

router = APIRouter(prefix="/orders", tags=["orders"])

PAGE = Query(1, ge=1)
LIMIT = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE)


@router.get("")
def list_orders(
    page: int = PAGE,
    limit: int = LIMIT,
    status: Optional[OrderStatus] = None,
    admin: Dict[str, Any] = Depends(require_admin),
):
    docs, pagination = orders.list_orders(page, limit, status=status)
    return {"success": True, "orders": docs, "pagination": pagination}


@router.get("/me")
def list_my_orders(
    page: int = PAGE,
    limit: int = LIMIT,
    status: Optional[OrderStatus] = None,
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    docs, pagination = orders.list_orders(page, limit, status=status, user_id=current_user["id"])
    return {"success": True, "orders": docs, "pagination": pagination}


@router.get("/{order_id}")
def get_order(order_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "order": orders.get_order(order_id, current_user)}


@router.post("", status_code=201)
def create_order(payload: OrderIn, current_user: Dict[str, Any] = Depends(get_current_user)):
    result = orders.create_order(current_user["id"], payload.items)
    return {"success": True, "message": "Order created successfully", **result}


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    order = orders.cancel_order(order_id, current_user)
    return {"success": True, "message": "Order cancelled", "order": order}


@router.put("/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    order = orders.update_order_status(order_id, payload.status)
    return {"success": True, "message": "Order status updated", "order": order}
