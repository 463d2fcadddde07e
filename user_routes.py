from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from pymongo.errors import DuplicateKeyError

import database
import settings
from errors import AuthError, ConflictError, NotFoundError, ValidationError
from schemas import PasswordChange, ProfileUpdate, Role, RoleUpdate
from security import PUBLIC_USER_FIELDS, ensure_authorized, get_current_user, hash_password, require_admin, verify_password

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _find_user(user_id: str, projection=None) -> Dict[str, Any]:
    user = database.get_db().user.find_one({"_id": database.oid(user_id)}, projection)
    if not user:
        raise NotFoundError("User not found")
    return user


def _ensure_username_free(username: str, user_id) -> None:
    taken = database.get_db().user.find_one({"username": username, "_id": {"$ne": user_id}}, {"_id": 1})
    if taken:
        raise ConflictError("Username already taken")


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    role: Optional[Role] = None,
    admin: Dict[str, Any] = Depends(require_admin),
):
    query = {"role": role} if role else {}
    docs, pagination = database.paginate("user", query, page, limit)
    users = []
    for doc in docs:
        doc.pop("password", None)
        doc.pop("address", None)
        users.append(database.to_public(doc))
    return {"success": True, "users": users, "pagination": pagination}


@router.get("/{user_id}")
def get_user(user_id: str, current_user: Dict[str, Any] = Depends(get_current_user)):
    ensure_authorized(current_user, user_id, "Forbidden: you do not have access to this user")
    user = _find_user(user_id, PUBLIC_USER_FIELDS)
    return {"success": True, "user": database.to_public(user)}


@router.put("/{user_id}")
def update_profile(user_id: str, payload: ProfileUpdate, current_user: Dict[str, Any] = Depends(get_current_user)):
    ensure_authorized(current_user, user_id, "Forbidden: you do not have access to update this user")
    user = _find_user(user_id, {"_id": 1})

    updates = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    if "username" in updates:
        _ensure_username_free(updates["username"], user["_id"])
    if updates:
        updates["updated_at"] = database.now()
        try:
            database.get_db().user.update_one({"_id": user["_id"]}, {"$set": updates})
        except DuplicateKeyError:
            raise ConflictError("Username already taken")

    updated = _find_user(user_id, PUBLIC_USER_FIELDS)
    return {"success": True, "message": "Profile updated", "user": database.to_public(updated)}


@router.put("/{user_id}/password")
def change_password(user_id: str, payload: PasswordChange, current_user: Dict[str, Any] = Depends(get_current_user)):
    ensure_authorized(current_user, user_id, "Forbidden: you do not have access to change this password")
    user = _find_user(user_id, {"_id": 1, "password": 1})

    # Admins may reset a password without knowing the current one.
    if current_user.get("role") != "admin":
        if not payload.current_password:
            raise ValidationError("Current password is required")
        if not verify_password(payload.current_password, user.get("password", "")):
            raise AuthError("Current password is incorrect")

    database.get_db().user.update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(payload.new_password), "updated_at": database.now()}},
    )
    logger.info("Password changed", user_id=user_id, by=current_user["id"])
    return {"success": True, "message": "Password changed"}


@router.put("/{user_id}/role")
def update_role(user_id: str, payload: RoleUpdate, admin: Dict[str, Any] = Depends(require_admin)):
    user = _find_user(user_id, {"_id": 1})
    if str(user["_id"]) == admin["id"]:
        raise ValidationError("You cannot change your own role")

    database.get_db().user.update_one({"_id": user["_id"]}, {"$set": {"role": payload.role, "updated_at": database.now()}})
    updated = _find_user(user_id, {"_id": 1, "username": 1, "email": 1, "role": 1})
    logger.info("User role updated", user_id=user_id, role=payload.role, by=admin["id"])
    return {"success": True, "message": "Role updated", "user": database.to_public(updated)}
