from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends

import database
from errors import AuthError, ConflictError, InternalError
from schemas import LoginPayload, RegisterPayload, User
from security import PUBLIC_USER_FIELDS, generate_token, get_current_user, hash_password, verify_password

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {"id": user["id"], "email": user["email"], "username": user["username"], "role": user.get("role", "customer")}


def _ensure_available(email: str, username: str) -> None:
    existing = database.get_db().user.find_one({"$or": [{"email": email}, {"username": username}]}, {"_id": 1})
    if existing:
        raise ConflictError("Email or username already registered")


@router.post("/register", status_code=201)
def register(payload: RegisterPayload):
    email = payload.email.lower()
    _ensure_available(email, payload.username)

    user = User(
        username=payload.username,
        email=email,
        password=hash_password(payload.password),
        phone=payload.phone,
        address=payload.address,
    )
    try:
        user_id = database.create_document("user", user)
    except ConflictError:
        # A concurrent registration took the email or username.
        raise ConflictError("Email or username already registered")
    created = database.get_db().user.find_one({"_id": database.oid(user_id)}, PUBLIC_USER_FIELDS)
    if not created:
        raise InternalError("Server error while creating user")
    created = database.to_public(created)
    logger.info("User registered", user_id=user_id)
    return {
        "success": True,
        "message": "User registered successfully",
        "token": generate_token(created),
        "user": _user_summary(created),
    }


@router.post("/login")
def login(payload: LoginPayload):
    user = database.get_db().user.find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise AuthError("Incorrect email or password")
    user = database.to_public(user)
    return {
        "success": True,
        "message": "Login successful",
        "token": generate_token(user),
        "user": _user_summary(user),
    }


@router.get("/profile")
def profile(current_user: Dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "user": current_user}
