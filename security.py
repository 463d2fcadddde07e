"""
Password hashing, bearer tokens and role checks.
"""
import hashlib
import hmac
import os
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import database
import settings
from errors import AuthError, ForbiddenError, ValidationError

PBKDF2_ITERATIONS = 100_000

PUBLIC_USER_FIELDS = {"_id": 1, "username": 1, "email": 1, "phone": 1, "address": 1, "role": 1, "created_at": 1}

bearer_scheme = HTTPBearer(auto_error=False)


# -----------------
# Passwords
# -----------------
def hash_password(password: str) -> str:
    salt = os.urandom(16).hex()
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, hashed: str) -> bool:
    try:
        algorithm, iterations, salt, expected = hashed.split("$")
    except (AttributeError, ValueError):
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


# -----------------
# Tokens
# -----------------
def generate_token(user: Dict[str, Any]) -> str:
    payload = {
        "id": str(user.get("id") or user.get("_id")),
        "email": user["email"],
        "role": user.get("role", "customer"),
        "exp": database.now() + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise AuthError("Invalid or expired token")


# -----------------
# Dependencies
# -----------------
def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Dict[str, Any]:
    """Resolve the bearer token to a live user; the user is re-read on every request."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthError("Access denied. Token not found")
    decoded = verify_token(credentials.credentials)
    try:
        user_id = database.oid(decoded.get("id"))
    except ValidationError:
        raise AuthError("Invalid or expired token")
    user = database.get_db().user.find_one({"_id": user_id}, PUBLIC_USER_FIELDS)
    if not user:
        raise AuthError("User not found or no longer valid")
    return database.to_public(user)


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise ForbiddenError()
    return user


def authorize(role: str, owner_id: Optional[str], caller_id: str) -> bool:
    """Admins may act on anything; everyone else only on what they own."""
    return role == "admin" or (owner_id is not None and str(owner_id) == str(caller_id))


def ensure_authorized(caller: Dict[str, Any], owner_id: Optional[str], message: str = None) -> None:
    if not authorize(caller.get("role"), owner_id, caller["id"]):
        raise ForbiddenError(message)
