import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Cookie, Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import collection
from errors import Forbidden, Unauthorized

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
TOKEN_TTL = timedelta(days=7)
TOKEN_COOKIE = "adminToken"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def create_token(user: dict) -> str:
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "is_admin": user.get("is_admin", False),
        "exp": datetime.now(timezone.utc) + TOKEN_TTL,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "is_admin": user.get("is_admin", False),
    }


def get_current_user(
    authorization: Optional[str] = Header(None),
    admin_token: Optional[str] = Cookie(None, alias=TOKEN_COOKIE),
):
    token = None
    if authorization:
        token = authorization.replace("Bearer ", "").strip()
    elif admin_token:
        token = admin_token
    if not token:
        raise Unauthorized("Missing Authorization header")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except JWTError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise Unauthorized("Invalid token")
    user = collection("user").find_one({"_id": ObjectId(user_id)})
    if not user:
        raise Unauthorized("Invalid token user")
    return user


def require_admin(user=Depends(get_current_user)):
    if not user.get("is_admin"):
        raise Forbidden("Admin only")
    return user
