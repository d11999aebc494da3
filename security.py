import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from bson import ObjectId
from fastapi import Depends, Request
from jose import JWTError, jwt
from pydantic import BaseModel
from pymongo.database import Database

import config
from database import collection_name, get_db, to_object_id
from errors import Forbidden, Unauthorized
from schemas import User

logger = logging.getLogger(__name__)


class Principal(BaseModel):
    id: str
    name: str
    email: str
    role: str

    @property
    def oid(self) -> ObjectId:
        return ObjectId(self.id)


def create_access_token(principal: Principal, expires_delta: timedelta | None = None) -> str:
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not configured")
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=config.JWT_EXPIRE_DAYS))
    to_encode = {
        "sub": principal.id,
        "name": principal.name,
        "email": principal.email,
        "role": principal.role,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not configured")
    return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])


def principal_from_user(user: Dict[str, Any]) -> Principal:
    return Principal(id=str(user["_id"]), name=user["name"], email=user["email"], role=user["role"])


def get_current_user(request: Request, db: Database = Depends(get_db)) -> Principal:
    """Resolve the bearer token to the stored account it was issued for."""
    auth = request.headers.get("authorization")
    if not auth or not auth.startswith("Bearer "):
        raise Unauthorized("Missing authorization token")
    token = auth.split(" ", 1)[1].strip()
    try:
        payload = decode_access_token(token)
    except JWTError as e:
        # expired and tampered tokens look the same to the caller
        logger.info(f"Rejected bearer token: {e}")
        raise Unauthorized("Unauthorized")

    user_id = to_object_id(payload.get("sub"))
    user = db[collection_name(User)].find_one({"_id": user_id}) if user_id else None
    if not user:
        raise Unauthorized("Invalid token")

    principal = principal_from_user(user)
    request.state.principal = principal
    return principal


def require_roles(*roles: str):
    async def _dep(user: Principal = Depends(get_current_user)) -> Principal:
        if user.role not in roles:
            raise Forbidden("Forbidden")
        return user
    return _dep
