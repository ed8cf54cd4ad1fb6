"""
Bearer-token identity.

Tokens are issued by the external identity provider; we only verify them.
The user id always comes from the token's `sub` claim, never from a
client-supplied header.
"""
import logging
import os
from typing import Optional

import jwt
from fastapi import Depends, Header

import database
from errors import Forbidden, NotAuthenticated

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE")


def decode_token(token: str) -> dict:
    options = {"require": ["sub", "exp"]}
    if JWT_AUDIENCE:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO], audience=JWT_AUDIENCE, options=options)
    options["verify_aud"] = False
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO], options=options)


def get_current_user(authorization: Optional[str] = Header(None)) -> Optional[dict]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        payload = decode_token(token.strip())
    except jwt.PyJWTError as e:
        logger.info("Rejected bearer token: %s", e)
        return None
    return {"id": str(payload["sub"]), "email": payload.get("email")}


def require_user(user: Optional[dict] = Depends(get_current_user)) -> dict:
    if not user:
        raise NotAuthenticated("Not authenticated")
    return user


def is_admin(user_id: str) -> bool:
    profile = database.get_db()["profile"].find_one({"user_id": user_id})
    return bool(profile) and profile.get("role") == "admin"


def require_admin(user: dict = Depends(require_user)) -> dict:
    if not is_admin(user["id"]):
        raise Forbidden("Admin only")
    return user
