"""Bearer tokens for API callers.

Issuing tokens belongs to the auth service; this module only mints them for
tooling and tests and resolves the caller of the current request.
"""
from __future__ import annotations

import os
import time

import jwt
from flask import g, request

from homecheff.extensions import db

ACCESS_TOKEN_TTL_SECONDS = 7 * 24 * 3600


def _signing_key() -> str:
    return os.getenv("SECRET_KEY") or "dev-secret-change-me"


def create_access_token(user_id: int, ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS) -> str:
    issued = int(time.time())
    claims = {"sub": str(int(user_id)), "type": "access", "iat": issued, "exp": issued + int(ttl_seconds)}
    return jwt.encode(claims, _signing_key(), algorithm="HS256")


def decode_token(token: str) -> dict | None:
    try:
        claims = jwt.decode(token, _signing_key(), algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    if claims.get("type", "access") != "access":
        return None
    return claims


def bearer_token() -> str | None:
    scheme, _, token = (request.headers.get("Authorization") or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user():
    """The User behind the request's bearer token, or None."""
    from homecheff.models import User

    token = bearer_token()
    claims = decode_token(token) if token else None
    if not claims:
        return None
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError):
        return None
    user = db.session.get(User, user_id)
    if user is not None:
        g.auth_user_id = user.id
    return user
