"""Broker credentials -- bcrypt password hashes and signed session tokens.

A broker is identified by the UUID of their users row. Each token carries
that id as ``sub``, the login email, and a ``type`` claim that keeps the
short-lived access token apart from the refresh token. A token that checks
out decodes straight into the UserContext every pipeline service takes.

Uses bcrypt directly (not passlib) for Python 3.13 compatibility.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Literal

import bcrypt
from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.crm.config import get_settings
from src.crm.core.context import UserContext

TokenType = Literal["access", "refresh"]

# ── Password Hashing ──────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


# ── Session Tokens ────────────────────────────────────────────────────────────


def _lifetime(token_type: TokenType) -> timedelta:
    settings = get_settings()
    if token_type == "refresh":
        return timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)
    return timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)


def issue_token(
    user_id: str,
    email: str,
    token_type: TokenType = "access",
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a token for the broker with the given users.id and email."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "email": email,
        "type": token_type,
        "iat": now,
        "exp": now + (expires_delta or _lifetime(token_type)),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def read_token(token: str, token_type: TokenType = "access") -> UserContext:
    """Decode a token into the broker it was issued to.

    Raises:
        HTTPException(401): If the signature or expiry does not check out,
            the type differs from token_type, or sub is not a user UUID.
    """
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise _unauthorized()
    if claims.get("type") != token_type:
        raise _unauthorized()
    try:
        user_id = str(uuid.UUID(str(claims.get("sub"))))
    except ValueError:
        raise _unauthorized()
    return UserContext(user_id=user_id, email=claims.get("email", ""))


def user_id_from_bearer(authorization: str | None) -> str | None:
    """Broker id behind an Authorization header, None when it does not verify."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return read_token(authorization[7:]).user_id
    except HTTPException:
        return None
