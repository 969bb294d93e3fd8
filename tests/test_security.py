"""Tests for password hashing, session tokens, the auth dependency, and request logging."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient
from jose import jwt

from src.crm.config import get_settings
from src.crm.core.security import (
    hash_password,
    issue_token,
    read_token,
    user_id_from_bearer,
    verify_password,
)

USER_ID = "6f1c2d8e-4b7a-4f0e-9a51-3c2e8d7b9a10"
EMAIL = "corretor@example.com"


# ── Passwords ─────────────────────────────────────────────────────────────────


def test_hash_and_verify_password():
    hashed = hash_password("s3nha-forte")
    assert hashed != "s3nha-forte"
    assert verify_password("s3nha-forte", hashed)
    assert not verify_password("outra", hashed)


# ── Tokens ────────────────────────────────────────────────────────────────────


def test_access_token_claims():
    token = issue_token(USER_ID, EMAIL)
    settings = get_settings()
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

    assert claims["sub"] == USER_ID
    assert claims["email"] == EMAIL
    assert claims["type"] == "access"


def test_read_token_returns_user_context():
    ctx = read_token(issue_token(USER_ID.upper(), EMAIL))

    assert ctx.user_id == USER_ID
    assert ctx.email == EMAIL


def test_refresh_token_is_not_an_access_token():
    token = issue_token(USER_ID, EMAIL, token_type="refresh")

    assert read_token(token, token_type="refresh").user_id == USER_ID
    with pytest.raises(HTTPException) as exc_info:
        read_token(token, token_type="access")
    assert exc_info.value.status_code == 401


def test_expired_token_rejected():
    token = issue_token(USER_ID, EMAIL, expires_delta=timedelta(seconds=-5))
    with pytest.raises(HTTPException):
        read_token(token)


@pytest.mark.parametrize("subject", ["", "not-a-user-id"])
def test_token_without_user_subject_rejected(subject):
    with pytest.raises(HTTPException):
        read_token(issue_token(subject, EMAIL))


def test_garbage_token_rejected():
    with pytest.raises(HTTPException):
        read_token("not-a-jwt")


def test_user_id_from_bearer():
    assert user_id_from_bearer(f"Bearer {issue_token(USER_ID, EMAIL)}") == USER_ID
    assert user_id_from_bearer("Bearer not-a-jwt") is None
    assert user_id_from_bearer(None) is None


# ── get_current_user ──────────────────────────────────────────────────────────


@pytest.fixture
def auth_app(repo, sale_recorder):
    """v1 routers with the real auth dependency and request logging."""
    from fastapi import FastAPI

    from src.crm.api.middleware.logging import LoggingMiddleware
    from src.crm.api.v1.router import router
    from src.crm.main import wire_pipeline

    app = FastAPI()
    app.add_middleware(LoggingMiddleware)
    app.include_router(router)
    wire_pipeline(app, repo, sale_recorder)
    return app


@pytest.mark.asyncio
async def test_pipeline_requires_token(auth_app):
    transport = ASGITransport(app=auth_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/pipeline/board")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_pipeline_rejects_refresh_token(auth_app):
    token = issue_token(USER_ID, EMAIL, token_type="refresh")
    transport = ASGITransport(app=auth_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(
            "/api/v1/pipeline/board", headers={"Authorization": f"Bearer {token}"}
        )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_scopes_requests_to_its_user(auth_app, repo):
    await repo.insert_stages(USER_ID, [("Minha Etapa", 1)])
    await repo.insert_stages("someone-else", [("Etapa Alheia", 1)])
    token = issue_token(USER_ID, EMAIL)

    transport = ASGITransport(app=auth_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(
            "/api/v1/pipeline/stages", headers={"Authorization": f"Bearer {token}"}
        )

    assert response.status_code == 200
    assert [s["name"] for s in response.json()] == ["Minha Etapa"]


# ── Request logging ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_request_id_generated_or_echoed(auth_app):
    transport = ASGITransport(app=auth_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        generated = await client.get("/api/v1/pipeline/board")
        echoed = await client.get(
            "/api/v1/pipeline/board", headers={"X-Request-ID": "req-123"}
        )

    assert generated.headers["X-Request-ID"]
    assert echoed.headers["X-Request-ID"] == "req-123"
