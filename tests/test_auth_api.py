"""Tests for the auth endpoints: signup seeding, login, refresh, and /me.

Signup goes through the in-memory repository, which registers the account
and its stages together. Login, refresh and /me read users through get_db,
overridden with FakeUserSession over the accounts signup registered.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.crm.core.security import issue_token, read_token
from src.crm.pipeline.stages import DEFAULT_STAGE_NAMES

PASSWORD = "s3nha-forte"


class FakeUserSession:
    """Answers the user lookups of the auth endpoints from a list of User rows.

    Each bound parameter of the SELECT (email_1, id_1) is matched against
    the attribute of the same name. The endpoints only ever look up active
    users, so inactive rows are never returned.
    """

    def __init__(self, users: list[Any]) -> None:
        self.users = users

    async def execute(self, stmt: Any) -> MagicMock:
        criteria = {
            key.rsplit("_", 1)[0]: value for key, value in stmt.compile().params.items()
        }
        matches = [
            user
            for user in self.users
            if user.is_active
            and all(getattr(user, column) == value for column, value in criteria.items())
        ]
        result = MagicMock()
        result.scalar_one_or_none.return_value = matches[0] if matches else None
        return result


@pytest_asyncio.fixture
async def auth_client(repo, sale_recorder) -> AsyncGenerator[AsyncClient, None]:
    """v1 API with real token checks; users come from the accounts signup stored."""
    from fastapi import FastAPI

    from src.crm.api.deps import get_db
    from src.crm.api.v1.router import router
    from src.crm.main import wire_pipeline

    app = FastAPI()
    app.include_router(router)
    wire_pipeline(app, repo, sale_recorder)
    app.dependency_overrides[get_db] = lambda: FakeUserSession(list(repo.accounts.values()))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _signup(client: AsyncClient, email: str = "Ana@Imobiliaria.com.br"):
    return await client.post(
        "/api/v1/auth/signup",
        json={"email": email, "password": PASSWORD, "name": " Ana ", "company": "Imobiliária Sol"},
    )


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ── Signup ───────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_signup_seeds_default_stages(auth_client, repo):
    response = await _signup(auth_client)

    assert response.status_code == 201
    body = response.json()
    assert body["token_type"] == "bearer"
    ctx = read_token(body["access_token"])
    assert ctx.email == "ana@imobiliaria.com.br"

    stages = await repo.list_stages(ctx.user_id)
    assert [s.name for s in stages] == list(DEFAULT_STAGE_NAMES)
    assert [s.position for s in stages] == [1, 2, 3, 4, 5]
    assert all(s.is_default for s in stages)

    account = repo.accounts["ana@imobiliaria.com.br"]
    assert str(account.id) == ctx.user_id
    assert account.name == "Ana"
    assert account.hashed_password != PASSWORD


@pytest.mark.asyncio
async def test_signup_duplicate_email_conflicts(auth_client, repo):
    first = await _signup(auth_client)
    second = await _signup(auth_client, email="ana@imobiliaria.com.br")

    assert second.status_code == 409
    assert second.json()["detail"] == "Email already registered"
    user_id = read_token(first.json()["access_token"]).user_id
    assert len(await repo.list_stages(user_id)) == len(DEFAULT_STAGE_NAMES)


@pytest.mark.asyncio
async def test_failed_signup_leaves_no_account_and_can_be_retried(auth_client, repo):
    repo.fail_writes = True

    failed = await _signup(auth_client)

    assert failed.status_code == 502
    assert repo.accounts == {}

    retried = await _signup(auth_client)

    assert retried.status_code == 201
    user_id = read_token(retried.json()["access_token"]).user_id
    assert [s.name for s in await repo.list_stages(user_id)] == list(DEFAULT_STAGE_NAMES)


@pytest.mark.asyncio
async def test_signup_rejects_short_password(auth_client, repo):
    response = await auth_client.post(
        "/api/v1/auth/signup",
        json={"email": "ana@imobiliaria.com.br", "password": "curta", "name": "Ana"},
    )
    assert response.status_code == 422
    assert repo.accounts == {}


# ── Login / refresh ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_login_with_registered_credentials(auth_client):
    signed_up = await _signup(auth_client)

    response = await auth_client.post(
        "/api/v1/auth/login",
        json={"email": "ANA@imobiliaria.com.br", "password": PASSWORD},
    )

    assert response.status_code == 200
    assert (
        read_token(response.json()["access_token"]).user_id
        == read_token(signed_up.json()["access_token"]).user_id
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "email,password",
    [("ana@imobiliaria.com.br", "senha-errada"), ("ninguem@imobiliaria.com.br", PASSWORD)],
)
async def test_login_rejects_bad_credentials(auth_client, email, password):
    await _signup(auth_client)

    response = await auth_client.post(
        "/api/v1/auth/login", json={"email": email, "password": password}
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_rejects_inactive_account(auth_client, repo):
    await _signup(auth_client)
    repo.accounts["ana@imobiliaria.com.br"].is_active = False

    response = await auth_client.post(
        "/api/v1/auth/login",
        json={"email": "ana@imobiliaria.com.br", "password": PASSWORD},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_issues_new_tokens(auth_client):
    tokens = (await _signup(auth_client)).json()

    response = await auth_client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )

    assert response.status_code == 200
    assert (
        read_token(response.json()["access_token"]).user_id
        == read_token(tokens["access_token"]).user_id
    )


@pytest.mark.asyncio
async def test_refresh_rejects_access_token_and_unknown_user(auth_client):
    tokens = (await _signup(auth_client)).json()
    stranger = issue_token(
        "0b6e0f4c-2f5d-4c1a-8d1e-7c9b3a2f1e00", "x@imobiliaria.com.br", token_type="refresh"
    )

    wrong_type = await auth_client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]}
    )
    unknown = await auth_client.post("/api/v1/auth/refresh", json={"refresh_token": stranger})

    assert wrong_type.status_code == 401
    assert unknown.status_code == 401


# ── /me ──────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_me_returns_profile(auth_client):
    tokens = (await _signup(auth_client)).json()

    response = await auth_client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))

    assert response.status_code == 200
    assert response.json() == {
        "id": read_token(tokens["access_token"]).user_id,
        "email": "ana@imobiliaria.com.br",
        "name": "Ana",
        "company": "Imobiliária Sol",
    }


@pytest.mark.asyncio
async def test_me_requires_access_token(auth_client):
    tokens = (await _signup(auth_client)).json()

    anonymous = await auth_client.get("/api/v1/auth/me")
    with_refresh = await auth_client.get(
        "/api/v1/auth/me", headers=_bearer(tokens["refresh_token"])
    )

    assert anonymous.status_code == 401
    assert with_refresh.status_code == 401
