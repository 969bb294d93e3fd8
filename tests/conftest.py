"""Shared fixtures for pipeline tests.

Provides:
- InMemoryPipelineRepository: test double with the PipelineRepository
  surface, no database required
- Service fixtures wired over the in-memory repository
- A FastAPI app with the v1 routers, auth overridden to a fixed user
"""

from __future__ import annotations

import itertools
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.crm.core.context import UserContext
from src.crm.pipeline.errors import ConflictError, TransportError
from src.crm.pipeline.schemas import (
    ContactCreate,
    ContactFilter,
    ContactRead,
    PropertyCreate,
    PropertyRead,
    PropertySummary,
    PropertyUpdate,
    StageRead,
)

USER_ID = str(uuid.uuid4())
OTHER_USER_ID = str(uuid.uuid4())

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ── In-Memory Test Double ────────────────────────────────────────────────────


class InMemoryPipelineRepository:
    """In-memory PipelineRepository for testing without database.

    Rows are kept as plain dicts and converted to read schemas on the way
    out, so the joined property summary and stage name always reflect the
    current state. Every insert takes the next tick of a fake clock, which
    keeps created_at ordering deterministic.

    Set fail_writes to make the next contact/stage write raise
    TransportError without changing anything.

    Accounts registered through insert_stages are kept by email in accounts.
    """

    def __init__(self) -> None:
        self._stages: dict[str, dict[str, Any]] = {}
        self._contacts: dict[str, dict[str, Any]] = {}
        self._properties: dict[str, dict[str, Any]] = {}
        self._ticks = itertools.count(1)
        self.fail_writes = False
        self.swap_calls: list[tuple[str, str]] = []
        self.accounts: dict[str, Any] = {}

    def _now(self) -> datetime:
        return _EPOCH + timedelta(seconds=next(self._ticks))

    def _check_write(self, operation: str) -> None:
        if self.fail_writes:
            self.fail_writes = False
            raise TransportError(f"{operation} failed: connection reset")

    # ── Conversion ──────────────────────────────────────────────────────

    def _stage_read(self, row: dict[str, Any]) -> StageRead:
        return StageRead(**{k: v for k, v in row.items() if k != "seq"})

    def _contact_read(self, row: dict[str, Any]) -> ContactRead:
        prop = self._properties.get(row["property_id"]) if row["property_id"] else None
        stage = self._stages.get(row["stage_id"]) if row["stage_id"] else None
        return ContactRead(
            **{k: v for k, v in row.items() if k != "seq"},
            stage_name=stage["name"] if stage else None,
            property=(
                PropertySummary(
                    id=prop["id"],
                    description=prop["description"],
                    price=prop["price"],
                    commission_percentage=prop["commission_percentage"],
                )
                if prop
                else None
            ),
        )

    def _property_read(self, row: dict[str, Any]) -> PropertyRead:
        return PropertyRead(**{k: v for k, v in row.items() if k != "seq"})

    # ── Stages ──────────────────────────────────────────────────────────

    async def list_stages(self, user_id: str) -> list[StageRead]:
        rows = [s for s in self._stages.values() if s["user_id"] == user_id]
        rows.sort(key=lambda s: (s["position"], s["seq"]))
        return [self._stage_read(s) for s in rows]

    async def get_stage(self, user_id: str, stage_id: str) -> StageRead | None:
        row = self._stages.get(stage_id)
        if row and row["user_id"] == user_id:
            return self._stage_read(row)
        return None

    async def max_stage_position(self, user_id: str) -> int | None:
        positions = [s["position"] for s in self._stages.values() if s["user_id"] == user_id]
        return max(positions) if positions else None

    async def insert_stages(
        self,
        user_id: str,
        stages: list[tuple[str, int]],
        is_default: bool = False,
        account: Any = None,
    ) -> list[StageRead]:
        self._check_write("insert_stages")
        if account is not None:
            if account.email in self.accounts:
                raise ConflictError("insert_stages violates a reference held by another record")
            self.accounts[account.email] = account
        created = []
        for name, position in stages:
            seq = next(self._ticks)
            row = {
                "id": str(uuid.uuid4()),
                "user_id": user_id,
                "name": name,
                "position": position,
                "is_default": is_default,
                "created_at": _EPOCH + timedelta(seconds=seq),
                "seq": seq,
            }
            self._stages[row["id"]] = row
            created.append(self._stage_read(row))
        return created

    async def rename_stage(self, user_id: str, stage_id: str, name: str) -> StageRead | None:
        self._check_write("rename_stage")
        row = self._stages.get(stage_id)
        if not row or row["user_id"] != user_id:
            return None
        row["name"] = name
        return self._stage_read(row)

    async def swap_stage_positions(self, user_id: str, first_id: str, second_id: str) -> None:
        self._check_write("swap_stage_positions")
        first = self._stages.get(first_id)
        second = self._stages.get(second_id)
        if not first or not second or first["user_id"] != user_id or second["user_id"] != user_id:
            raise TransportError("stage swap failed: stage rows changed underneath")
        self.swap_calls.append((first_id, second_id))
        if first["position"] != second["position"]:
            first["position"], second["position"] = second["position"], first["position"]
            return
        ranked = [s.id for s in await self.list_stages(user_id)]
        upper, lower = sorted((first_id, second_id), key=ranked.index)
        for stage_id in [upper, *ranked[ranked.index(lower) + 1:]]:
            self._stages[stage_id]["position"] += 1

    async def delete_stage(self, user_id: str, stage_id: str) -> bool:
        self._check_write("delete_stage")
        row = self._stages.get(stage_id)
        if not row or row["user_id"] != user_id:
            return False
        if any(c["stage_id"] == stage_id for c in self._contacts.values()):
            raise ConflictError("delete_stage violates a reference held by another record")
        del self._stages[stage_id]
        return True

    async def count_contacts_in_stage(self, user_id: str, stage_id: str) -> int:
        return sum(
            1
            for c in self._contacts.values()
            if c["user_id"] == user_id and c["stage_id"] == stage_id
        )

    # ── Contacts ────────────────────────────────────────────────────────

    async def list_contacts(
        self, user_id: str, filters: ContactFilter | None = None
    ) -> list[ContactRead]:
        rows = [c for c in self._contacts.values() if c["user_id"] == user_id]
        if filters:
            if filters.stage_id:
                rows = [c for c in rows if c["stage_id"] == filters.stage_id]
            if filters.created_from:
                rows = [c for c in rows if c["created_at"] >= filters.created_from]
            if filters.created_to:
                rows = [c for c in rows if c["created_at"] <= filters.created_to]
            if filters.sold_from:
                rows = [c for c in rows if c["sale_date"] and c["sale_date"] >= filters.sold_from]
            if filters.sold_to:
                rows = [c for c in rows if c["sale_date"] and c["sale_date"] <= filters.sold_to]
        rows.sort(key=lambda c: (c["created_at"], c["seq"]))
        return [self._contact_read(c) for c in rows]

    async def count_contacts(self, user_id: str) -> int:
        return sum(1 for c in self._contacts.values() if c["user_id"] == user_id)

    async def get_contact(self, user_id: str, contact_id: str) -> ContactRead | None:
        row = self._contacts.get(contact_id)
        if row and row["user_id"] == user_id:
            return self._contact_read(row)
        return None

    async def insert_contact(self, user_id: str, data: ContactCreate) -> ContactRead:
        self._check_write("insert_contact")
        seq = next(self._ticks)
        now = _EPOCH + timedelta(seconds=seq)
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            **data.model_dump(),
            "sale_date": None,
            "sale_value": None,
            "created_at": now,
            "updated_at": now,
            "seq": seq,
        }
        self._contacts[row["id"]] = row
        return self._contact_read(row)

    async def update_contact(
        self, user_id: str, contact_id: str, values: dict[str, Any]
    ) -> ContactRead | None:
        self._check_write("update_contact")
        row = self._contacts.get(contact_id)
        if not row or row["user_id"] != user_id:
            return None
        row.update(values)
        row["updated_at"] = self._now()
        return self._contact_read(row)

    async def delete_contact(self, user_id: str, contact_id: str) -> bool:
        self._check_write("delete_contact")
        row = self._contacts.get(contact_id)
        if not row or row["user_id"] != user_id:
            return False
        del self._contacts[contact_id]
        return True

    # ── Properties ──────────────────────────────────────────────────────

    async def list_properties(self, user_id: str) -> list[PropertyRead]:
        rows = [p for p in self._properties.values() if p["user_id"] == user_id]
        rows.sort(key=lambda p: p["seq"], reverse=True)
        return [self._property_read(p) for p in rows]

    async def get_property(self, user_id: str, property_id: str) -> PropertyRead | None:
        row = self._properties.get(property_id)
        if row and row["user_id"] == user_id:
            return self._property_read(row)
        return None

    async def insert_property(self, user_id: str, data: PropertyCreate) -> PropertyRead:
        seq = next(self._ticks)
        now = _EPOCH + timedelta(seconds=seq)
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            **data.model_dump(),
            "created_at": now,
            "updated_at": None,
            "seq": seq,
        }
        self._properties[row["id"]] = row
        return self._property_read(row)

    async def update_property(
        self, user_id: str, property_id: str, data: PropertyUpdate
    ) -> PropertyRead | None:
        row = self._properties.get(property_id)
        if not row or row["user_id"] != user_id:
            return None
        row.update(data.model_dump(exclude_unset=True))
        row["updated_at"] = self._now()
        return self._property_read(row)

    async def delete_property(self, user_id: str, property_id: str) -> bool:
        row = self._properties.get(property_id)
        if not row or row["user_id"] != user_id:
            return False
        if any(c["property_id"] == property_id for c in self._contacts.values()):
            raise ConflictError("delete_property violates a reference held by another record")
        del self._properties[property_id]
        return True

    # ── Test helpers ────────────────────────────────────────────────────

    def backdate(self, contact_id: str, **fields: Any) -> None:
        """Overwrite stored contact columns (created_at, sale_date, ...)."""
        self._contacts[contact_id].update(fields)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def ctx() -> UserContext:
    return UserContext(user_id=USER_ID, email="corretor@example.com")


@pytest.fixture
def other_ctx() -> UserContext:
    return UserContext(user_id=OTHER_USER_ID, email="outro@example.com")


@pytest.fixture
def repo() -> InMemoryPipelineRepository:
    return InMemoryPipelineRepository()


@pytest.fixture
def won_names() -> frozenset[str]:
    return frozenset({"venda ganha", "won"})


@pytest.fixture
def sale_clock():
    """Fixed clock for sale stamps."""
    moment = datetime(2026, 3, 15, 14, 30, tzinfo=timezone.utc)
    return lambda: moment


@pytest.fixture
def sale_recorder(won_names, sale_clock):
    from src.crm.pipeline.sales import SaleRecorder

    return SaleRecorder(won_names, clock=sale_clock)


@pytest.fixture
def stage_store(repo):
    from src.crm.pipeline.stages import StageStore

    return StageStore(repo)


@pytest.fixture
def board(repo, sale_recorder):
    from src.crm.pipeline.board import BoardController

    return BoardController(repo, sale_recorder)


@pytest.fixture
def contact_service(repo, sale_recorder):
    from src.crm.pipeline.contacts import ContactService

    return ContactService(repo, sale_recorder)


@pytest.fixture
def property_service(repo):
    from src.crm.pipeline.properties import PropertyService

    return PropertyService(repo)


@pytest.fixture
def dashboard_service(repo):
    from src.crm.pipeline.metrics import DashboardService

    return DashboardService(repo)


@pytest_asyncio.fixture
async def seeded(stage_store, ctx) -> dict[str, StageRead]:
    """Default stages for the test user, keyed by name."""
    stages = await stage_store.seed_default_stages(ctx)
    return {s.name: s for s in stages}


# ── HTTP ─────────────────────────────────────────────────────────────────────


def _make_test_app(repo: InMemoryPipelineRepository, sale_recorder):
    """Create a FastAPI app with the v1 routers and mocked auth."""
    from fastapi import FastAPI

    from src.crm.api.deps import get_current_user
    from src.crm.api.v1.router import router
    from src.crm.main import wire_pipeline

    app = FastAPI()
    app.include_router(router)
    wire_pipeline(app, repo, sale_recorder)
    app.dependency_overrides[get_current_user] = lambda: UserContext(
        user_id=USER_ID, email="corretor@example.com"
    )
    return app


@pytest_asyncio.fixture
async def api(repo, sale_recorder) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client over the v1 API backed by the in-memory repository."""
    app = _make_test_app(repo, sale_recorder)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
