"""Pipeline repository -- async, user-scoped persistence for stages, contacts, properties.

Provides PipelineRepository with the session_factory callable pattern. Every
method takes user_id as first argument and filters on it, on top of the RLS
policies the session factory activates.

Multi-row writes that must not partially apply (stage position swap, stage
move with sale stamp, new account with its default stages) are issued
inside one session and one commit.
SQLAlchemy failures are rolled back and re-raised as TransportError;
integrity violations (foreign keys, duplicate
email) become ConflictError.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.models.user import User
from src.crm.pipeline.errors import ConflictError, TransportError
from src.crm.pipeline.models import ContactModel, PropertyModel, StageModel
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

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[str], AbstractAsyncContextManager[AsyncSession]]

_UUID_FIELDS = ("property_id", "stage_id")


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_stage(model: StageModel) -> StageRead:
    """Convert StageModel to StageRead schema."""
    return StageRead(
        id=str(model.id),
        user_id=str(model.user_id),
        name=model.name,
        position=model.position,
        is_default=bool(model.is_default),
        created_at=model.created_at,
    )


def _model_to_property(model: PropertyModel) -> PropertyRead:
    """Convert PropertyModel to PropertyRead schema."""
    return PropertyRead(
        id=str(model.id),
        user_id=str(model.user_id),
        description=model.description,
        price=model.price,
        commission_percentage=model.commission_percentage,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_contact(model: ContactModel) -> ContactRead:
    """Convert ContactModel (with eager property/stage) to ContactRead schema."""
    summary = None
    if model.property is not None:
        summary = PropertySummary(
            id=str(model.property.id),
            description=model.property.description,
            price=model.property.price,
            commission_percentage=model.property.commission_percentage,
        )
    return ContactRead(
        id=str(model.id),
        user_id=str(model.user_id),
        name=model.name,
        phone=model.phone,
        email=model.email,
        property_id=str(model.property_id) if model.property_id else None,
        stage_id=str(model.stage_id) if model.stage_id else None,
        stage_name=model.stage.name if model.stage is not None else None,
        visit_date=model.visit_date,
        sale_date=model.sale_date,
        sale_value=model.sale_value,
        property=summary,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _to_column_values(values: dict[str, Any]) -> dict[str, Any]:
    """Convert string ids in a values dict to UUIDs for the UUID columns."""
    converted = dict(values)
    for key in _UUID_FIELDS:
        if converted.get(key) is not None:
            converted[key] = uuid.UUID(converted[key])
    return converted


def _parse_id(raw: str) -> uuid.UUID | None:
    """Parse an id from the outside world; malformed ids resolve to nothing."""
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


# ── Repository ──────────────────────────────────────────────────────────────


class PipelineRepository:
    """Async CRUD for pipeline stages, contacts, and properties.

    Args:
        session_factory: Callable taking a user id and returning an async
            context manager that yields an RLS-scoped AsyncSession.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def _run(self, user_id: str, operation: str, work: Callable[[AsyncSession], Any]) -> Any:
        """Run work(session) in one session, translating database failures."""
        async with self._session_factory(user_id) as session:
            try:
                return await work(session)
            except (ConflictError, TransportError):
                await session.rollback()
                raise
            except IntegrityError as exc:
                await session.rollback()
                logger.warning(
                    "repository_integrity_error",
                    operation=operation,
                    user_id=user_id,
                    error=str(exc.orig),
                )
                raise ConflictError(
                    f"{operation} violates a reference held by another record"
                ) from exc
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "repository_error",
                    operation=operation,
                    user_id=user_id,
                    exc_info=True,
                )
                raise TransportError(f"{operation} failed: {exc}") from exc

    # ── Stages ──────────────────────────────────────────────────────────────

    async def list_stages(self, user_id: str) -> list[StageRead]:
        """List a user's stages by position, ties in insertion order."""

        async def work(session: AsyncSession) -> list[StageRead]:
            stmt = (
                select(StageModel)
                .where(StageModel.user_id == uuid.UUID(user_id))
                .order_by(StageModel.position, StageModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_stage(m) for m in result.scalars().all()]

        return await self._run(user_id, "list_stages", work)

    async def get_stage(self, user_id: str, stage_id: str) -> StageRead | None:
        """Get a stage by ID, None if absent or owned by someone else."""
        parsed = _parse_id(stage_id)
        if parsed is None:
            return None

        async def work(session: AsyncSession) -> StageRead | None:
            stmt = select(StageModel).where(
                StageModel.user_id == uuid.UUID(user_id),
                StageModel.id == parsed,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_stage(model) if model is not None else None

        return await self._run(user_id, "get_stage", work)

    async def max_stage_position(self, user_id: str) -> int | None:
        """Highest position among the user's stages, None when there are none."""

        async def work(session: AsyncSession) -> int | None:
            stmt = select(func.max(StageModel.position)).where(
                StageModel.user_id == uuid.UUID(user_id)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

        return await self._run(user_id, "max_stage_position", work)

    async def insert_stages(
        self,
        user_id: str,
        stages: list[tuple[str, int]],
        is_default: bool = False,
        account: User | None = None,
    ) -> list[StageRead]:
        """Insert one or more (name, position) stages in a single commit.

        When account is given the user row is added first, in the same
        transaction, so a new account never exists without its stages. A
        duplicate email then surfaces as ConflictError.
        """

        async def work(session: AsyncSession) -> list[StageRead]:
            if account is not None:
                session.add(account)
                await session.flush()
            models = [
                StageModel(
                    user_id=uuid.UUID(user_id),
                    name=name,
                    position=position,
                    is_default=is_default,
                )
                for name, position in stages
            ]
            # One flush per row keeps created_at in list order
            for model in models:
                session.add(model)
                await session.flush()
            await session.commit()
            for model in models:
                await session.refresh(model)
            return [_model_to_stage(m) for m in models]

        return await self._run(user_id, "insert_stages", work)

    async def rename_stage(
        self, user_id: str, stage_id: str, name: str
    ) -> StageRead | None:
        """Rename a stage. Returns None if the stage does not exist."""
        parsed = _parse_id(stage_id)
        if parsed is None:
            return None

        async def work(session: AsyncSession) -> StageRead | None:
            stmt = select(StageModel).where(
                StageModel.user_id == uuid.UUID(user_id),
                StageModel.id == parsed,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            model.name = name
            await session.commit()
            await session.refresh(model)
            return _model_to_stage(model)

        return await self._run(user_id, "rename_stage", work)

    async def swap_stage_positions(
        self, user_id: str, first_id: str, second_id: str
    ) -> None:
        """Exchange the display order of two neighbouring stages atomically.

        Distinct positions are swapped. Tied positions cannot be swapped, so
        the stage displayed first of the two, and every stage displayed after
        the pair, moves one position down. All UPDATEs run in one
        transaction. If any of them does not hit exactly one row the
        transaction is rolled back and TransportError is raised.
        """

        async def work(session: AsyncSession) -> None:
            owner = uuid.UUID(user_id)
            ids = [uuid.UUID(first_id), uuid.UUID(second_id)]
            stmt = (
                select(StageModel.id, StageModel.position)
                .where(StageModel.user_id == owner)
                .order_by(StageModel.position, StageModel.created_at)
            )
            ordered = [(row.id, row.position) for row in (await session.execute(stmt)).all()]
            positions = dict(ordered)
            if any(stage_id not in positions for stage_id in ids):
                raise TransportError("stage swap failed: stage rows changed underneath")

            if positions[ids[0]] != positions[ids[1]]:
                targets = {ids[0]: positions[ids[1]], ids[1]: positions[ids[0]]}
            else:
                ranked = [stage_id for stage_id, _ in ordered]
                upper, lower = sorted(ids, key=ranked.index)
                trailing = ranked[ranked.index(lower) + 1:]
                targets = {
                    stage_id: positions[stage_id] + 1 for stage_id in [upper, *trailing]
                }

            for target, position in targets.items():
                result = await session.execute(
                    update(StageModel)
                    .where(StageModel.user_id == owner, StageModel.id == target)
                    .values(position=position)
                )
                if result.rowcount != 1:
                    raise TransportError("stage swap failed: partial position update")
            await session.commit()

        await self._run(user_id, "swap_stage_positions", work)

    async def delete_stage(self, user_id: str, stage_id: str) -> bool:
        """Delete a stage. Returns False if nothing was deleted."""
        parsed = _parse_id(stage_id)
        if parsed is None:
            return False

        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                delete(StageModel).where(
                    StageModel.user_id == uuid.UUID(user_id),
                    StageModel.id == parsed,
                )
            )
            await session.commit()
            return result.rowcount > 0

        return await self._run(user_id, "delete_stage", work)

    async def count_contacts_in_stage(self, user_id: str, stage_id: str) -> int:
        """Number of the user's contacts currently placed in a stage."""
        parsed = _parse_id(stage_id)
        if parsed is None:
            return 0

        async def work(session: AsyncSession) -> int:
            stmt = select(func.count(ContactModel.id)).where(
                ContactModel.user_id == uuid.UUID(user_id),
                ContactModel.stage_id == parsed,
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())

        return await self._run(user_id, "count_contacts_in_stage", work)

    # ── Contacts ────────────────────────────────────────────────────────────

    async def list_contacts(
        self, user_id: str, filters: ContactFilter | None = None
    ) -> list[ContactRead]:
        """List contacts in insertion order, optionally filtered."""

        async def work(session: AsyncSession) -> list[ContactRead]:
            stmt = select(ContactModel).where(ContactModel.user_id == uuid.UUID(user_id))
            if filters:
                if filters.stage_id:
                    parsed = _parse_id(filters.stage_id)
                    if parsed is None:
                        return []
                    stmt = stmt.where(ContactModel.stage_id == parsed)
                if filters.created_from:
                    stmt = stmt.where(ContactModel.created_at >= filters.created_from)
                if filters.created_to:
                    stmt = stmt.where(ContactModel.created_at <= filters.created_to)
                if filters.sold_from:
                    stmt = stmt.where(ContactModel.sale_date >= filters.sold_from)
                if filters.sold_to:
                    stmt = stmt.where(ContactModel.sale_date <= filters.sold_to)
            stmt = stmt.order_by(ContactModel.created_at)
            result = await session.execute(stmt)
            return [_model_to_contact(m) for m in result.unique().scalars().all()]

        return await self._run(user_id, "list_contacts", work)

    async def count_contacts(self, user_id: str) -> int:
        """Total number of the user's contacts."""

        async def work(session: AsyncSession) -> int:
            stmt = select(func.count(ContactModel.id)).where(
                ContactModel.user_id == uuid.UUID(user_id)
            )
            result = await session.execute(stmt)
            return int(result.scalar_one())

        return await self._run(user_id, "count_contacts", work)

    async def get_contact(self, user_id: str, contact_id: str) -> ContactRead | None:
        """Get a contact by ID with its property and stage."""
        parsed = _parse_id(contact_id)
        if parsed is None:
            return None

        async def work(session: AsyncSession) -> ContactRead | None:
            stmt = select(ContactModel).where(
                ContactModel.user_id == uuid.UUID(user_id),
                ContactModel.id == parsed,
            )
            result = await session.execute(stmt)
            model = result.unique().scalar_one_or_none()
            return _model_to_contact(model) if model is not None else None

        return await self._run(user_id, "get_contact", work)

    async def insert_contact(self, user_id: str, data: ContactCreate) -> ContactRead:
        """Insert a contact and return it with relations loaded."""

        async def work(session: AsyncSession) -> ContactRead:
            values = _to_column_values(data.model_dump())
            model = ContactModel(user_id=uuid.UUID(user_id), **values)
            session.add(model)
            await session.commit()
            return await self._reload_contact(session, model.id)

        return await self._run(user_id, "insert_contact", work)

    async def update_contact(
        self, user_id: str, contact_id: str, values: dict[str, Any]
    ) -> ContactRead | None:
        """Write several contact columns in a single UPDATE.

        Used both by the edit form and by stage moves; a won-stage move
        passes stage_id, sale_date, and sale_value together so they land in
        one statement. Returns None if the contact does not exist.
        """
        parsed = _parse_id(contact_id)
        if parsed is None:
            return None

        async def work(session: AsyncSession) -> ContactRead | None:
            result = await session.execute(
                update(ContactModel)
                .where(
                    ContactModel.user_id == uuid.UUID(user_id),
                    ContactModel.id == parsed,
                )
                .values(**_to_column_values(values), updated_at=func.now())
            )
            if result.rowcount == 0:
                await session.rollback()
                return None
            await session.commit()
            return await self._reload_contact(session, parsed)

        return await self._run(user_id, "update_contact", work)

    async def delete_contact(self, user_id: str, contact_id: str) -> bool:
        """Delete a contact. Returns False if nothing was deleted."""
        parsed = _parse_id(contact_id)
        if parsed is None:
            return False

        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                delete(ContactModel).where(
                    ContactModel.user_id == uuid.UUID(user_id),
                    ContactModel.id == parsed,
                )
            )
            await session.commit()
            return result.rowcount > 0

        return await self._run(user_id, "delete_contact", work)

    async def _reload_contact(self, session: AsyncSession, contact_id: uuid.UUID) -> ContactRead:
        """Re-select a contact so the eager joins reflect the committed row."""
        stmt = (
            select(ContactModel)
            .where(ContactModel.id == contact_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return _model_to_contact(result.unique().scalar_one())

    # ── Properties ──────────────────────────────────────────────────────────

    async def list_properties(self, user_id: str) -> list[PropertyRead]:
        """List the user's properties, newest first."""

        async def work(session: AsyncSession) -> list[PropertyRead]:
            stmt = (
                select(PropertyModel)
                .where(PropertyModel.user_id == uuid.UUID(user_id))
                .order_by(PropertyModel.created_at.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_property(m) for m in result.scalars().all()]

        return await self._run(user_id, "list_properties", work)

    async def get_property(self, user_id: str, property_id: str) -> PropertyRead | None:
        """Get a property by ID."""
        parsed = _parse_id(property_id)
        if parsed is None:
            return None

        async def work(session: AsyncSession) -> PropertyRead | None:
            stmt = select(PropertyModel).where(
                PropertyModel.user_id == uuid.UUID(user_id),
                PropertyModel.id == parsed,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            return _model_to_property(model) if model is not None else None

        return await self._run(user_id, "get_property", work)

    async def insert_property(self, user_id: str, data: PropertyCreate) -> PropertyRead:
        """Insert a property."""

        async def work(session: AsyncSession) -> PropertyRead:
            model = PropertyModel(
                user_id=uuid.UUID(user_id),
                description=data.description,
                price=data.price,
                commission_percentage=data.commission_percentage,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return _model_to_property(model)

        return await self._run(user_id, "insert_property", work)

    async def update_property(
        self, user_id: str, property_id: str, data: PropertyUpdate
    ) -> PropertyRead | None:
        """Apply the fields set on data. Returns None if the property is absent."""
        parsed = _parse_id(property_id)
        if parsed is None:
            return None

        async def work(session: AsyncSession) -> PropertyRead | None:
            stmt = select(PropertyModel).where(
                PropertyModel.user_id == uuid.UUID(user_id),
                PropertyModel.id == parsed,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            for key, value in data.model_dump(exclude_unset=True).items():
                setattr(model, key, value)
            await session.commit()
            await session.refresh(model)
            return _model_to_property(model)

        return await self._run(user_id, "update_property", work)

    async def delete_property(self, user_id: str, property_id: str) -> bool:
        """Delete a property.

        No check for referencing contacts happens here; the foreign key on
        contacts.property_id rejects the delete and _run turns that into
        ConflictError.
        """
        parsed = _parse_id(property_id)
        if parsed is None:
            return False

        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                delete(PropertyModel).where(
                    PropertyModel.user_id == uuid.UUID(user_id),
                    PropertyModel.id == parsed,
                )
            )
            await session.commit()
            return result.rowcount > 0

        return await self._run(user_id, "delete_property", work)
