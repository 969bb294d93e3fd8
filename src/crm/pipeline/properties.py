"""Property listings -- CRUD with price and commission range checks."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog

from src.crm.core.context import UserContext
from src.crm.pipeline.errors import NotFoundError, ValidationError
from src.crm.pipeline.schemas import MAX_AMOUNT, PropertyCreate, PropertyRead, PropertyUpdate

logger = structlog.get_logger(__name__)

_MAX_COMMISSION = Decimal("100")


def _validate(description: str | None, price: Decimal | None, commission: Decimal | None) -> None:
    if description is not None and not description.strip():
        raise ValidationError("property description is required")
    if price is not None and (not price.is_finite() or price < 0 or price > MAX_AMOUNT):
        raise ValidationError(f"price must be between 0 and {MAX_AMOUNT}")
    if commission is not None and (
        not commission.is_finite() or commission < 0 or commission > _MAX_COMMISSION
    ):
        raise ValidationError("commission percentage must be between 0 and 100")


class PropertyService:
    """CRUD for properties.

    Deleting a property that contacts still point to is not checked here;
    the database foreign key rejects it and the repository reports
    ConflictError.
    """

    def __init__(self, repository: Any) -> None:
        self._repo = repository

    async def list_properties(self, ctx: UserContext) -> list[PropertyRead]:
        return await self._repo.list_properties(ctx.user_id)

    async def get_property(self, ctx: UserContext, property_id: str) -> PropertyRead:
        prop = await self._repo.get_property(ctx.user_id, property_id)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")
        return prop

    async def create_property(self, ctx: UserContext, data: PropertyCreate) -> PropertyRead:
        _validate(data.description, data.price, data.commission_percentage)
        prop = await self._repo.insert_property(
            ctx.user_id,
            data.model_copy(update={"description": data.description.strip()}),
        )
        logger.info("property_created", user_id=ctx.user_id, property_id=prop.id)
        return prop

    async def update_property(
        self, ctx: UserContext, property_id: str, data: PropertyUpdate
    ) -> PropertyRead:
        fields = data.model_dump(exclude_unset=True)
        for key in ("description", "price", "commission_percentage"):
            if key in fields and fields[key] is None:
                raise ValidationError(f"{key} cannot be cleared")
        _validate(data.description, data.price, data.commission_percentage)
        if data.description is not None:
            data = data.model_copy(update={"description": data.description.strip()})

        prop = await self._repo.update_property(ctx.user_id, property_id, data)
        if prop is None:
            raise NotFoundError(f"Property not found: {property_id}")
        logger.info(
            "property_updated",
            user_id=ctx.user_id,
            property_id=property_id,
            fields=sorted(fields),
        )
        return prop

    async def delete_property(self, ctx: UserContext, property_id: str) -> None:
        deleted = await self._repo.delete_property(ctx.user_id, property_id)
        if not deleted:
            raise NotFoundError(f"Property not found: {property_id}")
        logger.info("property_deleted", user_id=ctx.user_id, property_id=property_id)
