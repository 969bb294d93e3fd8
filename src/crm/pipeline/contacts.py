"""Contact book -- create, edit, and delete leads.

A new contact lands in the first stage of the board that is not the won
stage, unless a stage is chosen. Referenced stage and property ids must
belong to the same user.
Sale fields are never written here; they only change through a won-stage
move (see board.BoardController), so the form refuses to put a contact
into the won stage directly.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.crm.core.context import UserContext
from src.crm.pipeline.errors import NotFoundError, ValidationError
from src.crm.pipeline.sales import SaleRecorder
from src.crm.pipeline.schemas import ContactCreate, ContactRead, ContactUpdate

logger = structlog.get_logger(__name__)


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ContactService:
    """CRUD for contacts.

    Args:
        repository: PipelineRepository (or a compatible test double).
        sale_recorder: Used to keep the won stage out of the edit form.
    """

    def __init__(self, repository: Any, sale_recorder: SaleRecorder | None = None) -> None:
        self._repo = repository
        self._sales = sale_recorder or SaleRecorder()

    async def list_contacts(self, ctx: UserContext) -> list[ContactRead]:
        """All contacts, newest first."""
        contacts = await self._repo.list_contacts(ctx.user_id)
        return list(reversed(contacts))

    async def get_contact(self, ctx: UserContext, contact_id: str) -> ContactRead:
        contact = await self._repo.get_contact(ctx.user_id, contact_id)
        if contact is None:
            raise NotFoundError(f"Contact not found: {contact_id}")
        return contact

    async def create_contact(self, ctx: UserContext, data: ContactCreate) -> ContactRead:
        """Register a contact.

        Raises:
            ValidationError: If the name is blank.
            NotFoundError: If stage_id or property_id does not resolve.
        """
        name = _blank_to_none(data.name)
        if name is None:
            raise ValidationError("contact name is required")

        stage_id = data.stage_id or None
        if stage_id is None:
            stages = await self._repo.list_stages(ctx.user_id)
            stage_id = next(
                (s.id for s in stages if not self._sales.is_won_stage(s)), None
            )
        else:
            await self._check_stage(ctx, stage_id)

        property_id = data.property_id or None
        if property_id is not None:
            await self._check_property(ctx, property_id)

        clean = ContactCreate(
            name=name,
            phone=_blank_to_none(data.phone),
            email=_blank_to_none(data.email),
            property_id=property_id,
            stage_id=stage_id,
            visit_date=data.visit_date,
        )
        contact = await self._repo.insert_contact(ctx.user_id, clean)
        logger.info(
            "contact_created",
            user_id=ctx.user_id,
            contact_id=contact.id,
            stage_id=contact.stage_id,
        )
        return contact

    async def update_contact(
        self, ctx: UserContext, contact_id: str, data: ContactUpdate
    ) -> ContactRead:
        """Apply the edit-form fields that were explicitly set.

        Raises:
            ValidationError: If name is set to blank.
            NotFoundError: If the contact, stage_id, or property_id does not resolve.
        """
        values = data.model_dump(exclude_unset=True)
        if "name" in values:
            values["name"] = _blank_to_none(values["name"])
            if values["name"] is None:
                raise ValidationError("contact name is required")
        for key in ("phone", "email"):
            if key in values:
                values[key] = _blank_to_none(values[key])
        for key in ("stage_id", "property_id"):
            if key in values and not values[key]:
                values[key] = None
        if values.get("stage_id"):
            current = await self.get_contact(ctx, contact_id)
            if values["stage_id"] == current.stage_id:
                del values["stage_id"]
            else:
                await self._check_stage(ctx, values["stage_id"])
        if values.get("property_id"):
            await self._check_property(ctx, values["property_id"])

        if not values:
            return await self.get_contact(ctx, contact_id)

        updated = await self._repo.update_contact(ctx.user_id, contact_id, values)
        if updated is None:
            raise NotFoundError(f"Contact not found: {contact_id}")
        logger.info(
            "contact_updated",
            user_id=ctx.user_id,
            contact_id=contact_id,
            fields=sorted(values),
        )
        return updated

    async def delete_contact(self, ctx: UserContext, contact_id: str) -> None:
        deleted = await self._repo.delete_contact(ctx.user_id, contact_id)
        if not deleted:
            raise NotFoundError(f"Contact not found: {contact_id}")
        logger.info("contact_deleted", user_id=ctx.user_id, contact_id=contact_id)

    async def _check_stage(self, ctx: UserContext, stage_id: str) -> None:
        stage = await self._repo.get_stage(ctx.user_id, stage_id)
        if stage is None:
            raise NotFoundError(f"Stage not found: {stage_id}")
        # Sale fields are stamped only by the pipeline move
        if self._sales.is_won_stage(stage):
            raise ValidationError("the won stage can only be entered through a pipeline move")

    async def _check_property(self, ctx: UserContext, property_id: str) -> None:
        if await self._repo.get_property(ctx.user_id, property_id) is None:
            raise NotFoundError(f"Property not found: {property_id}")
