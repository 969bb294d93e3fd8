"""Board controller -- kanban view and contact movement between stages.

Moves are written first and reflected second: every ContactRead returned
here is the row the repository handed back after a successful write, so a
failed write leaves the caller holding the last persisted state.

Entering the won stage is a two-phase flow when the sale value is not known
from the contact's property. The first call returns SALE_VALUE_REQUIRED and
writes nothing; the client asks the operator and repeats the call with
sale_value. A value <= 0 aborts the move with ValidationError.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog

from src.crm.core.context import UserContext
from src.crm.pipeline.errors import NotFoundError, ValidationError
from src.crm.pipeline.sales import SaleRecorder
from src.crm.pipeline.schemas import (
    Board,
    BoardColumn,
    ContactRead,
    MoveResult,
    MoveStatus,
)

logger = structlog.get_logger(__name__)


class BoardController:
    """Orchestrates board loading, drag-and-drop, and stage assignment.

    Args:
        repository: PipelineRepository (or a compatible test double).
        sale_recorder: SaleRecorder deciding won-stage side effects.
    """

    def __init__(self, repository: Any, sale_recorder: SaleRecorder | None = None) -> None:
        self._repo = repository
        self._sales = sale_recorder or SaleRecorder()

    async def load_board(self, ctx: UserContext) -> Board:
        """Stages in display order with their contacts, plus unassigned contacts."""
        stages = await self._repo.list_stages(ctx.user_id)
        contacts = await self._repo.list_contacts(ctx.user_id)

        by_stage: dict[str, list[ContactRead]] = {s.id: [] for s in stages}
        unassigned: list[ContactRead] = []
        for contact in contacts:
            if contact.stage_id in by_stage:
                by_stage[contact.stage_id].append(contact)
            else:
                unassigned.append(contact)

        return Board(
            columns=[BoardColumn(stage=s, contacts=by_stage[s.id]) for s in stages],
            unassigned=unassigned,
        )

    async def move_contact(
        self,
        ctx: UserContext,
        contact_id: str,
        target_stage_id: str,
        sale_value: Decimal | float | str | None = None,
    ) -> MoveResult:
        """Reassign a contact to a stage, recording a sale on the won stage.

        Raises:
            NotFoundError: If the contact or the stage does not exist.
            ValidationError: If the won stage needs a sale value and the
                supplied one is not positive.
        """
        contact = await self._repo.get_contact(ctx.user_id, contact_id)
        if contact is None:
            raise NotFoundError(f"Contact not found: {contact_id}")
        stage = await self._repo.get_stage(ctx.user_id, target_stage_id)
        if stage is None:
            raise NotFoundError(f"Stage not found: {target_stage_id}")

        if not self._sales.is_won_stage(stage):
            updated = await self._write(ctx, contact_id, {"stage_id": stage.id})
            logger.info(
                "contact_moved",
                user_id=ctx.user_id,
                contact_id=contact_id,
                from_stage=contact.stage_id,
                to_stage=stage.id,
            )
            return MoveResult(status=MoveStatus.MOVED, contact=updated)

        if sale_value is None and self._sales.needs_operator_value(contact):
            logger.info(
                "sale_value_required",
                user_id=ctx.user_id,
                contact_id=contact_id,
                stage_id=stage.id,
            )
            return MoveResult(
                status=MoveStatus.SALE_VALUE_REQUIRED,
                contact=contact,
                message="sale value required",
            )

        try:
            value = self._sales.resolve_sale_value(contact, sale_value)
        except ValidationError:
            logger.warning(
                "sale_value_rejected",
                user_id=ctx.user_id,
                contact_id=contact_id,
                supplied=str(sale_value),
            )
            raise

        updated = await self._write(ctx, contact_id, self._sales.build_stamp(stage, value))
        logger.info(
            "sale_recorded",
            user_id=ctx.user_id,
            contact_id=contact_id,
            stage_id=stage.id,
            sale_value=str(value),
            from_property=not self._sales.needs_operator_value(contact),
        )
        return MoveResult(status=MoveStatus.SALE_RECORDED, contact=updated)

    async def remove_from_pipeline(self, ctx: UserContext, contact_id: str) -> ContactRead:
        """Take a contact off the board. Sale fields are left as they are.

        Raises:
            NotFoundError: If the contact does not exist.
        """
        updated = await self._write(ctx, contact_id, {"stage_id": None})
        logger.info("contact_unassigned", user_id=ctx.user_id, contact_id=contact_id)
        return updated

    async def handle_drop(
        self,
        ctx: UserContext,
        contact_id: str,
        over_id: str | None,
        sale_value: Decimal | float | str | None = None,
    ) -> MoveResult:
        """Complete a drag: move the contact if it was dropped on a stage column.

        A drop outside any column, onto something that is not one of the
        user's stages (e.g. another card), or back onto the contact's own
        column is cancelled without writing anything.
        """
        contact = await self._repo.get_contact(ctx.user_id, contact_id)
        if contact is None:
            raise NotFoundError(f"Contact not found: {contact_id}")

        stage = None
        if over_id:
            stage = await self._repo.get_stage(ctx.user_id, over_id)
        if stage is None or stage.id == contact.stage_id:
            logger.debug(
                "drop_cancelled",
                user_id=ctx.user_id,
                contact_id=contact_id,
                over_id=over_id,
            )
            return MoveResult(status=MoveStatus.CANCELLED, contact=contact)

        return await self.move_contact(ctx, contact_id, stage.id, sale_value)

    async def search_and_assign(
        self,
        ctx: UserContext,
        query: str,
        stage_id: str,
        sale_value: Decimal | float | str | None = None,
    ) -> MoveResult:
        """Move the first contact whose name contains query into a stage.

        Matching is a case-insensitive substring test over contacts in
        insertion order. No match is reported as NOT_FOUND, not raised.

        Raises:
            ValidationError: If query or stage_id is blank.
        """
        needle = (query or "").strip().casefold()
        if not needle:
            raise ValidationError("search term is required")
        if not stage_id:
            raise ValidationError("stage is required")

        contacts = await self._repo.list_contacts(ctx.user_id)
        match = next((c for c in contacts if needle in c.name.casefold()), None)
        if match is None:
            logger.info("assign_contact_not_found", user_id=ctx.user_id, query=query)
            return MoveResult(status=MoveStatus.NOT_FOUND, message="contact not found")

        return await self.move_contact(ctx, match.id, stage_id, sale_value)

    async def _write(
        self, ctx: UserContext, contact_id: str, values: dict[str, Any]
    ) -> ContactRead:
        updated = await self._repo.update_contact(ctx.user_id, contact_id, values)
        if updated is None:
            raise NotFoundError(f"Contact not found: {contact_id}")
        return updated
