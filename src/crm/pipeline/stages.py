"""Stage store -- ordered, user-owned pipeline columns.

Stages are listed by position ascending (ties in insertion order). New
stages go after the current last one. Reordering swaps the position values
of two neighbours in one repository call. Neighbours that share a position
are separated instead: the one displayed first, and every stage after the
pair, moves one position down.

Default stages are seeded once per user at signup and are permanent.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.crm.core.context import UserContext
from src.crm.pipeline.errors import ConflictError, NotFoundError, ValidationError
from src.crm.pipeline.schemas import MoveDirection, StageRead

logger = structlog.get_logger(__name__)

# Seeded for every new user, in board order. "Venda Ganha" is the won stage.
DEFAULT_STAGE_NAMES: tuple[str, ...] = (
    "Aguardando atendimento",
    "Em Atendimento",
    "Visita Agendada",
    "Venda Ganha",
    "Venda Perdida",
)


def _clean_name(name: str | None) -> str:
    """Strip a stage name, rejecting blank input."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("stage name is required")
    return cleaned


class StageStore:
    """CRUD and ordering for pipeline stages.

    Args:
        repository: PipelineRepository (or a compatible test double).
    """

    def __init__(self, repository: Any) -> None:
        self._repo = repository

    async def list_stages(self, ctx: UserContext) -> list[StageRead]:
        """Stages of the current user in display order."""
        return await self._repo.list_stages(ctx.user_id)

    async def get_stage(self, ctx: UserContext, stage_id: str) -> StageRead:
        """Resolve a stage id or raise NotFoundError."""
        stage = await self._repo.get_stage(ctx.user_id, stage_id)
        if stage is None:
            raise NotFoundError(f"Stage not found: {stage_id}")
        return stage

    async def seed_default_stages(self, ctx: UserContext, account: Any = None) -> list[StageRead]:
        """Create the default stages for a freshly registered user.

        Pass the unsaved User row as account to register it in the same
        transaction as its stages.

        Raises:
            ConflictError: If account collides with an existing user.
            TransportError: If the write fails; nothing is persisted.
        """
        stages = await self._repo.insert_stages(
            ctx.user_id,
            [(name, idx) for idx, name in enumerate(DEFAULT_STAGE_NAMES, start=1)],
            is_default=True,
            account=account,
        )
        logger.info("default_stages_seeded", user_id=ctx.user_id, count=len(stages))
        return stages

    async def create_stage(self, ctx: UserContext, name: str) -> StageRead:
        """Append a stage after the current last position.

        Raises:
            ValidationError: If name is empty or blank.
        """
        cleaned = _clean_name(name)
        max_position = await self._repo.max_stage_position(ctx.user_id)
        position = (max_position or 0) + 1
        created = await self._repo.insert_stages(ctx.user_id, [(cleaned, position)])
        stage = created[0]
        logger.info(
            "stage_created",
            user_id=ctx.user_id,
            stage_id=stage.id,
            position=stage.position,
        )
        return stage

    async def rename_stage(self, ctx: UserContext, stage_id: str, new_name: str) -> StageRead:
        """Rename a stage.

        Raises:
            ValidationError: If new_name is empty or blank.
            NotFoundError: If the stage does not exist for this user.
        """
        cleaned = _clean_name(new_name)
        stage = await self._repo.rename_stage(ctx.user_id, stage_id, cleaned)
        if stage is None:
            raise NotFoundError(f"Stage not found: {stage_id}")
        logger.info("stage_renamed", user_id=ctx.user_id, stage_id=stage_id)
        return stage

    async def reposition(
        self, ctx: UserContext, stage_id: str, direction: MoveDirection
    ) -> None:
        """Swap a stage with its neighbour in the requested direction.

        Moving the first stage up or the last stage down does nothing.

        Raises:
            NotFoundError: If the stage does not exist for this user.
            TransportError: If the swap could not be applied to both rows.
        """
        stages = await self._repo.list_stages(ctx.user_id)
        index = next((i for i, s in enumerate(stages) if s.id == stage_id), None)
        if index is None:
            raise NotFoundError(f"Stage not found: {stage_id}")

        neighbour_index = index - 1 if direction == MoveDirection.UP else index + 1
        if neighbour_index < 0 or neighbour_index >= len(stages):
            logger.debug(
                "stage_reposition_noop",
                stage_id=stage_id,
                direction=direction.value,
            )
            return

        neighbour = stages[neighbour_index]
        await self._repo.swap_stage_positions(ctx.user_id, stage_id, neighbour.id)
        logger.info(
            "stage_repositioned",
            user_id=ctx.user_id,
            stage_id=stage_id,
            swapped_with=neighbour.id,
            direction=direction.value,
        )

    async def delete_stage(self, ctx: UserContext, stage_id: str) -> None:
        """Delete a custom stage that no contact sits in.

        Raises:
            NotFoundError: If the stage does not exist for this user.
            ValidationError: If the stage is one of the seeded defaults.
            ConflictError: If any contact still references the stage.
        """
        stage = await self.get_stage(ctx, stage_id)
        if stage.is_default:
            raise ValidationError("default stages cannot be deleted")

        in_use = await self._repo.count_contacts_in_stage(ctx.user_id, stage_id)
        if in_use:
            raise ConflictError("stage has contacts")

        deleted = await self._repo.delete_stage(ctx.user_id, stage_id)
        if not deleted:
            raise NotFoundError(f"Stage not found: {stage_id}")
        logger.info("stage_deleted", user_id=ctx.user_id, stage_id=stage_id)
