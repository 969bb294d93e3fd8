"""REST API endpoints for the kanban pipeline.

Stage management (list, create, rename, reorder, delete), the board view,
and contact movement: explicit moves, drag-and-drop completion, removal
from the pipeline, and search-and-assign.

Moves into the won stage may answer with status "sale_value_required"
instead of writing; the client then repeats the call with sale_value.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field

from src.crm.api.deps import get_current_user, get_service, to_http_error
from src.crm.api.v1.contacts import ContactResponse, contact_to_response
from src.crm.core.context import UserContext
from src.crm.pipeline.errors import PipelineError
from src.crm.pipeline.schemas import MoveDirection

router = APIRouter(prefix="/api/v1/pipeline", tags=["pipeline"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class StageResponse(BaseModel):
    """Response for stage data."""

    id: str
    name: str
    position: int
    is_default: bool = False
    created_at: str | None = None


class BoardColumnResponse(BaseModel):
    """One board column."""

    stage: StageResponse
    contacts: list[ContactResponse] = Field(default_factory=list)


class BoardResponse(BaseModel):
    """Board view: columns in stage order plus contacts outside the pipeline."""

    columns: list[BoardColumnResponse] = Field(default_factory=list)
    unassigned: list[ContactResponse] = Field(default_factory=list)


class MoveResponse(BaseModel):
    """Outcome of a move, drop, or assign request."""

    status: str
    contact: ContactResponse | None = None
    message: str | None = None


# ── Request Schemas ──────────────────────────────────────────────────────────


class CreateStageRequest(BaseModel):
    """Request body for creating a stage."""

    name: str


class RenameStageRequest(BaseModel):
    """Request body for renaming a stage."""

    name: str


class RepositionStageRequest(BaseModel):
    """Request body for moving a stage one slot."""

    direction: MoveDirection


class MoveContactRequest(BaseModel):
    """Request body for moving a contact to a stage."""

    stage_id: str
    sale_value: Decimal | None = None


class DropRequest(BaseModel):
    """Request body for completing a drag; over_id is whatever was under the cursor."""

    contact_id: str
    over_id: str | None = None
    sale_value: Decimal | None = None


class AssignRequest(BaseModel):
    """Request body for search-and-assign."""

    query: str
    stage_id: str
    sale_value: Decimal | None = None


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_stage_store(request: Request) -> Any:
    return get_service(request, "stage_store", "Pipeline")


def _get_board(request: Request) -> Any:
    return get_service(request, "board_controller", "Pipeline")


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _stage_to_response(stage: Any) -> StageResponse:
    """Convert StageRead to StageResponse."""
    return StageResponse(
        id=stage.id,
        name=stage.name,
        position=stage.position,
        is_default=stage.is_default,
        created_at=stage.created_at.isoformat() if stage.created_at else None,
    )


def _move_to_response(result: Any) -> MoveResponse:
    """Convert MoveResult to MoveResponse."""
    return MoveResponse(
        status=result.status.value,
        contact=contact_to_response(result.contact) if result.contact else None,
        message=result.message,
    )


# ── Board ────────────────────────────────────────────────────────────────────


@router.get("/board", response_model=BoardResponse)
async def get_board(
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> BoardResponse:
    """Load the board: every stage in order with its contacts."""
    board_controller = _get_board(request)
    try:
        board = await board_controller.load_board(user)
    except PipelineError as exc:
        raise to_http_error(exc)
    return BoardResponse(
        columns=[
            BoardColumnResponse(
                stage=_stage_to_response(col.stage),
                contacts=[contact_to_response(c) for c in col.contacts],
            )
            for col in board.columns
        ],
        unassigned=[contact_to_response(c) for c in board.unassigned],
    )


# ── Stages ───────────────────────────────────────────────────────────────────


@router.get("/stages", response_model=list[StageResponse])
async def list_stages(
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> list[StageResponse]:
    """List stages in display order."""
    store = _get_stage_store(request)
    try:
        stages = await store.list_stages(user)
    except PipelineError as exc:
        raise to_http_error(exc)
    return [_stage_to_response(s) for s in stages]


@router.post("/stages", response_model=StageResponse, status_code=201)
async def create_stage(
    body: CreateStageRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> StageResponse:
    """Append a new stage at the end of the board."""
    store = _get_stage_store(request)
    try:
        stage = await store.create_stage(user, body.name)
    except PipelineError as exc:
        raise to_http_error(exc)
    return _stage_to_response(stage)


@router.patch("/stages/{stage_id}", response_model=StageResponse)
async def rename_stage(
    stage_id: str,
    body: RenameStageRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> StageResponse:
    """Rename a stage."""
    store = _get_stage_store(request)
    try:
        stage = await store.rename_stage(user, stage_id, body.name)
    except PipelineError as exc:
        raise to_http_error(exc)
    return _stage_to_response(stage)


@router.post("/stages/{stage_id}/move", response_model=list[StageResponse])
async def reposition_stage(
    stage_id: str,
    body: RepositionStageRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> list[StageResponse]:
    """Swap a stage with its neighbour and return the stages in new order."""
    store = _get_stage_store(request)
    try:
        await store.reposition(user, stage_id, body.direction)
        stages = await store.list_stages(user)
    except PipelineError as exc:
        raise to_http_error(exc)
    return [_stage_to_response(s) for s in stages]


@router.delete("/stages/{stage_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_stage(
    stage_id: str,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> Response:
    """Delete a custom stage with no contacts in it."""
    store = _get_stage_store(request)
    try:
        await store.delete_stage(user, stage_id)
    except PipelineError as exc:
        raise to_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Contact Movement ─────────────────────────────────────────────────────────


@router.post("/contacts/{contact_id}/move", response_model=MoveResponse)
async def move_contact(
    contact_id: str,
    body: MoveContactRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> MoveResponse:
    """Move a contact to a stage, recording a sale on the won stage."""
    board_controller = _get_board(request)
    try:
        result = await board_controller.move_contact(
            user, contact_id, body.stage_id, body.sale_value
        )
    except PipelineError as exc:
        raise to_http_error(exc)
    return _move_to_response(result)


@router.post("/drop", response_model=MoveResponse)
async def drop_contact(
    body: DropRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> MoveResponse:
    """Complete a drag-and-drop gesture."""
    board_controller = _get_board(request)
    try:
        result = await board_controller.handle_drop(
            user, body.contact_id, body.over_id, body.sale_value
        )
    except PipelineError as exc:
        raise to_http_error(exc)
    return _move_to_response(result)


@router.delete("/contacts/{contact_id}/stage", response_model=ContactResponse)
async def remove_from_pipeline(
    contact_id: str,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> ContactResponse:
    """Take a contact off the board without deleting it."""
    board_controller = _get_board(request)
    try:
        contact = await board_controller.remove_from_pipeline(user, contact_id)
    except PipelineError as exc:
        raise to_http_error(exc)
    return contact_to_response(contact)


@router.post("/assign", response_model=MoveResponse)
async def assign_contact(
    body: AssignRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> MoveResponse:
    """Find a contact by name and move it into a stage."""
    board_controller = _get_board(request)
    try:
        result = await board_controller.search_and_assign(
            user, body.query, body.stage_id, body.sale_value
        )
    except PipelineError as exc:
        raise to_http_error(exc)
    return _move_to_response(result)
