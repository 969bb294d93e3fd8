"""REST API endpoints for property listings."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel

from src.crm.api.deps import get_current_user, get_service, to_http_error
from src.crm.core.context import UserContext
from src.crm.pipeline.errors import PipelineError
from src.crm.pipeline.schemas import PropertyCreate, PropertyUpdate

router = APIRouter(prefix="/api/v1/properties", tags=["properties"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class PropertyResponse(BaseModel):
    """Response for property data, serializes datetimes to ISO strings."""

    id: str
    description: str
    price: float
    commission_percentage: float = 0.0
    created_at: str | None = None
    updated_at: str | None = None


class CreatePropertyRequest(BaseModel):
    """Request body for registering a property."""

    description: str
    price: Decimal
    commission_percentage: Decimal = Decimal("0")


class UpdatePropertyRequest(BaseModel):
    """Request body for editing a property (all fields optional)."""

    description: str | None = None
    price: Decimal | None = None
    commission_percentage: Decimal | None = None


def _get_property_service(request: Request) -> Any:
    return get_service(request, "property_service", "Property management")


def _property_to_response(prop: Any) -> PropertyResponse:
    """Convert PropertyRead to PropertyResponse."""
    return PropertyResponse(
        id=prop.id,
        description=prop.description,
        price=float(prop.price),
        commission_percentage=float(prop.commission_percentage),
        created_at=prop.created_at.isoformat() if prop.created_at else None,
        updated_at=prop.updated_at.isoformat() if prop.updated_at else None,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[PropertyResponse])
async def list_properties(
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> list[PropertyResponse]:
    """List the user's properties, newest first."""
    service = _get_property_service(request)
    try:
        props = await service.list_properties(user)
    except PipelineError as exc:
        raise to_http_error(exc)
    return [_property_to_response(p) for p in props]


@router.post("", response_model=PropertyResponse, status_code=201)
async def create_property(
    body: CreatePropertyRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> PropertyResponse:
    """Register a property."""
    service = _get_property_service(request)
    data = PropertyCreate(**body.model_dump())
    try:
        prop = await service.create_property(user, data)
    except PipelineError as exc:
        raise to_http_error(exc)
    return _property_to_response(prop)


@router.get("/{property_id}", response_model=PropertyResponse)
async def get_property(
    property_id: str,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> PropertyResponse:
    """Get a single property by ID."""
    service = _get_property_service(request)
    try:
        prop = await service.get_property(user, property_id)
    except PipelineError as exc:
        raise to_http_error(exc)
    return _property_to_response(prop)


@router.patch("/{property_id}", response_model=PropertyResponse)
async def update_property(
    property_id: str,
    body: UpdatePropertyRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> PropertyResponse:
    """Update the fields present in the request body."""
    service = _get_property_service(request)
    data = PropertyUpdate(**body.model_dump(exclude_unset=True))
    try:
        prop = await service.update_property(user, property_id, data)
    except PipelineError as exc:
        raise to_http_error(exc)
    return _property_to_response(prop)


@router.delete("/{property_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_property(
    property_id: str,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> Response:
    """Delete a property. 409 while contacts still reference it."""
    service = _get_property_service(request)
    try:
        await service.delete_property(user, property_id)
    except PipelineError as exc:
        raise to_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
