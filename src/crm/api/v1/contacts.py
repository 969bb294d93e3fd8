"""REST API endpoints for the contact book.

ContactResponse is shared with the pipeline endpoints, which return the
same card shape on the board and in move results.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel

from src.crm.api.deps import get_current_user, get_service, to_http_error
from src.crm.core.context import UserContext
from src.crm.pipeline.errors import PipelineError
from src.crm.pipeline.schemas import ContactCreate, ContactUpdate

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])


# ── Schemas ──────────────────────────────────────────────────────────────────


class ContactPropertyResponse(BaseModel):
    """Property summary embedded in a contact."""

    id: str
    description: str
    price: float
    commission_percentage: float = 0.0


class ContactResponse(BaseModel):
    """Response for contact data, serializes datetimes to ISO strings."""

    id: str
    name: str
    phone: str | None = None
    email: str | None = None
    property_id: str | None = None
    stage_id: str | None = None
    stage_name: str | None = None
    visit_date: str | None = None
    sale_date: str | None = None
    sale_value: float | None = None
    property: ContactPropertyResponse | None = None
    created_at: str | None = None
    updated_at: str | None = None


class CreateContactRequest(BaseModel):
    """Request body for registering a contact."""

    name: str
    phone: str | None = None
    email: str | None = None
    property_id: str | None = None
    stage_id: str | None = None
    visit_date: datetime | None = None


class UpdateContactRequest(BaseModel):
    """Request body for editing a contact (all fields optional)."""

    name: str | None = None
    phone: str | None = None
    email: str | None = None
    property_id: str | None = None
    stage_id: str | None = None
    visit_date: datetime | None = None


def _get_contact_service(request: Request) -> Any:
    return get_service(request, "contact_service", "Contact management")


def contact_to_response(contact: Any) -> ContactResponse:
    """Convert ContactRead to ContactResponse."""
    prop = contact.property
    return ContactResponse(
        id=contact.id,
        name=contact.name,
        phone=contact.phone,
        email=contact.email,
        property_id=contact.property_id,
        stage_id=contact.stage_id,
        stage_name=contact.stage_name,
        visit_date=contact.visit_date.isoformat() if contact.visit_date else None,
        sale_date=contact.sale_date.isoformat() if contact.sale_date else None,
        sale_value=float(contact.sale_value) if contact.sale_value is not None else None,
        property=(
            ContactPropertyResponse(
                id=prop.id,
                description=prop.description,
                price=float(prop.price),
                commission_percentage=float(prop.commission_percentage),
            )
            if prop is not None
            else None
        ),
        created_at=contact.created_at.isoformat() if contact.created_at else None,
        updated_at=contact.updated_at.isoformat() if contact.updated_at else None,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[ContactResponse])
async def list_contacts(
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> list[ContactResponse]:
    """List the user's contacts, newest first."""
    service = _get_contact_service(request)
    try:
        contacts = await service.list_contacts(user)
    except PipelineError as exc:
        raise to_http_error(exc)
    return [contact_to_response(c) for c in contacts]


@router.post("", response_model=ContactResponse, status_code=201)
async def create_contact(
    body: CreateContactRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> ContactResponse:
    """Register a contact. Without stage_id it lands in the first stage."""
    service = _get_contact_service(request)
    data = ContactCreate(**body.model_dump())
    try:
        contact = await service.create_contact(user, data)
    except PipelineError as exc:
        raise to_http_error(exc)
    return contact_to_response(contact)


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(
    contact_id: str,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> ContactResponse:
    """Get a single contact by ID."""
    service = _get_contact_service(request)
    try:
        contact = await service.get_contact(user, contact_id)
    except PipelineError as exc:
        raise to_http_error(exc)
    return contact_to_response(contact)


@router.patch("/{contact_id}", response_model=ContactResponse)
async def update_contact(
    contact_id: str,
    body: UpdateContactRequest,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> ContactResponse:
    """Update the fields present in the request body."""
    service = _get_contact_service(request)
    data = ContactUpdate(**body.model_dump(exclude_unset=True))
    try:
        contact = await service.update_contact(user, contact_id, data)
    except PipelineError as exc:
        raise to_http_error(exc)
    return contact_to_response(contact)


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contact(
    contact_id: str,
    request: Request,
    user: UserContext = Depends(get_current_user),
) -> Response:
    """Delete a contact."""
    service = _get_contact_service(request)
    try:
        await service.delete_contact(user, contact_id)
    except PipelineError as exc:
        raise to_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
