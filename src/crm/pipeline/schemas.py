"""Pydantic schemas for the sales pipeline -- stages, contacts, properties, board.

Defines all structured types exchanged between the repository, the services,
and the API layer:
- Enums: MoveDirection, MoveStatus
- Stages: StageRead
- Properties: PropertyCreate/Update/Read, PropertySummary
- Contacts: ContactCreate/Update/Read, ContactFilter
- Board: BoardColumn, Board, MoveResult
- Dashboard: DashboardMetrics

Monetary values are Decimal end to end; the API layer converts to float.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

# Largest amount a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal("9999999999.99")


# ── Enums ───────────────────────────────────────────────────────────────────


class MoveDirection(str, Enum):
    """Direction for swapping a stage with its neighbour."""

    UP = "up"
    DOWN = "down"


class MoveStatus(str, Enum):
    """Outcome of a contact move request."""

    MOVED = "moved"
    SALE_RECORDED = "sale_recorded"
    SALE_VALUE_REQUIRED = "sale_value_required"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"


# ── Stages ──────────────────────────────────────────────────────────────────


class StageRead(BaseModel):
    """Persisted pipeline stage."""

    id: str
    user_id: str
    name: str
    position: int
    is_default: bool = False
    created_at: datetime | None = None


# ── Properties ──────────────────────────────────────────────────────────────


class PropertyCreate(BaseModel):
    """Schema for registering a property."""

    description: str
    price: Decimal
    commission_percentage: Decimal = Decimal("0")


class PropertyUpdate(BaseModel):
    """Partial property update; unset fields are left alone."""

    description: str | None = None
    price: Decimal | None = None
    commission_percentage: Decimal | None = None


class PropertyRead(BaseModel):
    """Persisted property."""

    id: str
    user_id: str
    description: str
    price: Decimal
    commission_percentage: Decimal = Decimal("0")
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PropertySummary(BaseModel):
    """Property fields fetched alongside a contact."""

    id: str
    description: str
    price: Decimal
    commission_percentage: Decimal = Decimal("0")


# ── Contacts ────────────────────────────────────────────────────────────────


class ContactCreate(BaseModel):
    """Schema for registering a lead."""

    name: str
    phone: str | None = None
    email: str | None = None
    property_id: str | None = None
    stage_id: str | None = None
    visit_date: datetime | None = None


class ContactUpdate(BaseModel):
    """Edit-form fields of a contact.

    Only fields explicitly set are written, so sending property_id=None
    detaches the property while omitting it leaves it untouched. Sale fields
    are absent on purpose: they are only written by the won-stage move.
    """

    name: str | None = None
    phone: str | None = None
    email: str | None = None
    property_id: str | None = None
    stage_id: str | None = None
    visit_date: datetime | None = None


class ContactRead(BaseModel):
    """Persisted contact with its property and stage name resolved."""

    id: str
    user_id: str
    name: str
    phone: str | None = None
    email: str | None = None
    property_id: str | None = None
    stage_id: str | None = None
    stage_name: str | None = None
    visit_date: datetime | None = None
    sale_date: datetime | None = None
    sale_value: Decimal | None = None
    property: PropertySummary | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ContactFilter(BaseModel):
    """Filters for listing contacts. All bounds are inclusive."""

    stage_id: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    sold_from: datetime | None = None
    sold_to: datetime | None = None


# ── Board ───────────────────────────────────────────────────────────────────


class BoardColumn(BaseModel):
    """One kanban column: a stage and the contacts currently in it."""

    stage: StageRead
    contacts: list[ContactRead] = Field(default_factory=list)


class Board(BaseModel):
    """Full kanban board in stage order, plus contacts outside the pipeline."""

    columns: list[BoardColumn] = Field(default_factory=list)
    unassigned: list[ContactRead] = Field(default_factory=list)


class MoveResult(BaseModel):
    """Result of move/drop/assign requests.

    contact is the row as persisted after the write, or the unchanged row
    when nothing was written (CANCELLED, SALE_VALUE_REQUIRED).
    """

    status: MoveStatus
    contact: ContactRead | None = None
    message: str | None = None


# ── Dashboard ───────────────────────────────────────────────────────────────


class DashboardMetrics(BaseModel):
    """Aggregates over one date range."""

    start: datetime
    end: datetime
    total_contacts: int = 0
    new_contacts: int = 0
    sales_completed: int = 0
    total_vgv: Decimal = Decimal("0")
    total_commissions: Decimal = Decimal("0")
    conversion_rate: float = 0.0
    average_sale_cycle_days: float = 0.0
