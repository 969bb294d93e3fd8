"""Dashboard endpoint -- sales metrics over a date range."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src.crm.api.deps import get_current_user, get_service, to_http_error
from src.crm.core.context import UserContext
from src.crm.pipeline.errors import PipelineError
from src.crm.pipeline.metrics import format_brl

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


class DashboardResponse(BaseModel):
    """Dashboard metrics; monetary fields come as floats and BRL strings."""

    start: str
    end: str
    total_contacts: int = 0
    new_contacts: int = 0
    sales_completed: int = 0
    total_vgv: float = 0.0
    total_vgv_display: str = ""
    total_commissions: float = 0.0
    total_commissions_display: str = ""
    conversion_rate: float = 0.0
    average_sale_cycle_days: float = 0.0


def _get_dashboard_service(request: Request) -> Any:
    return get_service(request, "dashboard_service", "Dashboard")


@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    request: Request,
    start: date | None = Query(default=None, description="First day, YYYY-MM-DD"),
    end: date | None = Query(default=None, description="Last day, YYYY-MM-DD"),
    user: UserContext = Depends(get_current_user),
) -> DashboardResponse:
    """Compute metrics for [start, end]; defaults to the last 30 days."""
    service = _get_dashboard_service(request)
    try:
        metrics = await service.compute_metrics(user, start, end)
    except PipelineError as exc:
        raise to_http_error(exc)
    return DashboardResponse(
        start=metrics.start.isoformat(),
        end=metrics.end.isoformat(),
        total_contacts=metrics.total_contacts,
        new_contacts=metrics.new_contacts,
        sales_completed=metrics.sales_completed,
        total_vgv=float(metrics.total_vgv),
        total_vgv_display=format_brl(metrics.total_vgv),
        total_commissions=float(metrics.total_commissions),
        total_commissions_display=format_brl(metrics.total_commissions),
        conversion_rate=metrics.conversion_rate,
        average_sale_cycle_days=metrics.average_sale_cycle_days,
    )
