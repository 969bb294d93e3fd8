"""Dashboard metrics -- aggregates over contacts and sales in a date range.

All figures are computed from rows fetched through the repository:
- new_contacts: contacts created in the range
- sales_completed: contacts whose sale_date falls in the range
- total_vgv: sum of sale_value over those sales (VGV, gross sales value)
- total_commissions: sale_value * property commission % / 100
- conversion_rate: sales_completed / all contacts * 100
- average_sale_cycle_days: mean days from created_at to sale_date over
  the most recent 30 sales in the range
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

import structlog

from src.crm.config import get_settings
from src.crm.core.context import UserContext
from src.crm.pipeline.errors import ValidationError
from src.crm.pipeline.schemas import ContactFilter, DashboardMetrics

logger = structlog.get_logger(__name__)

_CYCLE_SAMPLE = 30
_SECONDS_PER_DAY = 86400
_CENTS = Decimal("0.01")


def format_brl(value: Decimal | float | int) -> str:
    """Format an amount as Brazilian reais, e.g. R$ 350.000,00."""
    amount = Decimal(str(value)).quantize(_CENTS)
    sign = "-" if amount < 0 else ""
    text = f"{abs(amount):,.2f}"
    # 1,234,567.89 -> 1.234.567,89
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {text}"


def resolve_range(start: date | None, end: date | None) -> tuple[datetime, datetime]:
    """Turn inclusive calendar dates into UTC datetime bounds.

    Missing bounds default to the last DASHBOARD_DEFAULT_DAYS days ending today.

    Raises:
        ValidationError: If start is after end.
    """
    today = datetime.now(timezone.utc).date()
    end = end or today
    start = start or end - timedelta(days=get_settings().DASHBOARD_DEFAULT_DAYS)
    if start > end:
        raise ValidationError("start date must not be after end date")
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end, time.max, tzinfo=timezone.utc),
    )


class DashboardService:
    """Computes DashboardMetrics for the current user.

    Args:
        repository: PipelineRepository (or a compatible test double).
    """

    def __init__(self, repository: Any) -> None:
        self._repo = repository

    async def compute_metrics(
        self, ctx: UserContext, start: date | None = None, end: date | None = None
    ) -> DashboardMetrics:
        range_start, range_end = resolve_range(start, end)

        total_contacts = await self._repo.count_contacts(ctx.user_id)
        new_contacts = await self._repo.list_contacts(
            ctx.user_id,
            ContactFilter(created_from=range_start, created_to=range_end),
        )
        sales = await self._repo.list_contacts(
            ctx.user_id,
            ContactFilter(sold_from=range_start, sold_to=range_end),
        )
        sales = [s for s in sales if s.sale_date is not None]

        total_vgv = Decimal("0")
        total_commissions = Decimal("0")
        for sale in sales:
            value = sale.sale_value or Decimal("0")
            total_vgv += value
            if sale.property is not None:
                total_commissions += value * sale.property.commission_percentage / 100

        conversion_rate = (
            len(sales) / total_contacts * 100 if total_contacts else 0.0
        )

        recent = sorted(sales, key=lambda s: s.sale_date)[-_CYCLE_SAMPLE:]
        cycles = [
            abs((s.sale_date - s.created_at).total_seconds()) / _SECONDS_PER_DAY
            for s in recent
            if s.created_at is not None
        ]
        average_cycle = sum(cycles) / len(cycles) if cycles else 0.0

        metrics = DashboardMetrics(
            start=range_start,
            end=range_end,
            total_contacts=total_contacts,
            new_contacts=len(new_contacts),
            sales_completed=len(sales),
            total_vgv=total_vgv.quantize(_CENTS),
            total_commissions=total_commissions.quantize(_CENTS),
            conversion_rate=round(conversion_rate, 2),
            average_sale_cycle_days=round(average_cycle, 1),
        )
        logger.debug(
            "dashboard_metrics_computed",
            user_id=ctx.user_id,
            sales_completed=metrics.sales_completed,
            new_contacts=metrics.new_contacts,
        )
        return metrics
