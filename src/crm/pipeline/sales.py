"""Sale recording -- the side effect of a contact entering the won stage.

The won stage is recognised by name (see Settings.WON_STAGE_NAMES). When a
contact enters it, the sale value comes from the associated property's price
when that is positive; otherwise the operator has to supply one. The stamp
(stage, sale_date, sale_value) is handed back as a single values dict so the
caller writes it in one repository update.

Re-entering the won stage recomputes and overwrites the previous stamp.
Leaving it never clears the stamp.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog

from src.crm.config import get_settings
from src.crm.pipeline.errors import ValidationError
from src.crm.pipeline.schemas import MAX_AMOUNT, ContactRead, StageRead

logger = structlog.get_logger(__name__)

_CENTS = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SaleRecorder:
    """Decides the sale value for a won-stage move and builds the stamp.

    Args:
        won_stage_names: Normalized (casefolded) names of the won stage.
            Defaults to the configured WON_STAGE_NAMES.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        won_stage_names: frozenset[str] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if won_stage_names is None:
            won_stage_names = get_settings().won_stage_names()
        self._won_names = won_stage_names
        self._clock = clock

    def is_won_stage(self, stage: StageRead) -> bool:
        """True if the stage is the distinguished won stage."""
        return stage.name.strip().casefold() in self._won_names

    def property_price(self, contact: ContactRead) -> Decimal | None:
        """Price of the contact's property when it is usable as a sale value."""
        if contact.property is None:
            return None
        price = contact.property.price
        if price is None or price <= 0:
            return None
        return price

    def needs_operator_value(self, contact: ContactRead) -> bool:
        """True when the sale value has to be asked from the operator."""
        return self.property_price(contact) is None

    def resolve_sale_value(
        self, contact: ContactRead, operator_value: Decimal | float | str | None
    ) -> Decimal:
        """Determine the sale value for a contact entering the won stage.

        The property price wins whenever it is positive; operator_value is
        then ignored. Otherwise operator_value must parse to a number > 0 that fits the
        sale_value column.

        Raises:
            ValidationError: If no usable value is available.
        """
        price = self.property_price(contact)
        if price is not None:
            return price

        if operator_value is None or operator_value == "":
            raise ValidationError("invalid sale value")
        try:
            value = Decimal(str(operator_value))
        except InvalidOperation:
            raise ValidationError("invalid sale value")
        if not value.is_finite() or value <= 0:
            raise ValidationError("invalid sale value")
        value = value.quantize(_CENTS)
        if value > MAX_AMOUNT:
            raise ValidationError("invalid sale value")
        return value

    def build_stamp(self, stage: StageRead, sale_value: Decimal) -> dict[str, Any]:
        """Columns to write together for a recorded sale."""
        return {
            "stage_id": stage.id,
            "sale_date": self._clock(),
            "sale_value": sale_value,
        }
