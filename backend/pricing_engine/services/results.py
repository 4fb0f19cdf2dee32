"""Waterfall result objects shared by the calculator and the result log."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from pricing_engine.models.pricing import ConditionType

MONEY_PLACES = Decimal("0.01")
MARGIN_PLACES = Decimal("0.1")


def to_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def _to_str(value: Decimal) -> str:
    return f"{to_money(value):.2f}"


@dataclass(frozen=True, slots=True)
class PricingDiagnostic:
    """Non-fatal problem met while calculating a waterfall."""

    code: str
    message: str
    condition_id: uuid.UUID | None = None
    condition_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "condition_id": str(self.condition_id) if self.condition_id else None,
            "condition_name": self.condition_name,
        }


@dataclass(frozen=True, slots=True)
class WaterfallStep:
    """One applied condition and the running total after it."""

    condition_id: uuid.UUID
    condition_name: str
    condition_type: ConditionType
    adjustment: Decimal
    running_total: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition_id": str(self.condition_id),
            "condition_name": self.condition_name,
            "condition_type": self.condition_type.value,
            "adjustment": _to_str(self.adjustment),
            "running_total": _to_str(self.running_total),
        }


@dataclass(frozen=True, slots=True)
class WaterfallResult:
    """Immutable outcome of one pricing calculation."""

    product_id: str
    customer_id: str | None
    list_price: Decimal
    final_price: Decimal
    steps: tuple[WaterfallStep, ...]
    margin_pct: Decimal | None
    created_at: datetime
    diagnostics: tuple[PricingDiagnostic, ...] = ()
    quantity: Decimal = Decimal("1")
    order_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the waterfall to plain types for responses."""
        return {
            "product_id": self.product_id,
            "customer_id": self.customer_id,
            "order_id": self.order_id,
            "quantity": str(self.quantity),
            "list_price": _to_str(self.list_price),
            "final_price": _to_str(self.final_price),
            "steps": [step.to_dict() for step in self.steps],
            "margin_pct": (
                f"{self.margin_pct:.1f}" if self.margin_pct is not None else None
            ),
            "created_at": self.created_at.isoformat(),
            "diagnostics": [item.to_dict() for item in self.diagnostics],
        }
