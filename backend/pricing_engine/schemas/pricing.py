"""Pricing schema definitions."""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pricing_engine.models.pricing import (
    CalculationType,
    ConditionType,
    Dimension,
    Operator,
    ScaleBasis,
)


def _as_text(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return str(Decimal(str(value)))
    return value


class DimensionRule(BaseModel):
    """Single `{dimension, operator, value}` test against the pricing context."""

    dimension: Dimension
    operator: Operator
    value: str | list[str] = ""

    model_config = ConfigDict(from_attributes=True)

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return [_as_text(item) for item in value]
        return _as_text(value)


class ScaleTier(BaseModel):
    """Half-open `[from, to)` range that overrides a condition's value."""

    from_: Decimal = Field(alias="from")
    to: Decimal | None = None
    value: Decimal

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScaleTier":
        if self.to is not None and self.to <= self.from_:
            raise ValueError("scale tier 'to' must be greater than 'from'")
        return self

    def contains(self, probe: Decimal) -> bool:
        if probe < self.from_:
            return False
        return self.to is None or probe < self.to


class PricingConditionRead(BaseModel):
    """Point-in-time view of a pricing condition consumed by the engine."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str = Field(min_length=1)
    condition_type: ConditionType
    calculation_type: CalculationType
    # Matches the Numeric(18, 6) column so stored values round-trip exactly.
    value: Decimal = Field(default=Decimal("0"), max_digits=18, decimal_places=6)
    formula: str | None = None
    priority: int = 0
    is_active: bool = True
    exclusive: bool = False
    conditions: list[DimensionRule] = Field(default_factory=list)
    scale: list[ScaleTier] = Field(default_factory=list)
    scale_basis: ScaleBasis = ScaleBasis.QUANTITY
    valid_from: datetime.datetime | None = None
    valid_to: datetime.datetime | None = None

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def _check_definition(self) -> "PricingConditionRead":
        if self.calculation_type is CalculationType.FORMULA and not (
            self.formula and self.formula.strip()
        ):
            raise ValueError("formula conditions require a formula")
        if (
            self.valid_from is not None
            and self.valid_to is not None
            and _as_utc(self.valid_from) > _as_utc(self.valid_to)
        ):
            raise ValueError("valid_from must be on or before valid_to")
        return self

    def is_valid_at(self, moment: datetime.datetime) -> bool:
        """Return whether the validity window (inclusive) contains ``moment``."""
        moment = _as_utc(moment)
        if self.valid_from is not None and moment < _as_utc(self.valid_from):
            return False
        if self.valid_to is not None and moment > _as_utc(self.valid_to):
            return False
        return True


class PricingContext(BaseModel):
    """Caller-supplied facts a waterfall is calculated for."""

    product_id: str
    customer_id: str | None = None
    quantity: Decimal = Field(default=Decimal("1"), ge=0)
    list_price: Decimal = Field(default=Decimal("0"), ge=0)
    customer_group: str | None = None
    product_category: str | None = None
    region: str | None = None
    channel: str | None = None
    currency: str | None = None
    order_value: Decimal | None = None
    pricing_date: datetime.datetime | None = None

    model_config = ConfigDict(frozen=True)

    def dimension_value(self, dimension: Dimension) -> Any:
        """Return the context value a rule on ``dimension`` is tested against."""
        if dimension is Dimension.CUSTOMER:
            return self.customer_id
        if dimension is Dimension.PRODUCT:
            return self.product_id
        return getattr(self, dimension.value)


class ConditionExport(BaseModel):
    """Serialized condition set used by export and bulk import."""

    conditions: list[PricingConditionRead] = Field(default_factory=list)


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value
