"""Pricing condition and waterfall log models."""

from __future__ import annotations

import datetime
import enum
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from pricing_engine.db.base import Base
from pricing_engine.models.mixins import AccountScopedMixin, TimestampMixin

JSONB_TYPE = JSONB().with_variant(JSON(), "sqlite")


class ConditionType(str, enum.Enum):
    """Business category of a pricing condition."""

    BASE_PRICE = "base_price"
    DISCOUNT = "discount"
    SURCHARGE = "surcharge"
    FREIGHT = "freight"
    TAX = "tax"
    REBATE = "rebate"


class CalculationType(str, enum.Enum):
    """How a condition turns its value into a price adjustment."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    FORMULA = "formula"


class Dimension(str, enum.Enum):
    """Context attributes a dimension rule can test."""

    CUSTOMER = "customer"
    CUSTOMER_GROUP = "customer_group"
    PRODUCT = "product"
    PRODUCT_CATEGORY = "product_category"
    QUANTITY = "quantity"
    REGION = "region"
    CHANNEL = "channel"
    CURRENCY = "currency"
    ORDER_VALUE = "order_value"

    @property
    def is_numeric(self) -> bool:
        return self in (Dimension.QUANTITY, Dimension.ORDER_VALUE)


class Operator(str, enum.Enum):
    """Comparison operators available to dimension rules."""

    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    GT = "gt"
    LT = "lt"
    BETWEEN = "between"


class ScaleBasis(str, enum.Enum):
    """Context value probed when selecting a scale tier."""

    QUANTITY = "quantity"
    ORDER_VALUE = "order_value"


class PricingCondition(AccountScopedMixin, TimestampMixin, Base):
    """Account-scoped pricing condition definition."""

    __tablename__ = "pricing_conditions"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    condition_type: Mapped[ConditionType] = mapped_column(
        Enum(ConditionType), nullable=False
    )
    calculation_type: Mapped[CalculationType] = mapped_column(
        Enum(CalculationType), nullable=False
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(18, 6), nullable=False, default=Decimal("0")
    )
    formula: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Insertion order; breaks priority ties.
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    exclusive: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB_TYPE, default=list, nullable=False
    )
    scale: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB_TYPE, default=list, nullable=False
    )
    scale_basis: Mapped[ScaleBasis] = mapped_column(
        Enum(ScaleBasis), default=ScaleBasis.QUANTITY, nullable=False
    )
    valid_from: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    valid_to: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class WaterfallRecord(AccountScopedMixin, Base):
    """Append-only log entry for one calculated price waterfall."""

    __tablename__ = "price_waterfalls"

    order_id: Mapped[str | None] = mapped_column(String(120), index=True)
    line_number: Mapped[int | None] = mapped_column(Integer)
    product_id: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(120))
    quantity: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    list_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    final_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    margin_pct: Mapped[Decimal | None] = mapped_column(Numeric(9, 1))
    steps: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB_TYPE, default=list, nullable=False
    )
    diagnostics: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB_TYPE, default=list, nullable=False
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
