"""Pydantic schemas for pricing inputs and the condition export format."""

from pricing_engine.schemas.pricing import (
    ConditionExport,
    DimensionRule,
    PricingConditionRead,
    PricingContext,
    ScaleTier,
)

__all__ = [
    "ConditionExport",
    "DimensionRule",
    "PricingConditionRead",
    "PricingContext",
    "ScaleTier",
]
