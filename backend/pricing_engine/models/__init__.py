"""ORM models package export."""

from pricing_engine.models.pricing import (
    CalculationType,
    ConditionType,
    Dimension,
    Operator,
    PricingCondition,
    ScaleBasis,
    WaterfallRecord,
)

__all__ = [
    "CalculationType",
    "ConditionType",
    "Dimension",
    "Operator",
    "PricingCondition",
    "ScaleBasis",
    "WaterfallRecord",
]
