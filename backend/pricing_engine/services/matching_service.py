"""Dimension rule matching and scale tier resolution."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from pricing_engine.models.pricing import Dimension, Operator, ScaleBasis
from pricing_engine.schemas.pricing import (
    DimensionRule,
    PricingConditionRead,
    PricingContext,
)
from pricing_engine.services.errors import (
    DimensionTypeError,
    MissingContextError,
    PricingError,
    ScaleOverlapAmbiguity,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MatchResult:
    """Outcome of testing one condition against a pricing context."""

    applies: bool
    resolved_value: Decimal
    issues: list[PricingError] = field(default_factory=list)


def matches(condition: PricingConditionRead, context: PricingContext) -> MatchResult:
    """Decide whether ``condition`` applies and which value it resolves to.

    Rules are combined with AND. A rule that cannot be evaluated (missing
    context value, non-numeric operand) does not match; the reason is kept in
    ``issues`` except for missing context, which is an ordinary non-match.
    """
    issues: list[PricingError] = []
    for rule in condition.conditions:
        try:
            passed = _evaluate_rule(rule, context)
        except MissingContextError as exc:
            logger.debug("Condition %s skipped: %s", condition.id, exc)
            passed = False
        except DimensionTypeError as exc:
            logger.warning("Condition %s rule not evaluable: %s", condition.id, exc)
            issues.append(exc)
            passed = False
        if not passed:
            return MatchResult(False, condition.value, issues)

    resolved, scale_issues = resolve_scale_value(condition, context)
    issues.extend(scale_issues)
    return MatchResult(True, resolved, issues)


def resolve_scale_value(
    condition: PricingConditionRead, context: PricingContext
) -> tuple[Decimal, list[PricingError]]:
    """Return the first scale tier value containing the probe, else the condition value."""
    if not condition.scale:
        return condition.value, []

    dimension = (
        Dimension.ORDER_VALUE
        if condition.scale_basis is ScaleBasis.ORDER_VALUE
        else Dimension.QUANTITY
    )
    probe = context.dimension_value(dimension)
    if probe is None:
        logger.debug(
            "Condition %s has no %s to probe scale tiers", condition.id, dimension.value
        )
        return condition.value, []

    hits = [tier for tier in condition.scale if tier.contains(Decimal(probe))]
    if not hits:
        return condition.value, []

    issues: list[PricingError] = []
    if len(hits) > 1:
        overlap = ScaleOverlapAmbiguity(
            f"{len(hits)} scale tiers contain {dimension.value} {probe}; "
            f"using tier starting at {hits[0].from_}"
        )
        logger.info("Condition %s: %s", condition.id, overlap)
        issues.append(overlap)
    return hits[0].value, issues


def _evaluate_rule(rule: DimensionRule, context: PricingContext) -> bool:
    actual = context.dimension_value(rule.dimension)
    if actual is None or actual == "":
        raise MissingContextError(f"context has no {rule.dimension.value}")

    handler = _OPERATOR_MAP.get(rule.operator)
    if handler is None:
        raise ValueError(f"Unsupported operator {rule.operator!r}")
    return handler(rule, actual)


def _op_eq(rule: DimensionRule, actual: Any) -> bool:
    return _equals(rule.dimension, actual, _scalar(rule))


def _op_neq(rule: DimensionRule, actual: Any) -> bool:
    return not _equals(rule.dimension, actual, _scalar(rule))


def _op_in(rule: DimensionRule, actual: Any) -> bool:
    return any(_equals(rule.dimension, actual, item) for item in _items(rule))


def _op_gt(rule: DimensionRule, actual: Any) -> bool:
    return _number(actual, rule.dimension) > _number(_scalar(rule), rule.dimension)


def _op_lt(rule: DimensionRule, actual: Any) -> bool:
    return _number(actual, rule.dimension) < _number(_scalar(rule), rule.dimension)


def _op_between(rule: DimensionRule, actual: Any) -> bool:
    bounds = _items(rule)
    if len(bounds) != 2:
        raise DimensionTypeError(
            f"between on {rule.dimension.value} needs 'min,max', got {rule.value!r}"
        )
    low, high = (_number(bound, rule.dimension) for bound in bounds)
    return low <= _number(actual, rule.dimension) <= high


_OPERATOR_MAP: dict[Operator, Callable[[DimensionRule, Any], bool]] = {
    Operator.EQ: _op_eq,
    Operator.NEQ: _op_neq,
    Operator.IN: _op_in,
    Operator.GT: _op_gt,
    Operator.LT: _op_lt,
    Operator.BETWEEN: _op_between,
}


def _scalar(rule: DimensionRule) -> str:
    if isinstance(rule.value, list):
        return ",".join(rule.value)
    return rule.value


def _items(rule: DimensionRule) -> list[str]:
    raw = rule.value if isinstance(rule.value, list) else rule.value.split(",")
    return [item.strip() for item in raw if item.strip()]


def _equals(dimension: Dimension, actual: Any, expected: str) -> bool:
    if dimension.is_numeric:
        try:
            return Decimal(str(actual)) == Decimal(expected.strip())
        except InvalidOperation:
            return False
    return str(actual) == expected


def _number(raw: Any, dimension: Dimension) -> Decimal:
    try:
        number = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise DimensionTypeError(
            f"{dimension.value} value {raw!r} is not numeric"
        ) from exc
    if not number.is_finite():
        raise DimensionTypeError(f"{dimension.value} value {raw!r} is not finite")
    return number
