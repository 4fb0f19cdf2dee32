"""Price waterfall calculation from list price to final price."""

from __future__ import annotations

import dataclasses
import decimal
import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy.ext.asyncio import AsyncSession

from pricing_engine.core.config import get_settings
from pricing_engine.models.pricing import CalculationType
from pricing_engine.schemas.pricing import PricingConditionRead, PricingContext
from pricing_engine.services import (
    condition_service,
    formula_service,
    matching_service,
    result_log_service,
)
from pricing_engine.services.catalog_service import CatalogService
from pricing_engine.services.errors import CatalogError, FormulaError, PricingError
from pricing_engine.services.results import (
    MARGIN_PLACES,
    MONEY_PLACES,
    PricingDiagnostic,
    WaterfallResult,
    WaterfallStep,
    to_money,
)

logger = logging.getLogger(__name__)

__all__ = [
    "MARGIN_PLACES",
    "MONEY_PLACES",
    "PricingDiagnostic",
    "WaterfallResult",
    "WaterfallStep",
    "calculate",
    "calculate_order",
    "simulate",
]


def calculate(
    context: PricingContext,
    conditions: Iterable[PricingConditionRead],
    *,
    cost: Decimal | None = None,
    created_at: datetime | None = None,
) -> WaterfallResult:
    """Apply ``conditions`` to ``context`` and return the resulting waterfall.

    Active conditions are evaluated in ascending priority; ties keep the order
    in which ``conditions`` were given. Each adjustment is rounded half-up to
    cents before it is added to the running total, so ``list_price`` plus the
    step adjustments always equals ``final_price``. An applied exclusive
    condition stops the waterfall. A condition whose formula fails is skipped
    and reported in ``diagnostics``.
    """
    ordered = sorted(
        (
            condition
            for condition in conditions
            if condition.is_active
            and (
                context.pricing_date is None
                or condition.is_valid_at(context.pricing_date)
            )
        ),
        key=lambda condition: condition.priority,
    )

    diagnostics: list[PricingDiagnostic] = []
    steps: list[WaterfallStep] = []
    running_total = context.list_price

    for condition in ordered:
        match = matching_service.matches(condition, context)
        diagnostics.extend(_diagnostic(issue, condition) for issue in match.issues)
        if not match.applies:
            continue

        try:
            adjustment = _adjustment(
                condition, match.resolved_value, running_total, context
            )
        except FormulaError as exc:
            logger.warning(
                "Skipping condition %s (%s): %s", condition.id, condition.name, exc
            )
            diagnostics.append(_diagnostic(exc, condition))
            continue

        running_total += adjustment
        steps.append(
            WaterfallStep(
                condition_id=condition.id,
                condition_name=condition.name,
                condition_type=condition.condition_type,
                adjustment=adjustment,
                running_total=running_total,
            )
        )
        if condition.exclusive:
            break

    margin_pct = _margin(running_total, cost)
    if cost is not None and margin_pct is None:
        diagnostics.append(
            PricingDiagnostic(
                code="margin_undefined",
                message="Final price is zero; margin cannot be computed",
            )
        )

    return WaterfallResult(
        product_id=context.product_id,
        customer_id=context.customer_id,
        list_price=context.list_price,
        final_price=running_total,
        steps=tuple(steps),
        margin_pct=margin_pct,
        created_at=created_at or datetime.now(UTC),
        diagnostics=tuple(diagnostics),
        quantity=context.quantity,
    )


async def simulate(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    context: PricingContext,
    catalog: CatalogService,
    record: bool | None = None,
) -> WaterfallResult:
    """Price ``context`` against the account's active conditions."""
    reference = context.pricing_date or datetime.now(UTC)
    conditions = await condition_service.list_active_conditions(
        session, account_id=account_id, at=reference
    )
    cost = await _lookup_cost(catalog, context.product_id)
    result = calculate(context, conditions, cost=cost)

    if record is None:
        record = get_settings().record_simulations
    if record:
        await result_log_service.record_result(
            session, account_id=account_id, result=result
        )
    return result


async def calculate_order(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    order_id: str,
    lines: Sequence[PricingContext],
    catalog: CatalogService,
) -> list[WaterfallResult]:
    """Price every order line against one condition snapshot and log each result.

    Each line is checked against the validity windows at its own
    ``pricing_date``, or at the time of the call when it has none.
    """
    if not lines:
        raise ValueError("Order has no lines to price")

    now = datetime.now(UTC)
    snapshot = await condition_service.list_active_conditions(
        session, account_id=account_id
    )
    results: list[WaterfallResult] = []
    for line_number, line in enumerate(lines, start=1):
        reference = line.pricing_date or now
        conditions = [
            condition for condition in snapshot if condition.is_valid_at(reference)
        ]
        cost = await _lookup_cost(catalog, line.product_id)
        result = dataclasses.replace(
            calculate(line, conditions, cost=cost), order_id=order_id
        )
        await result_log_service.record_result(
            session,
            account_id=account_id,
            result=result,
            line_number=line_number,
            commit=False,
        )
        results.append(result)
    await session.commit()
    logger.info("Priced %d lines for order %s", len(results), order_id)
    return results


def _adjustment(
    condition: PricingConditionRead,
    value: Decimal,
    running_total: Decimal,
    context: PricingContext,
) -> Decimal:
    calculation = condition.calculation_type
    if calculation is CalculationType.FIXED:
        return to_money(value)
    if calculation is CalculationType.PERCENTAGE:
        return to_money(running_total * value / Decimal("100"))
    if calculation is CalculationType.FORMULA:
        delta = formula_service.evaluate(
            condition.formula or "",
            {"price": running_total, "qty": context.quantity, "value": value},
        )
        try:
            return to_money(delta)
        except decimal.InvalidOperation as exc:
            raise FormulaError("Formula result is too large to round") from exc
    raise ValueError(f"Unsupported calculation type {calculation!r}")


def _margin(final_price: Decimal, cost: Decimal | None) -> Decimal | None:
    if cost is None or final_price == 0:
        return None
    margin = (final_price - cost) / final_price * Decimal("100")
    return margin.quantize(MARGIN_PLACES, rounding=ROUND_HALF_UP)


async def _lookup_cost(catalog: CatalogService, product_id: str) -> Decimal | None:
    try:
        return await catalog.get_cost(product_id)
    except CatalogError:
        raise
    except Exception as exc:
        logger.exception("Catalog lookup failed for product %s", product_id)
        raise CatalogError(f"Catalog unavailable for product {product_id}") from exc


def _diagnostic(
    error: PricingError, condition: PricingConditionRead
) -> PricingDiagnostic:
    return PricingDiagnostic(
        code=error.code,
        message=str(error),
        condition_id=condition.id,
        condition_name=condition.name,
    )
