"""Append-only waterfall log and margin analysis."""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pricing_engine.models.pricing import ConditionType, WaterfallRecord
from pricing_engine.services.results import (
    MARGIN_PLACES,
    MONEY_PLACES,
    PricingDiagnostic,
    WaterfallResult,
    WaterfallStep,
)

GROUP_FIELDS = {
    "product": WaterfallRecord.product_id,
    "customer": WaterfallRecord.customer_id,
}


@dataclass(frozen=True, slots=True)
class MarginSummary:
    """Averages over the logged waterfalls of one product or customer."""

    key: str | None
    avg_list_price: Decimal
    avg_final_price: Decimal
    avg_margin: Decimal | None
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "avg_list_price": f"{self.avg_list_price:.2f}",
            "avg_final_price": f"{self.avg_final_price:.2f}",
            "avg_margin": (
                f"{self.avg_margin:.1f}" if self.avg_margin is not None else None
            ),
            "count": self.count,
        }


async def record_result(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    result: WaterfallResult,
    line_number: int | None = None,
    commit: bool = True,
) -> WaterfallRecord:
    """Append ``result`` to the log. Records are never updated afterwards."""
    record = WaterfallRecord(
        account_id=account_id,
        order_id=result.order_id,
        line_number=line_number,
        product_id=result.product_id,
        customer_id=result.customer_id,
        quantity=result.quantity,
        list_price=result.list_price,
        final_price=result.final_price,
        margin_pct=result.margin_pct,
        steps=[step.to_dict() for step in result.steps],
        diagnostics=[item.to_dict() for item in result.diagnostics],
        created_at=result.created_at,
    )
    session.add(record)
    if commit:
        await session.commit()
        await session.refresh(record)
    else:
        await session.flush()
    return record


async def aggregate_margins(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    group_by: str = "product",
) -> list[MarginSummary]:
    """Average list price, final price and margin per product or customer.

    Records without a margin count towards ``count`` and the price averages
    but not towards ``avg_margin``.
    """
    group_field = GROUP_FIELDS.get(group_by)
    if group_field is None:
        raise ValueError("group_by must be 'product' or 'customer'")

    stmt = select(
        group_field,
        WaterfallRecord.list_price,
        WaterfallRecord.final_price,
        WaterfallRecord.margin_pct,
    ).where(WaterfallRecord.account_id == account_id)
    rows = (await session.execute(stmt)).all()

    list_totals: dict[str | None, Decimal] = defaultdict(lambda: Decimal("0"))
    final_totals: dict[str | None, Decimal] = defaultdict(lambda: Decimal("0"))
    margins: dict[str | None, list[Decimal]] = defaultdict(list)
    counts: dict[str | None, int] = defaultdict(int)
    for key, list_price, final_price, margin_pct in rows:
        list_totals[key] += Decimal(list_price)
        final_totals[key] += Decimal(final_price)
        counts[key] += 1
        if margin_pct is not None:
            margins[key].append(Decimal(margin_pct))

    summaries = [
        MarginSummary(
            key=key,
            avg_list_price=_average(list_totals[key], count, MONEY_PLACES),
            avg_final_price=_average(final_totals[key], count, MONEY_PLACES),
            avg_margin=_average_margin(margins[key]),
            count=count,
        )
        for key, count in counts.items()
    ]
    return sorted(
        summaries,
        key=lambda item: (
            item.avg_margin is None,
            item.avg_margin if item.avg_margin is not None else Decimal("0"),
            item.key or "",
        ),
    )


async def list_order_waterfalls(
    session: AsyncSession, *, account_id: uuid.UUID, order_id: str
) -> list[WaterfallResult]:
    """Return the logged waterfalls of an order in the order they were priced."""
    stmt = (
        select(WaterfallRecord)
        .where(
            WaterfallRecord.account_id == account_id,
            WaterfallRecord.order_id == order_id,
        )
        .order_by(WaterfallRecord.line_number, WaterfallRecord.created_at)
    )
    records = (await session.execute(stmt)).scalars().all()
    return [_to_result(record) for record in records]


def _average(total: Decimal, count: int, places: Decimal) -> Decimal:
    return (total / Decimal(count)).quantize(places, rounding=ROUND_HALF_UP)


def _average_margin(values: list[Decimal]) -> Decimal | None:
    if not values:
        return None
    total = sum(values, Decimal("0"))
    return _average(total, len(values), MARGIN_PLACES)


def _to_result(record: WaterfallRecord) -> WaterfallResult:
    steps = tuple(
        WaterfallStep(
            condition_id=uuid.UUID(step["condition_id"]),
            condition_name=step["condition_name"],
            condition_type=ConditionType(step["condition_type"]),
            adjustment=Decimal(step["adjustment"]),
            running_total=Decimal(step["running_total"]),
        )
        for step in record.steps
    )
    diagnostics = tuple(
        PricingDiagnostic(
            code=item["code"],
            message=item["message"],
            condition_id=(
                uuid.UUID(item["condition_id"]) if item.get("condition_id") else None
            ),
            condition_name=item.get("condition_name"),
        )
        for item in record.diagnostics
    )
    return WaterfallResult(
        product_id=record.product_id,
        customer_id=record.customer_id,
        list_price=Decimal(record.list_price),
        final_price=Decimal(record.final_price),
        steps=steps,
        margin_pct=(
            Decimal(record.margin_pct) if record.margin_pct is not None else None
        ),
        created_at=record.created_at,
        diagnostics=diagnostics,
        quantity=Decimal(record.quantity),
        order_id=record.order_id,
    )
