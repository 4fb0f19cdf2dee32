"""Condition repository: snapshots, listing, import and export."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pricing_engine.models.pricing import ConditionType, PricingCondition
from pricing_engine.schemas.pricing import ConditionExport, PricingConditionRead
from pricing_engine.services.errors import RepositoryError

logger = logging.getLogger(__name__)


def _ordered(stmt):
    return stmt.order_by(
        PricingCondition.priority,
        PricingCondition.position,
        PricingCondition.created_at,
    )


def _to_read(row: PricingCondition) -> PricingConditionRead:
    return PricingConditionRead.model_validate(row)


async def list_active_conditions(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    at: datetime | None = None,
) -> list[PricingConditionRead]:
    """Return a snapshot of the account's active conditions in repository order.

    When ``at`` is given, conditions whose validity window excludes it are
    left out.
    """
    stmt = _ordered(
        select(PricingCondition).where(
            PricingCondition.account_id == account_id,
            PricingCondition.is_active.is_(True),
        )
    )
    try:
        result = await session.execute(stmt)
        rows = list(result.scalars().all())
        snapshot = [_to_read(row) for row in rows]
    except SQLAlchemyError as exc:
        logger.exception("Failed to load pricing conditions for %s", account_id)
        raise RepositoryError("Pricing conditions are unavailable") from exc
    except ValidationError as exc:
        logger.exception("Stored pricing condition is invalid for %s", account_id)
        raise RepositoryError("Stored pricing condition is invalid") from exc

    if at is not None:
        snapshot = [condition for condition in snapshot if condition.is_valid_at(at)]
    return snapshot


async def list_conditions(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    condition_type: ConditionType | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[PricingConditionRead], int]:
    """Return one page of conditions plus the total matching the filters."""
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be positive")

    filters = [PricingCondition.account_id == account_id]
    if condition_type is not None:
        filters.append(PricingCondition.condition_type == condition_type)
    if is_active is not None:
        filters.append(PricingCondition.is_active.is_(is_active))
    if search:
        filters.append(
            func.lower(PricingCondition.name).contains(search.lower(), autoescape=True)
        )

    total_stmt = select(func.count()).select_from(PricingCondition).where(*filters)
    page_stmt = (
        _ordered(select(PricingCondition).where(*filters))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    total = (await session.execute(total_stmt)).scalar_one()
    rows = (await session.execute(page_stmt)).scalars().all()
    return [_to_read(row) for row in rows], int(total)


async def add_conditions(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    conditions: Sequence[PricingConditionRead],
    commit: bool = True,
) -> list[PricingCondition]:
    """Append conditions after the account's existing ones, keeping their order."""
    current = await session.execute(
        select(func.max(PricingCondition.position)).where(
            PricingCondition.account_id == account_id
        )
    )
    next_position = (current.scalar_one_or_none() or 0) + 1

    rows: list[PricingCondition] = []
    for offset, condition in enumerate(conditions):
        row = PricingCondition(
            id=condition.id,
            account_id=account_id,
            position=next_position + offset,
            **_row_values(condition),
        )
        session.add(row)
        rows.append(row)
    if commit:
        await session.commit()
    else:
        await session.flush()
    return rows


async def export_conditions(
    session: AsyncSession, *, account_id: uuid.UUID
) -> dict[str, Any]:
    """Return the account's condition set as an export document."""
    stmt = _ordered(
        select(PricingCondition).where(PricingCondition.account_id == account_id)
    )
    rows = (await session.execute(stmt)).scalars().all()
    document = ConditionExport(conditions=[_to_read(row) for row in rows])
    return document.model_dump(mode="json", by_alias=True)


async def import_conditions(
    session: AsyncSession,
    *,
    account_id: uuid.UUID,
    payload: str | bytes | dict[str, Any],
    replace: bool = False,
) -> int:
    """Bulk import an export document and return the number of conditions added.

    Imported conditions receive new ids so a document can be loaded into any
    account, including the one it was exported from.
    """
    conditions = [
        condition.model_copy(update={"id": uuid.uuid4()})
        for condition in load_conditions(payload)
    ]
    if replace:
        await session.execute(
            delete(PricingCondition).where(PricingCondition.account_id == account_id)
        )
    await add_conditions(
        session, account_id=account_id, conditions=conditions, commit=False
    )
    await session.commit()
    logger.info("Imported %d pricing conditions for %s", len(conditions), account_id)
    return len(conditions)


def dump_conditions(conditions: Sequence[PricingConditionRead]) -> str:
    """Serialize conditions to the JSON export format."""
    return ConditionExport(conditions=list(conditions)).model_dump_json(by_alias=True)


def load_conditions(payload: str | bytes | dict[str, Any]) -> list[PricingConditionRead]:
    """Parse an export document back into conditions, preserving order."""
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    if not isinstance(payload, dict) or not isinstance(
        payload.get("conditions"), list
    ):
        raise ValueError("conditions must be an array")
    return ConditionExport.model_validate(payload).conditions


def _row_values(condition: PricingConditionRead) -> dict[str, Any]:
    return {
        "name": condition.name,
        "condition_type": condition.condition_type,
        "calculation_type": condition.calculation_type,
        "value": condition.value,
        "formula": condition.formula,
        "priority": condition.priority,
        "is_active": condition.is_active,
        "exclusive": condition.exclusive,
        "conditions": [rule.model_dump(mode="json") for rule in condition.conditions],
        "scale": [
            tier.model_dump(mode="json", by_alias=True) for tier in condition.scale
        ],
        "scale_basis": condition.scale_basis,
        "valid_from": condition.valid_from,
        "valid_to": condition.valid_to,
    }
