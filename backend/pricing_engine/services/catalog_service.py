"""Product cost lookups used for margin calculation."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Protocol


class CatalogService(Protocol):
    """External catalog that knows product costs.

    ``get_cost`` returns ``None`` when the product has no known cost and
    raises :class:`~pricing_engine.services.errors.CatalogError` when the
    catalog itself is unreachable.
    """

    async def get_cost(self, product_id: str) -> Decimal | None: ...


class StaticCatalog:
    """In-process catalog backed by a product id to cost mapping."""

    def __init__(self, costs: Mapping[str, Decimal | int | str] | None = None) -> None:
        self._costs = {
            product_id: Decimal(str(cost)) for product_id, cost in (costs or {}).items()
        }

    async def get_cost(self, product_id: str) -> Decimal | None:
        return self._costs.get(product_id)
