"""Outstanding (ordered but not yet received) quantities across open orders."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud
from .models import OPEN_STATUSES, PurchaseOrder

logger = logging.getLogger(__name__)


def outstanding_by_key(orders: Iterable[PurchaseOrder]) -> dict[tuple[str, str], int]:
    """Sum of ``qty_ordered - qty_received`` per (product_id, weight_key), each line floored at zero."""

    totals: dict[tuple[str, str], int] = {}
    for order in orders:
        if not order.is_open:
            continue
        for line in order.lines:
            outstanding = line.outstanding
            if outstanding <= 0:
                continue
            key = (line.product_id, line.weight_key)
            totals[key] = totals.get(key, 0) + outstanding
    return totals


class PendingAggregator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def open_orders(self) -> Sequence[PurchaseOrder]:
        if self._session_factory is None:
            logger.warning("Pending orders unavailable: persistence unavailable")
            return []
        try:
            async with self._session_factory() as session:
                return await crud.list_orders(session, OPEN_STATUSES)
        except SQLAlchemyError:
            logger.exception("Failed to query open orders")
            return []

    async def outstanding_by_key(self) -> dict[tuple[str, str], int]:
        return outstanding_by_key(await self.open_orders())

    async def pending_for(self, product_ids: Iterable[str]) -> dict[str, dict[str, int]]:
        """Outstanding quantity per weight key for each requested product."""

        result: dict[str, dict[str, int]] = {product_id: {} for product_id in product_ids}
        if not result:
            return {}
        for (product_id, weight_key), quantity in (await self.outstanding_by_key()).items():
            if product_id in result:
                result[product_id][weight_key] = quantity
        return result


__all__ = ["PendingAggregator", "outstanding_by_key"]
