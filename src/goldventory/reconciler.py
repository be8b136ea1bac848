"""Reorder rows: inventory joined with open orders and thresholds."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud
from .keys import DEFAULT_TOKEN, WEIGHT_KEY_SEPARATOR, decode, is_reserved
from .notifications import ChangeFeed, Topic
from .pending import PendingAggregator
from .thresholds import ThresholdStore
from .weights import WeightSchemaResolver

logger = logging.getLogger(__name__)

ThresholdResolver = Callable[[str, str, str, str], "int | None"]

WATCHED_TOPICS = (Topic.INVENTORY, Topic.ORDERS, Topic.THRESHOLDS, Topic.WEIGHT_MODES)


@dataclass(frozen=True)
class ReorderRow:
    category: str
    item: str
    sub_item: str
    weight: str
    product_id: str
    weight_key: str
    quantity: int
    pending: int
    threshold: int
    to_order: int


def _quantity(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _label(encoded: str) -> str:
    return "" if encoded == DEFAULT_TOKEN else decode(encoded)


def compute_reorder_rows(
    inventory: Mapping[str, Mapping[str, Any]],
    outstanding: Mapping[tuple[str, str], int],
    resolve_threshold: ThresholdResolver,
    configured: Mapping[str, Any] | None = None,
) -> list[ReorderRow]:
    """Rows where ``threshold - (quantity + pending) > 0``.

    ``inventory`` maps product id to its encoded item -> sub_item -> weight ->
    quantity document. ``configured`` is the encoded threshold payload; its
    positive leaves with no inventory entry are evaluated with quantity 0.
    """

    rows: list[ReorderRow] = []
    seen: set[tuple[str, str]] = set()

    def evaluate(product_id: str, item: str, sub_item: str, weight: str, quantity: int) -> None:
        weight_key = WEIGHT_KEY_SEPARATOR.join((item, sub_item, weight))
        seen.add((product_id, weight_key))
        labels = (decode(product_id), decode(item), _label(sub_item), decode(weight))
        threshold = resolve_threshold(*labels)
        if threshold is None:
            return
        pending = outstanding.get((product_id, weight_key), 0)
        to_order = threshold - (quantity + pending)
        if to_order > 0:
            rows.append(
                ReorderRow(
                    category=labels[0],
                    item=labels[1],
                    sub_item=labels[2],
                    weight=labels[3],
                    product_id=product_id,
                    weight_key=weight_key,
                    quantity=quantity,
                    pending=pending,
                    threshold=threshold,
                    to_order=to_order,
                )
            )

    for product_id, document in inventory.items():
        if not isinstance(document, Mapping):
            continue
        for item, sub_items in document.items():
            if not isinstance(sub_items, Mapping):
                continue
            for sub_item, weights in sub_items.items():
                if not isinstance(weights, Mapping):
                    continue
                for weight, raw in weights.items():
                    quantity = _quantity(raw)
                    if quantity is None:
                        continue
                    evaluate(product_id, item, sub_item, weight, quantity)

    for product_id, items in (configured or {}).items():
        for item, sub_items in items.items():
            has_variants = any(sub_item != DEFAULT_TOKEN for sub_item in sub_items)
            for sub_item, weights in sub_items.items():
                # item-level minimums stand in for the variants' own ones
                if sub_item == DEFAULT_TOKEN and has_variants:
                    continue
                for weight, value in weights.items():
                    if is_reserved(weight) or not isinstance(value, int) or value <= 0:
                        continue
                    weight_key = WEIGHT_KEY_SEPARATOR.join((item, sub_item, weight))
                    if (product_id, weight_key) in seen:
                        continue
                    evaluate(product_id, item, sub_item, weight, 0)
    return rows


class InventorySnapshotReconciler:
    """Computes reorder rows and keeps them current as inputs change."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        thresholds: ThresholdStore,
        weights: WeightSchemaResolver,
        pending: PendingAggregator,
        feed: ChangeFeed | None = None,
        default_threshold: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._thresholds = thresholds
        self._weights = weights
        self._pending = pending
        self._feed = feed
        self._default_threshold = default_threshold

    def resolve_threshold(self, category: str, item: str, sub_item: str, weight: str) -> int | None:
        """Exact threshold, then the item-level entry for shared schemas, then the default."""

        threshold = self._thresholds.get_threshold_for(category, item, sub_item, weight)
        if threshold is None and sub_item and self._weights.is_shared(category, item):
            threshold = self._thresholds.get_threshold_for(category, item, "", weight)
        if threshold is None:
            threshold = self._default_threshold
        return threshold

    async def _inventory(self) -> dict[str, dict[str, Any]]:
        if self._session_factory is None:
            logger.warning("Inventory snapshot unavailable: persistence unavailable")
            return {}
        async with self._session_factory() as session:
            documents = await crud.list_inventory_documents(session)
            return {document.product_id: dict(document.data) for document in documents}

    async def snapshot(self) -> list[ReorderRow]:
        """One-shot computation; failures yield an empty list."""

        try:
            inventory = await self._inventory()
        except SQLAlchemyError:
            logger.exception("Failed to read inventory for reorder rows")
            return []
        outstanding = await self._pending.outstanding_by_key()
        configured = self._thresholds.build_payload()
        return compute_reorder_rows(inventory, outstanding, self.resolve_threshold, configured)

    async def stream_reorder_rows(self) -> AsyncIterator[list[ReorderRow]]:
        """Yield the current rows, then a fresh list after every burst of changes.

        Closing the generator (``aclose()`` or cancelling the consumer) releases
        the underlying subscription.
        """

        if self._feed is None:
            yield await self.snapshot()
            return
        subscription = self._feed.subscribe(*WATCHED_TOPICS)
        try:
            yield await self.snapshot()
            while True:
                await subscription.get()
                subscription.drain()
                yield await self.snapshot()
        finally:
            subscription.close()


__all__ = [
    "InventorySnapshotReconciler",
    "ReorderRow",
    "WATCHED_TOPICS",
    "compute_reorder_rows",
]
