"""Wiring of the inventory components behind one object owned by the app."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from . import crud, schemas
from .allocation import AllocationResult, OrderAllocationEngine
from .config import Settings, get_settings
from .exceptions import (
    ConcurrentUpdateError,
    PersistenceError,
    PersistenceUnavailableError,
    ValidationError,
)
from .keys import StockKey, clean_label, encode
from .models import InventoryDocument, PurchaseOrder, StockEvent, utcnow
from .notifications import ChangeFeed, Topic
from .pending import PendingAggregator
from .reconciler import InventorySnapshotReconciler, ReorderRow
from .thresholds import ThresholdStore
from .weights import WeightSchemaResolver

logger = logging.getLogger(__name__)


@dataclass
class QuantityEditResult:
    product_id: str
    weight_key: str
    previous: int | None
    quantity: int | None
    allocation: AllocationResult | None = None


class InventoryCore:
    """Owns the threshold cache, weight modes and the order/inventory engines."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        settings: Settings | None = None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.feed = feed or ChangeFeed()
        self.thresholds = ThresholdStore(session_factory, self.feed)
        self.weights = WeightSchemaResolver(self.thresholds, session_factory, self.feed)
        self.pending = PendingAggregator(session_factory)
        self.allocation = OrderAllocationEngine(session_factory, self.feed)
        self.reconciler = InventorySnapshotReconciler(
            session_factory,
            self.thresholds,
            self.weights,
            self.pending,
            self.feed,
            default_threshold=self.settings.default_threshold,
        )
        self._loaded = False
        self._load_lock = asyncio.Lock()

    async def ensure_loaded(self) -> None:
        """Load thresholds and weight modes once per process."""

        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            await self.thresholds.load()
            await self.weights.load()
            self._loaded = True

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self.session_factory is None:
            raise PersistenceUnavailableError()
        return self.session_factory

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------
    async def edit_quantity(self, key: StockKey, quantity: int | None) -> QuantityEditResult:
        """Apply a quantity typed into the inventory table.

        Any increase, including a first entry into an empty cell, is received
        through FIFO allocation. Decreases and deletions (``None``) are
        written directly.
        """

        if quantity is not None and quantity < 0:
            raise ValidationError("Quantity must not be negative", code="negative_quantity")
        factory = self._factory()
        product_id, weight_key = key.product_id, key.weight_key

        async with factory() as session:
            document = await session.get(InventoryDocument, product_id)
            previous = crud.read_quantity(document.data, weight_key) if document is not None else None

        delta = quantity - (previous or 0) if quantity is not None else 0
        if delta > 0:
            if previous is None:
                # allocation receives into an existing field only
                await self._write_quantity(key, 0)
            allocation = await self.allocation.allocate_receive(product_id, weight_key, delta)
            return QuantityEditResult(
                product_id, weight_key, previous, (previous or 0) + allocation.total, allocation
            )

        previous, current = await self._write_quantity(key, quantity)
        return QuantityEditResult(product_id, weight_key, previous, current)

    async def _write_quantity(self, key: StockKey, quantity: int | None) -> tuple[int | None, int | None]:
        factory = self._factory()
        product_id, weight_key = key.product_id, key.weight_key
        try:
            async with factory() as session:
                async with session.begin():
                    previous, current = await crud.set_inventory_quantity(session, key, quantity)
        except StaleDataError as exc:
            raise ConcurrentUpdateError(
                f"Stock for {product_id} changed during update", details={"product_id": product_id}
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update stock for {product_id}: {exc}") from exc

        if previous != current:
            self.feed.publish(Topic.INVENTORY, product_id=product_id, weight_key=weight_key)
        return previous, current

    async def inventory_snapshot(self) -> dict[str, dict[str, Any]]:
        """All inventory documents keyed by product id, with encoded keys."""

        try:
            async with self._factory()() as session:
                documents = await crud.list_inventory_documents(session)
                return {document.product_id: dict(document.data) for document in documents}
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read inventory: {exc}") from exc

    async def delete_inventory_node(self, category: str, item: str, sub_item: str | None = None) -> bool:
        """Drop an item or sub-item from stock, mirroring a structural threshold delete."""

        product_id = encode(clean_label(category, "category"))
        encoded_item = encode(clean_label(item, "item"))
        encoded_sub_item = encode(sub_item) if sub_item is not None else None
        try:
            async with self._factory()() as session:
                async with session.begin():
                    removed = await crud.delete_inventory_node(
                        session,
                        product_id,
                        encoded_item,
                        encoded_sub_item,
                    )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete stock for {product_id}: {exc}") from exc
        if removed:
            self.feed.publish(Topic.INVENTORY, product_id=product_id)
        return removed

    async def list_stock_events(self, product_id: str | None = None) -> Sequence[StockEvent]:
        try:
            async with self._factory()() as session:
                return await crud.list_stock_events(session, product_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read stock events: {exc}") from exc

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def default_order_name(self) -> str:
        return utcnow().strftime(self.settings.order_name_format)

    async def create_order(self, data: schemas.OrderCreate) -> PurchaseOrder:
        try:
            async with self._factory()() as session:
                async with session.begin():
                    order = await crud.create_order(session, data, default_name=self.default_order_name())
                order = await crud.get_order(session, order.id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create order: {exc}") from exc
        logger.info("Created order %s (%s) with %d line(s)", order.id, order.name, len(order.lines))
        self.feed.publish(Topic.ORDERS, order_id=order.id, status=order.status)
        return order

    async def create_order_from_reorder_rows(
        self,
        rows: Iterable[ReorderRow],
        *,
        name: str | None = None,
        created_by: str | None = None,
    ) -> PurchaseOrder:
        """Order ``to_order`` units of every given reorder row."""

        lines = [
            schemas.OrderLineCreate(
                category=row.category,
                item=row.item,
                sub_item=row.sub_item,
                weight=row.weight,
                qty_ordered=row.to_order,
            )
            for row in rows
            if row.to_order > 0
        ]
        if not lines:
            raise ValidationError("No reorder rows selected", code="empty_order")
        return await self.create_order(schemas.OrderCreate(lines=lines, name=name, created_by=created_by))

    async def order_selected_rows(
        self, selection: Iterable[tuple[str, str]], *, name: str | None = None, created_by: str | None = None
    ) -> PurchaseOrder:
        """Create an order from the current reorder rows matching ``(product_id, weight_key)`` pairs."""

        wanted = set(selection)
        rows = [row for row in await self.reconciler.snapshot() if (row.product_id, row.weight_key) in wanted]
        return await self.create_order_from_reorder_rows(rows, name=name, created_by=created_by)

    async def get_order(self, order_id: int) -> PurchaseOrder:
        try:
            async with self._factory()() as session:
                return await crud.get_order(session, order_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read order {order_id}: {exc}") from exc

    async def list_orders(self, statuses: Iterable[str] | None = None) -> Sequence[PurchaseOrder]:
        try:
            async with self._factory()() as session:
                return await crud.list_orders(session, statuses)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list orders: {exc}") from exc


__all__ = ["InventoryCore", "QuantityEditResult"]
