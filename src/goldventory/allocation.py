"""FIFO allocation of received stock against open purchase orders."""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from . import crud
from .exceptions import (
    ConcurrentUpdateError,
    OrderLineNotFoundError,
    PersistenceError,
    PersistenceUnavailableError,
)
from .keys import split_weight_key
from .models import OPEN_STATUSES, OrderLine, PurchaseOrder, StockEventType, utcnow
from .notifications import ChangeFeed, Topic

logger = logging.getLogger(__name__)

EXCESS_NOTE = "auto_allocated_excess"


@dataclass(frozen=True)
class ShipmentReceipt:
    """Quantity received now for one line of one order."""

    order_id: int
    product_id: str
    weight_key: str
    quantity: int
    line_id: int | None = None


@dataclass(frozen=True)
class OrderAllocation:
    order_id: int
    line_id: int
    quantity: int


@dataclass
class AllocationResult:
    allocated: int
    unallocated: int
    allocations: list[OrderAllocation] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.allocated + self.unallocated


def plan_fifo(
    orders: Iterable[PurchaseOrder], product_id: str, weight_key: str, delta: int
) -> tuple[list[ShipmentReceipt], int]:
    """Split ``delta`` over matching open lines, oldest order first.

    Returns the receipts to apply and the quantity left with no demand.
    """

    remaining = delta
    receipts: list[ShipmentReceipt] = []
    for order in orders:
        if remaining <= 0:
            break
        if not order.is_open:
            continue
        for line in order.lines:
            if remaining <= 0:
                break
            if not line.matches(product_id, weight_key):
                continue
            outstanding = line.outstanding
            if outstanding <= 0:
                continue
            quantity = min(remaining, outstanding)
            receipts.append(ShipmentReceipt(order.id, product_id, weight_key, quantity, line.id))
            remaining -= quantity
    return receipts, remaining


def _find_line(order: PurchaseOrder, receipt: ShipmentReceipt) -> OrderLine:
    candidates = [line for line in order.lines if line.matches(receipt.product_id, receipt.weight_key)]
    if receipt.line_id is not None:
        candidates = [line for line in candidates if line.id == receipt.line_id]
    if not candidates:
        raise OrderLineNotFoundError(order.id, receipt.product_id, receipt.weight_key)
    return next((line for line in candidates if line.outstanding > 0), candidates[0])


class OrderAllocationEngine:
    """Applies stock increases to open orders and inventory.

    Every order is updated in its own transaction together with the inventory
    documents it touches and the audit events it produces. There is no lock
    across orders: a failure in one order leaves earlier orders committed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise PersistenceUnavailableError()
        return self._session_factory

    async def allocate_receive(self, product_id: str, weight_key: str, delta: int) -> AllocationResult:
        """Allocate ``delta`` units FIFO; whatever has no open demand goes straight to stock."""

        if delta <= 0:
            logger.warning("Ignoring non-positive receive of %s for %s/%s", delta, product_id, weight_key)
            return AllocationResult(allocated=0, unallocated=0)
        split_weight_key(weight_key)

        try:
            async with self._factory()() as session:
                orders = await crud.list_orders(session, OPEN_STATUSES)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to query open orders: {exc}") from exc

        receipts, _ = plan_fifo(orders, product_id, weight_key, delta)
        allocations = await self.receive_shipment(receipts) if receipts else []
        allocated = sum(allocation.quantity for allocation in allocations)
        unallocated = delta - allocated
        if unallocated > 0:
            await self.add_stock(product_id, weight_key, unallocated, note=EXCESS_NOTE)

        logger.info(
            "Received %d of %s/%s: %d allocated to %d order line(s), %d added to stock",
            delta,
            product_id,
            weight_key,
            allocated,
            len(allocations),
            unallocated,
        )
        return AllocationResult(allocated=allocated, unallocated=unallocated, allocations=allocations)

    async def receive_shipment(self, receipts: Iterable[ShipmentReceipt]) -> list[OrderAllocation]:
        """Apply receipts grouped by order, one transaction per order.

        Quantities beyond a line's outstanding amount are not accepted; the
        returned allocations hold what was actually applied.
        """

        by_order: dict[int, list[ShipmentReceipt]] = {}
        for receipt in receipts:
            if receipt.quantity <= 0:
                continue
            by_order.setdefault(receipt.order_id, []).append(receipt)

        applied: list[OrderAllocation] = []
        for order_id, order_receipts in by_order.items():
            applied.extend(await self._receive_for_order(order_id, order_receipts))
        return applied

    async def _receive_for_order(
        self, order_id: int, receipts: Sequence[ShipmentReceipt]
    ) -> list[OrderAllocation]:
        accepted: list[OrderAllocation] = []
        touched: set[str] = set()
        try:
            async with self._factory()() as session:
                async with session.begin():
                    order = await crud.get_order(session, order_id)
                    documents = {}
                    for receipt in receipts:
                        if receipt.product_id not in documents:
                            documents[receipt.product_id] = await crud.get_inventory_document(
                                session, receipt.product_id
                            )

                    for receipt in receipts:
                        line = _find_line(order, receipt)
                        quantity = min(receipt.quantity, line.outstanding)
                        if quantity <= 0:
                            continue
                        line.qty_received += quantity
                        crud.increment_quantity(documents[receipt.product_id], receipt.weight_key, quantity)
                        crud.add_stock_event(
                            session,
                            product_id=receipt.product_id,
                            event_type=StockEventType.RECEIVE.value,
                            quantity=quantity,
                            weight_key=receipt.weight_key,
                            order_id=order_id,
                        )
                        accepted.append(OrderAllocation(order_id, line.id, quantity))
                        touched.add(receipt.product_id)

                    status = order.refresh_status()
                    order.last_updated_at = utcnow()
        except StaleDataError as exc:
            raise ConcurrentUpdateError(
                f"Order {order_id} or its stock changed during receipt", details={"order_id": order_id}
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to receive order {order_id}: {exc}") from exc

        self._publish(Topic.ORDERS, order_id=order_id, status=status)
        for product_id in touched:
            self._publish(Topic.INVENTORY, product_id=product_id)
        return accepted

    async def add_stock(
        self,
        product_id: str,
        weight_key: str,
        quantity: int,
        *,
        event_type: StockEventType = StockEventType.MANUAL_RECEIVE,
        note: str | None = None,
    ) -> int:
        """Increase stock outside of any order and record the audit event."""

        split_weight_key(weight_key)
        try:
            async with self._factory()() as session:
                async with session.begin():
                    document = await crud.get_inventory_document(session, product_id)
                    new_quantity = crud.increment_quantity(document, weight_key, quantity)
                    crud.add_stock_event(
                        session,
                        product_id=product_id,
                        event_type=event_type.value,
                        quantity=quantity,
                        weight_key=weight_key,
                        note=note,
                    )
        except StaleDataError as exc:
            raise ConcurrentUpdateError(
                f"Stock for {product_id} changed during update", details={"product_id": product_id}
            ) from exc
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to add stock for {product_id}: {exc}") from exc

        self._publish(Topic.INVENTORY, product_id=product_id, weight_key=weight_key)
        return new_quantity

    def _publish(self, topic: Topic, **detail: object) -> None:
        if self._feed is not None:
            self._feed.publish(topic, **detail)


__all__ = [
    "AllocationResult",
    "EXCESS_NOTE",
    "OrderAllocation",
    "OrderAllocationEngine",
    "ShipmentReceipt",
    "plan_fifo",
]
