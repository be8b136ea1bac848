"""Data access helpers for documents, orders and audit events."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from copy import deepcopy
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import schemas
from .exceptions import OrderNotFoundError, ProductNotFoundError, ValidationError
from .keys import StockKey, split_weight_key
from .models import (
    InventoryDocument,
    OrderLine,
    OrderStatus,
    PurchaseOrder,
    StockEvent,
    ThresholdDocument,
    WeightSchema,
    utcnow,
)

# ----------------------------------------------------------------------
# Threshold documents
# ----------------------------------------------------------------------


async def list_threshold_documents(session: AsyncSession) -> Sequence[ThresholdDocument]:
    result = await session.execute(select(ThresholdDocument))
    return result.scalars().all()


async def replace_threshold_documents(
    session: AsyncSession, documents: Mapping[str, dict[str, Any]]
) -> None:
    """Overwrite every given category document and drop categories not present."""

    existing = {document.category: document for document in await list_threshold_documents(session)}
    for category, data in documents.items():
        document = existing.pop(category, None)
        if document is None:
            session.add(ThresholdDocument(category=category, data=data))
        else:
            document.data = data
    for stale in existing.values():
        await session.delete(stale)
    await session.flush()


# ----------------------------------------------------------------------
# Weight schemas
# ----------------------------------------------------------------------


async def list_weight_schemas(session: AsyncSession) -> Sequence[WeightSchema]:
    result = await session.execute(select(WeightSchema))
    return result.scalars().all()


async def create_weight_schema(
    session: AsyncSession, category: str, item: str, mode: str
) -> WeightSchema:
    schema = WeightSchema(category=category, item=item, mode=mode)
    session.add(schema)
    await session.flush()
    return schema


async def delete_weight_schema(session: AsyncSession, category: str, item: str) -> None:
    await session.execute(
        delete(WeightSchema).where(WeightSchema.category == category, WeightSchema.item == item)
    )


# ----------------------------------------------------------------------
# Inventory documents
# ----------------------------------------------------------------------


def read_quantity(data: Mapping[str, Any], weight_key: str) -> int | None:
    item, sub_item, weight = split_weight_key(weight_key)
    item_map = data.get(item)
    weights = item_map.get(sub_item) if isinstance(item_map, dict) else None
    value = weights.get(weight) if isinstance(weights, dict) else None
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def with_quantity(data: Mapping[str, Any], weight_key: str, quantity: int | None) -> dict[str, Any]:
    """Return a copy of ``data`` with one field set, or deleted when ``quantity`` is ``None``."""

    item, sub_item, weight = split_weight_key(weight_key)
    updated = deepcopy(dict(data))
    if quantity is None:
        item_map = updated.get(item)
        weights = item_map.get(sub_item) if isinstance(item_map, dict) else None
        if isinstance(weights, dict):
            weights.pop(weight, None)
        return updated
    item_map = updated.setdefault(item, {})
    if not isinstance(item_map, dict):
        item_map = updated[item] = {}
    weights = item_map.setdefault(sub_item, {})
    if not isinstance(weights, dict):
        weights = item_map[sub_item] = {}
    weights[weight] = quantity
    return updated


async def get_inventory_document(
    session: AsyncSession, product_id: str, *, create: bool = False
) -> InventoryDocument:
    document = await session.get(InventoryDocument, product_id)
    if document is None:
        if not create:
            raise ProductNotFoundError(product_id)
        document = InventoryDocument(product_id=product_id, data={})
        session.add(document)
        await session.flush()
    return document


async def list_inventory_documents(session: AsyncSession) -> Sequence[InventoryDocument]:
    stmt = select(InventoryDocument).order_by(InventoryDocument.created_at, InventoryDocument.product_id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def set_inventory_quantity(
    session: AsyncSession, key: StockKey, quantity: int | None
) -> tuple[int | None, int | None]:
    """Write one quantity field; returns ``(previous, current)``."""

    if quantity is not None and quantity < 0:
        raise ValidationError("Quantity must not be negative", code="negative_quantity")
    if quantity is None and await session.get(InventoryDocument, key.product_id) is None:
        return None, None
    document = await get_inventory_document(session, key.product_id, create=True)
    previous = read_quantity(document.data, key.weight_key)
    if quantity == previous:
        return previous, quantity
    document.data = with_quantity(document.data, key.weight_key, quantity)
    await session.flush()
    return previous, quantity


def increment_quantity(document: InventoryDocument, weight_key: str, quantity: int) -> int:
    current = read_quantity(document.data, weight_key) or 0
    new_quantity = current + quantity
    document.data = with_quantity(document.data, weight_key, new_quantity)
    return new_quantity


async def delete_inventory_node(
    session: AsyncSession, product_id: str, item: str, sub_item: str | None = None
) -> bool:
    """Remove an item (or one of its sub-items) from an inventory document."""

    document = await session.get(InventoryDocument, product_id)
    if document is None:
        return False
    updated = deepcopy(dict(document.data))
    if sub_item is None:
        removed = updated.pop(item, None) is not None
    else:
        item_map = updated.get(item)
        removed = isinstance(item_map, dict) and item_map.pop(sub_item, None) is not None
    if removed:
        document.data = updated
        await session.flush()
    return removed


# ----------------------------------------------------------------------
# Purchase orders
# ----------------------------------------------------------------------


async def create_order(
    session: AsyncSession, data: schemas.OrderCreate, *, default_name: str | None = None
) -> PurchaseOrder:
    order = PurchaseOrder(
        status=OrderStatus.PENDING.value,
        name=data.name or default_name,
        supplier_id=data.supplier_id,
        created_by=data.created_by,
        expected_delivery=data.expected_delivery,
        created_at=utcnow(),
    )
    for position, line in enumerate(data.lines):
        key = line.to_key()
        order.lines.append(
            OrderLine(
                position=position,
                product_id=key.product_id,
                product_name=line.product_name or key.category,
                weight_key=key.weight_key,
                category=key.category,
                item=key.item,
                sub_item=key.sub_item,
                weight=key.weight,
                qty_ordered=line.qty_ordered,
                qty_received=0,
            )
        )
    session.add(order)
    await session.flush()
    return order


async def get_order(session: AsyncSession, order_id: int) -> PurchaseOrder:
    stmt = (
        select(PurchaseOrder)
        .where(PurchaseOrder.id == order_id)
        .options(selectinload(PurchaseOrder.lines))
    )
    result = await session.execute(stmt)
    order = result.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


async def list_orders(
    session: AsyncSession, statuses: Iterable[str] | None = None
) -> Sequence[PurchaseOrder]:
    """Orders oldest first, optionally restricted to ``statuses``."""

    stmt = (
        select(PurchaseOrder)
        .options(selectinload(PurchaseOrder.lines))
        .order_by(PurchaseOrder.created_at, PurchaseOrder.id)
    )
    if statuses is not None:
        stmt = stmt.where(PurchaseOrder.status.in_(list(statuses)))
    result = await session.execute(stmt)
    return result.scalars().all()


# ----------------------------------------------------------------------
# Audit events
# ----------------------------------------------------------------------


def add_stock_event(
    session: AsyncSession,
    *,
    product_id: str,
    event_type: str,
    quantity: int,
    weight_key: str,
    order_id: int | None = None,
    note: str | None = None,
) -> StockEvent:
    event = StockEvent(
        product_id=product_id,
        type=event_type,
        quantity=quantity,
        weight_key=weight_key,
        order_id=order_id,
        note=note,
        created_at=utcnow(),
    )
    session.add(event)
    return event


async def list_stock_events(
    session: AsyncSession, product_id: str | None = None
) -> Sequence[StockEvent]:
    stmt = select(StockEvent).order_by(StockEvent.created_at.desc(), StockEvent.id.desc())
    if product_id is not None:
        stmt = stmt.where(StockEvent.product_id == product_id)
    result = await session.execute(stmt)
    return result.scalars().all()


__all__ = [name for name in globals() if not name.startswith("_")]
