from __future__ import annotations

import re

import pytest

from goldventory import schemas
from goldventory.exceptions import OrderNotFoundError, ValidationError
from goldventory.keys import StockKey
from goldventory.models import OrderLine, derive_status
from goldventory.notifications import Topic


def _line(ordered: int, received: int) -> OrderLine:
    return OrderLine(qty_ordered=ordered, qty_received=received)


@pytest.mark.parametrize(
    ("lines", "expected"),
    [
        ([(3, 0), (2, 0)], "pending"),
        ([(3, 1), (2, 0)], "partial"),
        ([(3, 3), (2, 1)], "partial"),
        ([(3, 3), (2, 2)], "received"),
    ],
)
def test_derive_status(lines, expected) -> None:
    assert derive_status([_line(ordered, received) for ordered, received in lines]) == expected


async def test_create_order_defaults(core, feed) -> None:
    subscription = feed.subscribe(Topic.ORDERS)
    order = await core.create_order(
        schemas.OrderCreate(
            lines=[
                schemas.OrderLineCreate(category="Rings", item="Band", sub_item="S1", weight="2.5g", qty_ordered=3),
                schemas.OrderLineCreate(category="Rings", item="Band", weight="3g", qty_ordered=1),
            ],
            created_by="shop",
        )
    )

    assert order.status == "pending"
    assert re.fullmatch(r"\d{2}-\d{2}-\d{4} \d{2}:\d{2}", order.name)
    assert [(line.position, line.weight_key, line.qty_received) for line in order.lines] == [
        (0, "Band|S1|2_5g", 0),
        (1, "Band|__default|3g", 0),
    ]
    assert order.lines[0].product_name == "Rings"
    assert [event.detail["order_id"] for event in subscription.drain()] == [order.id]


async def test_create_order_keeps_given_name(core) -> None:
    line = schemas.OrderLineCreate(category="Rings", item="Band", weight="3g", qty_ordered=1)

    order = await core.create_order(schemas.OrderCreate(lines=[line], name="Supplier A"))

    assert order.name == "Supplier A"


async def test_list_orders_by_status(core) -> None:
    line = schemas.OrderLineCreate(category="Rings", item="Band", weight="3g", qty_ordered=1)
    first = await core.create_order(schemas.OrderCreate(lines=[line]))
    second = await core.create_order(schemas.OrderCreate(lines=[line]))
    await core.edit_quantity(StockKey("Rings", "Band", "", "3g"), 0)
    await core.allocation.allocate_receive("Rings", "Band|__default|3g", 1)

    assert [order.id for order in await core.list_orders()] == [first.id, second.id]
    assert [order.id for order in await core.list_orders(["received"])] == [first.id]
    assert [order.id for order in await core.list_orders(["pending", "partial"])] == [second.id]


async def test_get_missing_order(core) -> None:
    with pytest.raises(OrderNotFoundError):
        await core.get_order(404)


async def test_order_from_reorder_rows(core) -> None:
    core.thresholds.set_threshold("Rings", "Band", "S1", "2g", 10)
    core.thresholds.set_threshold("Rings", "Band", "S1", "3g", 4)
    await core.edit_quantity(StockKey("Rings", "Band", "S1", "2g"), 6)

    order = await core.order_selected_rows([("Rings", "Band|S1|2g")], name="Restock")

    assert order.name == "Restock"
    assert [(line.weight_key, line.qty_ordered) for line in order.lines] == [("Band|S1|2g", 4)]
    rows = await core.reconciler.snapshot()
    assert [(row.weight, row.pending, row.to_order) for row in rows] == [("3g", 0, 4)]


async def test_order_from_no_rows_is_rejected(core) -> None:
    with pytest.raises(ValidationError):
        await core.create_order_from_reorder_rows([])


async def test_edit_quantity_routes_increases_through_allocation(core) -> None:
    key = StockKey("Rings", "Band", "S1", "2g")
    first = await core.edit_quantity(key, 4)
    assert (first.previous, first.quantity) == (None, 4)
    assert (first.allocation.allocated, first.allocation.unallocated) == (0, 4)

    line = schemas.OrderLineCreate(category="Rings", item="Band", sub_item="S1", weight="2g", qty_ordered=3)
    order = await core.create_order(schemas.OrderCreate(lines=[line]))

    increased = await core.edit_quantity(key, 10)
    assert (increased.previous, increased.quantity) == (4, 10)
    assert (increased.allocation.allocated, increased.allocation.unallocated) == (3, 3)
    assert (await core.get_order(order.id)).status == "received"

    decreased = await core.edit_quantity(key, 2)
    assert (decreased.previous, decreased.quantity, decreased.allocation) == (10, 2, None)

    deleted = await core.edit_quantity(key, None)
    assert (deleted.previous, deleted.quantity) == (2, None)
    assert (await core.inventory_snapshot())["Rings"] == {"Band": {"S1": {}}}


async def test_first_entry_receives_against_an_order_for_an_empty_cell(core) -> None:
    key = StockKey("Chains", "Rope", "S1", "2g")
    core.thresholds.set_threshold("Chains", "Rope", "S1", "2g", 4)

    rows = await core.reconciler.snapshot()
    assert [(row.quantity, row.to_order) for row in rows] == [(0, 4)]
    order = await core.order_selected_rows([(key.product_id, key.weight_key)])

    result = await core.edit_quantity(key, 4)
    assert result.allocation is not None
    assert (result.allocation.allocated, result.allocation.unallocated) == (4, 0)
    assert (result.previous, result.quantity) == (None, 4)

    assert (await core.get_order(order.id)).status == "received"
    assert await core.pending.pending_for(["Chains"]) == {"Chains": {}}
    assert await core.reconciler.snapshot() == []
    assert (await core.inventory_snapshot())["Chains"] == {"Rope": {"S1": {"2g": 4}}}


async def test_edit_quantity_rejects_negative(core) -> None:
    with pytest.raises(ValidationError):
        await core.edit_quantity(StockKey("Rings", "Band", "S1", "2g"), -1)


async def test_delete_inventory_node(core) -> None:
    await core.edit_quantity(StockKey("Rings", "Band", "S1", "2g"), 1)
    await core.edit_quantity(StockKey("Rings", "Band", "S2", "2g"), 1)

    assert await core.delete_inventory_node("Rings", "Band", "S1")
    assert (await core.inventory_snapshot())["Rings"] == {"Band": {"S2": {"2g": 1}}}
    assert await core.delete_inventory_node("Rings", "Band")
    assert not await core.delete_inventory_node("Rings", "Band")
