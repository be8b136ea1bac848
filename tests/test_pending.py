from __future__ import annotations

from goldventory import schemas
from goldventory.models import OrderLine, PurchaseOrder
from goldventory.pending import PendingAggregator, outstanding_by_key


def _order(status: str, *lines: tuple[str, str, int, int]) -> PurchaseOrder:
    return PurchaseOrder(
        status=status,
        lines=[
            OrderLine(position=index, product_id=pid, weight_key=wk, qty_ordered=ordered, qty_received=received)
            for index, (pid, wk, ordered, received) in enumerate(lines)
        ],
    )


def test_outstanding_sums_open_lines_floored_at_zero() -> None:
    orders = [
        _order("pending", ("Rings", "Band|S1|2g", 3, 0), ("Rings", "Band|S1|3g", 2, 5)),
        _order("partial", ("Rings", "Band|S1|2g", 4, 1)),
        _order("received", ("Rings", "Band|S1|2g", 9, 0)),
    ]

    assert outstanding_by_key(orders) == {("Rings", "Band|S1|2g"): 6}


async def test_pending_for_requested_products(core) -> None:
    await core.create_order(
        schemas.OrderCreate(
            lines=[
                schemas.OrderLineCreate(category="Rings", item="Band", sub_item="S1", weight="2g", qty_ordered=3),
                schemas.OrderLineCreate(category="Chains", item="Rope", weight="1.5g", qty_ordered=2),
            ]
        )
    )

    pending = await core.pending.pending_for(["Rings", "Earrings"])

    assert pending == {"Rings": {"Band|S1|2g": 3}, "Earrings": {}}
    assert await core.pending.pending_for([]) == {}
    assert await core.pending.outstanding_by_key() == {
        ("Rings", "Band|S1|2g"): 3,
        ("Chains", "Rope|__default|1_5g"): 2,
    }


async def test_pending_without_persistence_is_empty() -> None:
    aggregator = PendingAggregator()

    assert await aggregator.open_orders() == []
    assert await aggregator.pending_for(["Rings"]) == {"Rings": {}}
