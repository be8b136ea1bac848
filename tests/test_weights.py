from __future__ import annotations

from sqlalchemy import select

from goldventory.models import WeightMode, WeightSchema
from goldventory.notifications import ChangeFeed, Topic
from goldventory.thresholds import ThresholdStore
from goldventory.weights import WeightSchemaResolver


def _store_with_band() -> ThresholdStore:
    store = ThresholdStore()
    store.create_sub_item("Rings", "Band", "S1")
    store.create_sub_item("Rings", "Band", "S2", ["2g", "3g"])
    store.create_sub_item("Rings", "Band", "S3", ["9g"])
    return store


def test_weights_for_returns_own_columns() -> None:
    resolver = WeightSchemaResolver(_store_with_band())

    assert resolver.weights_for("Rings", "Band", "S2") == ["2g", "3g"]
    assert resolver.weights_for("Rings", "Band", "S1") == []


async def test_shared_mode_uses_first_donor_sibling() -> None:
    store = _store_with_band()
    resolver = WeightSchemaResolver(store)
    assert await resolver.set_weight_mode("Rings", "Band", WeightMode.SHARED)

    assert resolver.weights_for("Rings", "Band", "S1") == ["2g", "3g"]
    assert resolver.weights_for("Rings", "Band", "Unknown") == ["2g", "3g"]
    assert store.weight_map("Rings", "Band", "S1") == {}


async def test_shared_mode_propagates_schema_to_every_sub_item() -> None:
    store = ThresholdStore()
    store.create_sub_item("Rings", "Band", "S1")
    store.create_sub_item("Rings", "Band", "S2")
    resolver = WeightSchemaResolver(store)
    await resolver.set_weight_mode("Rings", "Band", "shared")

    store.set_sub_item_weights("Rings", "Band", "S1", ["1g", "2g"])

    assert resolver.weights_for("Rings", "Band", "S1") == ["1g", "2g"]
    assert resolver.weights_for("Rings", "Band", "S2") == ["1g", "2g"]


async def test_create_sub_item_copies_shared_schema() -> None:
    store = ThresholdStore()
    store.create_sub_item("Rings", "Band", "S1", ["1g", "2g"])
    store.set_threshold("Rings", "Band", "S1", "1g", 5)
    resolver = WeightSchemaResolver(store)
    await resolver.set_weight_mode("Rings", "Band", WeightMode.SHARED)

    assert resolver.create_sub_item("Rings", "Band", "S2")
    assert store.weight_map("Rings", "Band", "S2") == {"1g": None, "2g": None}


async def test_per_sub_item_mode_has_no_fallback() -> None:
    resolver = WeightSchemaResolver(_store_with_band())
    await resolver.set_weight_mode("Rings", "Band", WeightMode.PER_SUB_ITEM)

    assert resolver.weights_for("Rings", "Band", "S1") == []
    assert resolver.create_sub_item("Rings", "Band", "S4")
    assert resolver.weights_for("Rings", "Band", "S4") == []


def test_reserved_keys_are_never_weights() -> None:
    store = ThresholdStore()
    store.set_sub_item_weights("Rings", "Band", "S1", ["__hidden", "shared", "2g"])
    resolver = WeightSchemaResolver(store)

    assert resolver.weights_for("Rings", "Band", "S1") == ["2g"]


async def test_weight_mode_is_locked_once() -> None:
    feed = ChangeFeed()
    resolver = WeightSchemaResolver(ThresholdStore(), feed=feed)
    subscription = feed.subscribe(Topic.WEIGHT_MODES)

    assert await resolver.set_weight_mode("Rings", "Band", WeightMode.SHARED)
    assert not await resolver.set_weight_mode("Rings", "Band", WeightMode.PER_SUB_ITEM)
    assert resolver.weight_mode_for("Rings", "Band") is WeightMode.SHARED
    assert len(subscription.drain()) == 1


async def test_weight_mode_persists_and_loads(session_factory) -> None:
    resolver = WeightSchemaResolver(ThresholdStore(session_factory), session_factory)
    await resolver.set_weight_mode("Rings", "Band.Wide", WeightMode.SHARED)

    async with session_factory() as session:
        stored = (await session.execute(select(WeightSchema))).scalars().all()
    assert [(row.category, row.item, row.mode) for row in stored] == [("Rings", "Band_Wide", "shared")]

    reloaded = WeightSchemaResolver(ThresholdStore(session_factory), session_factory)
    assert await reloaded.load()
    assert reloaded.is_shared("Rings", "Band.Wide")
    assert not await reloaded.set_weight_mode("Rings", "Band.Wide", WeightMode.PER_SUB_ITEM)


async def test_reset_weight_mode_clears_weights_and_unlocks(session_factory) -> None:
    store = ThresholdStore(session_factory)
    store.create_sub_item("Rings", "Band", "S1", ["1g"])
    store.set_threshold("Rings", "Band", "S1", "1g", 3)
    store.set_threshold("Chains", "Rope", "", "1g", 1)
    resolver = WeightSchemaResolver(store, session_factory)
    await resolver.set_weight_mode("Rings", "Band", WeightMode.SHARED)

    assert await resolver.reset_weight_mode("Rings", "Band")

    assert resolver.weight_mode_for("Rings", "Band") is None
    assert store.weight_map("Rings", "Band", "S1") == {}
    async with session_factory() as session:
        assert (await session.execute(select(WeightSchema))).scalars().all() == []
    assert await resolver.set_weight_mode("Rings", "Band", WeightMode.PER_SUB_ITEM)


async def test_reset_unknown_item_is_refused() -> None:
    resolver = WeightSchemaResolver(ThresholdStore())

    assert not await resolver.reset_weight_mode("Rings", "Missing")
