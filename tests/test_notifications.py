from __future__ import annotations

from goldventory.notifications import ChangeFeed, Topic


def test_subscription_filters_topics() -> None:
    feed = ChangeFeed()
    orders = feed.subscribe(Topic.ORDERS)
    everything = feed.subscribe()

    feed.publish(Topic.INVENTORY, product_id="Rings")
    feed.publish(Topic.ORDERS, order_id=1)

    assert [event.detail for event in orders.drain()] == [{"order_id": 1}]
    assert [event.topic for event in everything.drain()] == [Topic.INVENTORY, Topic.ORDERS]


async def test_closed_subscription_stops_receiving() -> None:
    feed = ChangeFeed()

    async with feed.subscribe(Topic.THRESHOLDS) as subscription:
        feed.publish(Topic.THRESHOLDS, action="set")
        assert (await subscription.get()).detail == {"action": "set"}
        assert feed.subscriber_count == 1

    assert feed.subscriber_count == 0
    feed.publish(Topic.THRESHOLDS, action="set")
    assert subscription.pending() == 0
