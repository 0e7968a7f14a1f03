"""Tests for the change feed and the reconnecting realtime channel."""
import asyncio

import pytest

from storefront.core.config import StorefrontConfig
from storefront.realtime.channel import (
    ALL_TABLES, DELETE, INSERT, UPDATE, ChangeEvent, ChangeFeed, RealtimeChannel, ReconnectPolicy,
)


class TestChangeFeed:
    def test_delivers_to_table_and_wildcard_subscribers(self):
        feed = ChangeFeed()
        products, everything, orders = [], [], []
        feed.subscribe("products", products.append)
        feed.subscribe(ALL_TABLES, everything.append)
        feed.subscribe("orders", orders.append)

        event = ChangeEvent("products", UPDATE, {"id": "p1", "stock": 2})
        assert feed.publish(event) == 2
        assert products == [event] and everything == [event] and orders == []

    def test_unsubscribe_stops_delivery(self):
        feed = ChangeFeed()
        seen = []
        subscription = feed.subscribe("products", seen.append)
        subscription.unsubscribe()
        subscription.unsubscribe()
        feed.publish(ChangeEvent("products", INSERT, {"id": "p1"}))
        assert seen == []
        assert feed.subscriber_count("products") == 0

    def test_context_manager(self):
        feed = ChangeFeed()
        with feed.subscribe("products", lambda e: None):
            assert feed.subscriber_count("products") == 1
        assert feed.subscriber_count("products") == 0

    def test_failing_callback_does_not_block_others(self):
        feed = ChangeFeed()
        seen = []

        def broken(event):
            raise ValueError("view gone")

        feed.subscribe("products", broken)
        feed.subscribe("products", seen.append)
        assert feed.publish(ChangeEvent("products", DELETE, {"id": "p1"})) == 1
        assert len(seen) == 1

    def test_no_replay_for_late_subscribers(self):
        feed = ChangeFeed()
        feed.publish(ChangeEvent("products", INSERT, {"id": "p1"}))
        seen = []
        feed.subscribe("products", seen.append)
        assert seen == []


class TestReconnectPolicy:
    def test_exponential_backoff_with_cap(self):
        policy = ReconnectPolicy(base=1.0, factor=2.0, cap=5.0)
        assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_max_attempts(self):
        policy = ReconnectPolicy(max_attempts=2)
        assert not policy.exhausted(2)
        assert policy.exhausted(3)
        assert not ReconnectPolicy().exhausted(1000)

    def test_from_config(self):
        config = StorefrontConfig(realtime_backoff_base=0.5, realtime_backoff_cap=8.0, realtime_max_attempts=4)
        policy = ReconnectPolicy.from_config(config)
        assert (policy.base, policy.factor, policy.cap, policy.max_attempts) == (0.5, 2.0, 8.0, 4)


class TestRealtimeChannel:
    def test_reconnects_with_backoff_then_gives_up(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("products", seen.append)
        delays = []
        connects = []

        async def sleep(delay):
            delays.append(delay)

        def source():
            connects.append(len(connects))

            async def stream():
                if len(connects) == 2:
                    yield ChangeEvent("products", UPDATE, {"id": "p1"})
                raise ConnectionError("socket closed")
                yield  # pragma: no cover

            return stream()

        channel = RealtimeChannel(source, feed, ReconnectPolicy(base=1.0, factor=2.0, cap=30.0, max_attempts=3),
                                  sleep=sleep)
        asyncio.run(channel.run())

        assert len(seen) == 1
        # the second connection delivered an event, which resets the attempt counter
        assert delays == [1.0, 1.0, 2.0, 4.0]
        assert channel.closed

    def test_close_stops_delivery(self):
        feed = ChangeFeed()
        seen = []
        feed.subscribe("products", seen.append)

        async def main():
            gate = asyncio.Event()

            def source():
                async def stream():
                    yield ChangeEvent("products", INSERT, {"id": "p1"})
                    await gate.wait()
                    yield ChangeEvent("products", INSERT, {"id": "p2"})

                return stream()

            channel = RealtimeChannel(source, feed)
            task = channel.start()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            channel.close()
            gate.set()
            with pytest.raises(asyncio.CancelledError):
                await task
            return channel

        channel = asyncio.run(main())
        assert [e.record["id"] for e in seen] == ["p1"]
        assert channel.closed
