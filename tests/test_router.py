"""Tests for inbound dispatch."""

import json
import logging

import pytest

from fake_remote import envelope
from mrlink.electrons.base import BaseElectron
from mrlink.electrons.logger import LoggerElectron
from mrlink.nucleus.correlation import CorrelationTable
from mrlink.nucleus.identity import EndpointIdentity
from mrlink.nucleus.router import Router
from mrlink.nucleus.subscriptions import SubscriptionIndex


def make_router(electrons=None):
    identity = EndpointIdentity("E1")
    identity.set_remote("R9")
    subscriptions = SubscriptionIndex()
    correlation = CorrelationTable()
    router = Router(identity, subscriptions, correlation, electrons=electrons)
    return router, subscriptions, correlation


class HaltingElectron(BaseElectron):
    async def process(self, envelope, next_electron):
        if envelope.method != "secret":
            await next_electron()


@pytest.mark.asyncio
class TestDispatch:
    """Which subscribers see which envelope, and in what order."""

    async def test_reply_goes_to_correlation_only(self):
        router, subscriptions, correlation = make_router()
        seen = []
        subscriptions.subscribe_by_name("python@R9", seen.append)
        subscriptions.subscribe_by_method("exec", seen.append)
        subscriptions.subscribe_by_name_method("python@R9", "exec", seen.append)

        await router.dispatch(json.dumps(envelope("python@R9", "exec", msg_id=42, msg_type="R")))

        assert seen == []
        assert correlation.take(42).msgId == 42

    async def test_non_reply_reaches_every_matching_index(self):
        router, subscriptions, correlation = make_router()
        order = []
        subscriptions.subscribe_by_method("onServoEvent", lambda e: order.append("method"))
        subscriptions.subscribe_by_name_method("servo1@R9", "onServoEvent", lambda e: order.append("name+method"))
        subscriptions.subscribe_by_name("servo1@R9", lambda e: order.append("name"))
        subscriptions.subscribe_by_name("other@R9", lambda e: order.append("wrong name"))
        router.register_framework_callback("servo1@R9.onServoEvent", lambda e: order.append("framework"))

        await router.dispatch(json.dumps(envelope("servo1@R9", "onServoEvent", {"pos": 90}, msg_id=42)))

        assert order == ["framework", "name", "name+method", "method"]
        assert 42 not in correlation

    async def test_topic_named_event_reaches_callback_subscriber(self):
        router, subscriptions, _ = make_router()
        events = []
        subscriptions.subscribe_by_name_method("servo1@R9", "onServoEvent", lambda e: events.append(e.arg(0)))

        await router.dispatch(json.dumps(envelope("servo1@R9", "publishServoEvent", {"pos": 90})))

        assert events == [{"pos": 90}]

    async def test_duplicate_subscription_fires_twice_in_order(self):
        router, subscriptions, _ = make_router()
        calls = []

        def f(e):
            calls.append(("f", e.msgId))

        subscriptions.subscribe_by_name_method("servo1@R9", "onServoEvent", f)
        subscriptions.subscribe_by_name_method("servo1@R9", "onServoEvent", lambda e: calls.append(("g", e.msgId)))
        subscriptions.subscribe_by_name_method("servo1@R9", "onServoEvent", f)

        await router.dispatch(json.dumps(envelope("servo1@R9", "onServoEvent", 1, msg_id=5)))

        assert calls == [("f", 5), ("g", 5), ("f", 5)]

    async def test_method_map_skips_by_name_subscribers(self):
        router, subscriptions, _ = make_router()
        by_name, specific = [], []
        subscriptions.subscribe_by_name("servo1@R9", by_name.append)
        subscriptions.subscribe_by_name_method("servo1@R9", "getMethodMap", specific.append)

        await router.dispatch(json.dumps(envelope("servo1@R9", "onMethodMap", {})))

        assert by_name == []
        assert len(specific) == 1

    async def test_failing_callback_does_not_stop_delivery(self, caplog):
        router, subscriptions, _ = make_router()
        seen = []

        def broken(e):
            raise RuntimeError("boom")

        subscriptions.subscribe_by_name("servo1@R9", broken)
        subscriptions.subscribe_by_name("servo1@R9", seen.append)
        subscriptions.subscribe_by_method("onServoEvent", seen.append)

        with caplog.at_level(logging.ERROR):
            await router.dispatch(json.dumps(envelope("servo1@R9", "onServoEvent")))

        assert len(seen) == 2
        assert "boom" in caplog.text

    async def test_undecodable_frames_are_dropped(self, caplog):
        router, subscriptions, _ = make_router()
        seen = []
        subscriptions.subscribe_by_method("onServoEvent", seen.append)

        with caplog.at_level(logging.ERROR):
            assert await router.dispatch("{broken") is None
        assert await router.dispatch("X") is None
        await router.dispatch(json.dumps(envelope("servo1@R9", "onServoEvent")))

        assert len(seen) == 1
        assert "undecodable" in caplog.text

    async def test_async_callbacks_are_scheduled(self):
        router, subscriptions, _ = make_router()
        seen = []

        async def handler(e):
            seen.append(e.method)

        async def broken(e):
            raise RuntimeError("async boom")

        subscriptions.subscribe_by_method("onStatus", broken)
        subscriptions.subscribe_by_method("onStatus", handler)
        await router.dispatch(json.dumps(envelope("servo1@R9", "onStatus")))
        await router.drain()

        assert seen == ["onStatus"]

    async def test_subscribing_during_dispatch_affects_next_message_only(self):
        router, subscriptions, _ = make_router()
        calls = []

        def late(e):
            calls.append("late")

        def first(e):
            calls.append("first")
            subscriptions.subscribe_by_method("onStatus", late)

        subscriptions.subscribe_by_method("onStatus", first)
        await router.dispatch(json.dumps(envelope("servo1@R9", "onStatus")))
        assert calls == ["first"]

    async def test_removed_framework_callback_is_not_called(self):
        router, _, _ = make_router()
        calls = []
        router.register_framework_callback("runtime@R9.onReleased", calls.append)
        router.remove_framework_callback("runtime@R9.onReleased")
        await router.dispatch(json.dumps(envelope("runtime@R9", "onReleased", "motor@R9")))
        assert calls == []
        assert router.framework_keys() == []


@pytest.mark.asyncio
class TestElectrons:
    """The inbound middleware chain in front of the router."""

    async def test_electron_can_halt(self):
        router, subscriptions, _ = make_router(electrons=[HaltingElectron()])
        seen = []
        subscriptions.subscribe_by_name("servo1@R9", seen.append)

        await router.dispatch(json.dumps(envelope("servo1@R9", "secret")))
        await router.dispatch(json.dumps(envelope("servo1@R9", "public")))

        assert [e.method for e in seen] == ["public"]

    async def test_logger_electron_counts(self):
        counter = LoggerElectron()
        router, _, _ = make_router(electrons=[counter])
        for _ in range(3):
            await router.dispatch(json.dumps(envelope("servo1@R9", "onStatus")))
        await router.dispatch("X")
        assert counter.message_count == 3
