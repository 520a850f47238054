import asyncio

import pytest

from flyspace.bus import AdvanceRequested, CommandBus, ReplayRequested, RunTriggered


def test_handlers_run_in_registration_order():
    bus = CommandBus()
    seen = []
    bus.on(ReplayRequested, lambda e: seen.append(("first", e.prompt)))
    bus.on(ReplayRequested, lambda e: seen.append(("second", e.prompt)))
    bus.on(AdvanceRequested, lambda e: seen.append(("advance", None)))

    assert bus.publish(ReplayRequested(prompt="find the title")) == 2
    assert seen == [("first", "find the title"), ("second", "find the title")]


def test_publish_without_listeners_reports_zero():
    assert CommandBus().publish(AdvanceRequested()) == 0


def test_unsubscribe_removes_handler():
    bus = CommandBus()
    seen = []
    off = bus.on(RunTriggered, seen.append)
    off()
    off()
    assert bus.publish(RunTriggered(file="a.py", export_name="main")) == 0
    assert seen == []


def test_handler_errors_reach_the_publisher():
    bus = CommandBus()

    def reject(event):
        raise ValueError("nope")

    bus.on(AdvanceRequested, reject)
    with pytest.raises(ValueError, match="nope"):
        bus.publish(AdvanceRequested())


def test_events_are_tagged_and_frozen():
    event = ReplayRequested(prompt="x")
    assert event.kind == "run-eval"
    assert AdvanceRequested().kind == "complete-step"
    assert RunTriggered(file="a.py", export_name="main").kind == "triggered"
    with pytest.raises(Exception):
        event.prompt = "y"


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


def test_subscription_streams_events_until_closed():
    bus = CommandBus()

    async def _main():
        subscription = bus.subscribe(ReplayRequested)
        bus.publish(ReplayRequested(prompt="one"))
        bus.publish(ReplayRequested(prompt="two"))
        subscription.close()
        return [event.prompt async for event in subscription]

    assert asyncio.run(_main()) == ["one", "two"]


def test_closed_subscription_is_detached():
    bus = CommandBus()

    async def _main():
        async with bus.subscribe(AdvanceRequested) as subscription:
            pass
        assert subscription.closed
        bus.publish(AdvanceRequested())
        return [event async for event in subscription]

    assert asyncio.run(_main()) == []


def test_close_wakes_blocked_reader():
    bus = CommandBus()

    async def _main():
        subscription = bus.subscribe(ReplayRequested)

        async def drain():
            return [event async for event in subscription]

        reader = asyncio.create_task(drain())
        await asyncio.sleep(0)
        assert not reader.done()
        subscription.close()
        return await asyncio.wait_for(reader, 1)

    assert asyncio.run(_main()) == []


def test_bounded_subscription_drops_oldest():
    bus = CommandBus()

    async def _main():
        subscription = bus.subscribe(ReplayRequested, maxsize=2)
        for prompt in ["a", "b", "c", "d"]:
            bus.publish(ReplayRequested(prompt=prompt))
        first = await subscription.__anext__()
        second = await subscription.__anext__()
        subscription.close()
        return first.prompt, second.prompt

    assert asyncio.run(_main()) == ("c", "d")


def test_streams_do_not_count_as_handlers():
    bus = CommandBus()

    async def _main():
        bus.subscribe(AdvanceRequested)
        return bus.publish(AdvanceRequested())

    assert asyncio.run(_main()) == 0
