import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from flyspace.bus import CommandBus, StateChanged
from flyspace.registry import Registry


class FakePage:
    """
    Stands in for the driver page. Results echo the instruction they were
    given, so tests can tell which prompt reached the driver.
    """

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self.url = "about:blank"
        self.title = "Hacker News"

    def _maybe_fail(self, capability: str) -> None:
        if capability in self.failures:
            raise self.failures[capability]

    async def goto(self, url, **kwargs):
        self.calls.append(("goto", url, kwargs))
        self._maybe_fail("goto")
        self.url = url
        return None

    async def act(self, *args, **kwargs):
        self.calls.append(("act", args, kwargs))
        self._maybe_fail("act")
        return {"success": True}

    async def extract(self, *args, **kwargs):
        self.calls.append(("extract", args, kwargs))
        self._maybe_fail("extract")
        return {"echo": _instruction(args, kwargs)}

    async def observe(self, *args, **kwargs):
        self.calls.append(("observe", args, kwargs))
        self._maybe_fail("observe")
        return [{"selector": "xpath=//a[1]", "description": _instruction(args, kwargs)}]


def _instruction(args, kwargs):
    if args and isinstance(args[0], str):
        return args[0]
    if args and isinstance(args[0], dict):
        return args[0].get("instruction")
    if args:
        return getattr(args[0], "instruction", None)
    return kwargs.get("instruction")


@pytest.fixture
def bus():
    return CommandBus()


@pytest.fixture
def registry(bus):
    return Registry(bus)


@pytest.fixture
def state_events(bus):
    events: list[StateChanged] = []
    bus.on(StateChanged, events.append)
    return events


@pytest.fixture
def page():
    return FakePage()


@pytest.fixture
def stagehand(page):
    driver = MagicMock()
    driver.page = page
    driver.context = MagicMock(name="browser_context")
    driver.close = AsyncMock()
    return driver


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.001)

    return _wait
