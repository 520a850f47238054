# bus.py
# Process-wide command bus.
#
# Every event is a typed pydantic model with a `kind` tag. Two ways to listen:
#   on()        — synchronous handlers, run inside publish() in registration
#                 order; their exceptions propagate to the publisher.
#   subscribe() — long-lived async streams backed by an asyncio.Queue; used by
#                 the transport for state and frame push channels.
#
# Nothing is buffered for late subscribers: a stream only sees events
# published after it was opened.

import asyncio
from collections import defaultdict
from collections.abc import Callable
from typing import Literal, TypeVar

from pydantic import BaseModel, ConfigDict

from flyspace.models import RegistryState, ScreencastFrame

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class StateChanged(Event):
    """Published by the registry after every mutation."""

    kind: Literal["state-changed"] = "state-changed"
    mutation: str
    state: RegistryState


class FrameRelayed(Event):
    kind: Literal["frame"] = "frame"
    frame: ScreencastFrame


class RunTriggered(Event):
    kind: Literal["triggered"] = "triggered"
    file: str
    export_name: str


class ReplayRequested(Event):
    """Operator asks to re-run the current step with an edited instruction."""

    kind: Literal["run-eval"] = "run-eval"
    prompt: str


class AdvanceRequested(Event):
    """Operator accepts the current step and lets the script continue."""

    kind: Literal["complete-step"] = "complete-step"


E = TypeVar("E", bound=Event)


# ---------------------------------------------------------------------------
# Subscription
# ---------------------------------------------------------------------------


class Subscription:
    """
    Async iterator over one event type.

    With maxsize > 0 the queue is bounded and the oldest pending event is
    dropped to make room, so a slow reader always sees the newest events.
    """

    def __init__(self, bus: "CommandBus", event_type: type[Event], maxsize: int = 0) -> None:
        self._bus = bus
        self._event_type = event_type
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, event: Event) -> None:
        if self._closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._detach(self._event_type, self)
        # Wake a reader blocked in __anext__.
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


# ---------------------------------------------------------------------------
# CommandBus
# ---------------------------------------------------------------------------


class CommandBus:
    def __init__(self) -> None:
        self._handlers: dict[type[Event], list[Callable[[Event], None]]] = defaultdict(list)
        self._streams: dict[type[Event], list[Subscription]] = defaultdict(list)

    def on(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register a synchronous handler. Returns a function that removes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers[event_type]
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def subscribe(self, event_type: type[E], maxsize: int = 0) -> Subscription:
        subscription = Subscription(self, event_type, maxsize=maxsize)
        self._streams[event_type].append(subscription)
        return subscription

    def publish(self, event: Event) -> int:
        """
        Deliver `event` to every handler and stream registered for its type.

        Returns the number of synchronous handlers invoked, so command
        publishers can tell when nobody is listening.
        """
        event_type = type(event)
        for subscription in list(self._streams[event_type]):
            subscription._deliver(event)

        handlers = list(self._handlers[event_type])
        for handler in handlers:
            handler(event)
        return len(handlers)

    def _detach(self, event_type: type[Event], subscription: Subscription) -> None:
        streams = self._streams[event_type]
        if subscription in streams:
            streams.remove(subscription)
