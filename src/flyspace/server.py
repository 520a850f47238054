# server.py
# Websocket transport for the operator UI.
#
# One JSON protocol over a single websocket per client:
#
#   request   {"id": 1, "method": "trigger", "params": {"file": ..., "exportName": ...}}
#   response  {"id": 1, "result": ...}  or  {"id": 1, "error": {"type": ..., "message": ...}}
#   push      {"subscription": 3, "data": ...}
#
# Queries:       files, getStagehandSteps
# Commands:      trigger, newEval (replay), completeStep (advance)
# Subscriptions: subscribe {"channel": "stagehandSteps" | "screencastFrames"}, unsubscribe
#
# A failing handler never takes the connection down: the error is reported
# back on the request it belongs to.

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from flyspace import display
from flyspace.bus import AdvanceRequested, CommandBus, Event, FrameRelayed, ReplayRequested, RunTriggered, StateChanged
from flyspace.errors import NoPendingStepError
from flyspace.models import ExportDetails
from flyspace.registry import Registry

FRAME_BACKLOG = 4


class UnknownMethodError(Exception):
    """Raised when a request names a method the transport does not serve."""


class NoListenerError(Exception):
    """Raised when a command is published and nothing on the bus handles it."""


# ---------------------------------------------------------------------------
# Request parameters
# ---------------------------------------------------------------------------


class _Params(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class TriggerParams(_Params):
    file: str
    export_name: str


class NewEvalParams(_Params):
    prompt: str


class SubscribeParams(_Params):
    channel: Literal["stagehandSteps", "screencastFrames"]


class UnsubscribeParams(_Params):
    subscription: int


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class Connection:
    """Per-client state: the open push subscriptions and how to send to the client."""

    def __init__(self, send: Callable[[str], Awaitable[None]]) -> None:
        self._send = send
        self._next_id = 1
        self._pumps: dict[int, tuple[Any, asyncio.Task]] = {}

    @property
    def subscriptions(self) -> list[int]:
        return sorted(self._pumps)

    async def send(self, payload: dict[str, Any]) -> None:
        await self._send(json.dumps(payload))

    def open(self, subscription: Any, encode: Callable[[Event], Any]) -> int:
        subscription_id = self._next_id
        self._next_id += 1
        task = asyncio.get_running_loop().create_task(self._pump(subscription_id, subscription, encode))
        self._pumps[subscription_id] = (subscription, task)
        return subscription_id

    async def _pump(self, subscription_id: int, subscription: Any, encode: Callable[[Event], Any]) -> None:
        try:
            async for event in subscription:
                await self.send({"subscription": subscription_id, "data": encode(event)})
        except ConnectionClosed:
            pass
        except Exception as exc:
            display.transport_error(f"subscription {subscription_id}", exc)
        finally:
            self._pumps.pop(subscription_id, None)
            subscription.close()

    def cancel(self, subscription_id: int) -> bool:
        entry = self._pumps.pop(subscription_id, None)
        if entry is None:
            return False
        subscription, task = entry
        subscription.close()
        task.cancel()
        return True

    def close(self) -> None:
        for subscription_id in list(self._pumps):
            self.cancel(subscription_id)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def _encode_state(event: StateChanged) -> dict[str, Any]:
    return event.state.model_dump(mode="json", by_alias=True)


def _encode_frame(event: FrameRelayed) -> dict[str, Any]:
    return event.frame.model_dump(mode="json", by_alias=True)


class Transport:
    """
    Maps operator requests onto the registry and the command bus.

    Example:
        transport = Transport(registry, bus, files)
        await transport.serve("127.0.0.1", 1919)
    """

    def __init__(self, registry: Registry, bus: CommandBus, files: dict[str, ExportDetails]) -> None:
        self._registry = registry
        self._bus = bus
        self._files = files
        self._methods: dict[str, Callable[[dict[str, Any], Connection], Awaitable[Any]]] = {
            "files": self._list_files,
            "getStagehandSteps": self._get_state,
            "trigger": self._trigger,
            "newEval": self._new_eval,
            "completeStep": self._complete_step,
            "subscribe": self._subscribe,
            "unsubscribe": self._unsubscribe,
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, raw: str | bytes, connection: Connection) -> dict[str, Any]:
        request_id = None
        method = "<unparsed>"
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise ValueError("Request must be a JSON object")
            request_id = message.get("id")
            method = str(message.get("method"))
            handler = self._methods.get(method)
            if handler is None:
                raise UnknownMethodError(f"Unknown method {method!r}")
            result = await handler(message.get("params") or {}, connection)
        except Exception as exc:
            display.transport_error(method, exc)
            return {"id": request_id, "error": {"type": type(exc).__name__, "message": str(exc)}}
        return {"id": request_id, "result": result}

    def _command(self, event: Event) -> None:
        if not self._bus.publish(event):
            if isinstance(event, (ReplayRequested, AdvanceRequested)):
                raise NoPendingStepError("No step is awaiting operator input")
            raise NoListenerError(f"Nothing is listening for {event.kind!r}")

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    async def _list_files(self, params: dict[str, Any], connection: Connection) -> dict[str, Any]:
        return {"files": {path: details.model_dump(by_alias=True) for path, details in self._files.items()}}

    async def _get_state(self, params: dict[str, Any], connection: Connection) -> dict[str, Any]:
        return self._registry.snapshot().model_dump(mode="json", by_alias=True)

    async def _trigger(self, params: dict[str, Any], connection: Connection) -> dict[str, Any]:
        request = TriggerParams.model_validate(params)
        self._command(RunTriggered(file=request.file, export_name=request.export_name))
        return {"runId": self._registry.current_run_id}

    async def _new_eval(self, params: dict[str, Any], connection: Connection) -> None:
        request = NewEvalParams.model_validate(params)
        self._command(ReplayRequested(prompt=request.prompt))

    async def _complete_step(self, params: dict[str, Any], connection: Connection) -> None:
        self._command(AdvanceRequested())

    async def _subscribe(self, params: dict[str, Any], connection: Connection) -> dict[str, int]:
        request = SubscribeParams.model_validate(params)
        if request.channel == "stagehandSteps":
            subscription = self._bus.subscribe(StateChanged)
            subscription_id = connection.open(subscription, _encode_state)
        else:
            subscription = self._bus.subscribe(FrameRelayed, maxsize=FRAME_BACKLOG)
            subscription_id = connection.open(subscription, _encode_frame)
        return {"subscription": subscription_id}

    async def _unsubscribe(self, params: dict[str, Any], connection: Connection) -> dict[str, bool]:
        request = UnsubscribeParams.model_validate(params)
        return {"closed": connection.cancel(request.subscription)}

    # ------------------------------------------------------------------
    # Websocket server
    # ------------------------------------------------------------------

    async def _serve_connection(self, websocket: ServerConnection) -> None:
        remote = str(websocket.remote_address)
        connection = Connection(websocket.send)
        display.client_connected(remote)
        try:
            async for raw in websocket:
                response = await self.handle(raw, connection)
                await connection.send(response)
        except ConnectionClosed:
            pass
        finally:
            connection.close()
            display.client_disconnected(remote)

    async def start(self, host: str, port: int) -> Server:
        return await serve(self._serve_connection, host, port)

    async def serve(self, host: str, port: int) -> None:
        server = await self.start(host, port)
        async with server:
            await server.serve_forever()
