# interceptor.py
# Capability interception.
#
# InstrumentedPage is a drop-in stand-in for the driver's page. goto / act /
# extract / observe are recorded in the registry; every other attribute is
# forwarded untouched, so the script never knows it is being watched.
#
# extract and observe do not return straight away. After the first result the
# step goes idle and the call parks on a PendingStep until the operator sends:
#   ReplayRequested(prompt) → re-run the driver with the edited instruction,
#                             record a new eval, stay parked
#   AdvanceRequested        → finalize the step and hand the latest result
#                             back to the script
#
# Parking is an awaited asyncio.Queue read, so the frame relay and the
# transport keep running on the same loop while a step waits.

import asyncio
import copy
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel
from pydantic_core import to_json

from flyspace import display
from flyspace.bus import AdvanceRequested, CommandBus, Event, ReplayRequested
from flyspace.errors import InvalidArgumentError, NoPendingStepError
from flyspace.models import TERMINAL_STATUSES, LLMStepType
from flyspace.registry import Registry

INSTRUCTION_FIELDS: dict[str, str] = {
    "act": "action",
    "extract": "instruction",
    "observe": "instruction",
}


def serialize_result(result: Any) -> str:
    """Stringify a driver result. Unknown objects fall back to repr()."""
    return to_json(result, fallback=repr).decode("utf-8")


# ---------------------------------------------------------------------------
# Call capture
# ---------------------------------------------------------------------------


class CapabilityCall:
    """
    The arguments of one act/extract/observe call, plus the instruction they
    carry. The instruction may be a bare string, a mapping or object with the
    instruction field, or the instruction keyword argument.
    """

    def __init__(self, capability: LLMStepType, args: tuple, kwargs: dict[str, Any]) -> None:
        self.capability = capability
        self.field = INSTRUCTION_FIELDS[capability]
        self.args = args
        self.kwargs = kwargs
        self.prompt = self._find_prompt()

    def _find_prompt(self) -> str:
        if self.args:
            first = self.args[0]
            if isinstance(first, str):
                return first
            if isinstance(first, Mapping):
                value = first.get(self.field)
            else:
                value = getattr(first, self.field, None)
        else:
            value = self.kwargs.get(self.field)

        if not isinstance(value, str) or not value:
            raise InvalidArgumentError(
                f"Invalid arguments for {self.capability}: expected a string "
                f"or an argument carrying '{self.field}'"
            )
        return value

    def with_prompt(self, prompt: str) -> "CapabilityCall":
        """Same call, instruction replaced by `prompt` in whatever form it was given."""
        if not self.args:
            return CapabilityCall(self.capability, (), {**self.kwargs, self.field: prompt})

        first, rest = self.args[0], self.args[1:]
        if isinstance(first, str):
            replaced = prompt
        elif isinstance(first, Mapping):
            replaced = {**first, self.field: prompt}
        elif isinstance(first, BaseModel):
            replaced = first.model_copy(update={self.field: prompt})
        else:
            replaced = copy.copy(first)
            setattr(replaced, self.field, prompt)
        return CapabilityCall(self.capability, (replaced, *rest), dict(self.kwargs))


class PendingStep:
    """An idle extract/observe call waiting for operator commands."""

    def __init__(self, step_id: str, call: CapabilityCall, result: Any) -> None:
        self.step_id = step_id
        self.call = call
        self.result = result
        self.commands: asyncio.Queue[Event] = asyncio.Queue()


# ---------------------------------------------------------------------------
# InstrumentedPage
# ---------------------------------------------------------------------------


class InstrumentedPage:
    """
    Wraps the driver page for one run.

    Must be released when the run ends so its command handlers leave the bus.
    `close` is not shadowed: scripts can still close the real page.
    """

    def __init__(self, page: Any, *, registry: Registry, bus: CommandBus, run_id: str) -> None:
        self._page = page
        self._registry = registry
        self._run_id = run_id
        self._pending: dict[str, PendingStep] = {}
        self._detach = [
            bus.on(ReplayRequested, self._route_command),
            bus.on(AdvanceRequested, self._route_command),
        ]

    def __getattr__(self, name: str) -> Any:
        return getattr(self._page, name)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def awaiting_operator(self) -> bool:
        return bool(self._pending)

    def release(self) -> None:
        for detach in self._detach:
            detach()
        self._detach = []

    # ------------------------------------------------------------------
    # Command routing
    # ------------------------------------------------------------------

    def _route_command(self, command: Event) -> None:
        """Bus handler: queue the command on the step the cursor points at."""
        step_id = self._registry.current_step_id
        pending = self._pending.get(step_id) if step_id else None
        if pending is None:
            raise NoPendingStepError("No step is awaiting operator input")
        pending.commands.put_nowait(command)

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def goto(self, url: str, *args: Any, **kwargs: Any) -> Any:
        step_id = self._registry.new_goto_step(url, self._run_id)
        display.goto_started(url)
        try:
            response = await self._page.goto(url, *args, **kwargs)
        except (Exception, asyncio.CancelledError) as exc:
            display.capability_failed("goto", exc)
            self._registry.fail_goto_step(step_id)
            raise
        self._registry.complete_goto_step(step_id)
        display.goto_completed(url)
        return response

    async def act(self, *args: Any, **kwargs: Any) -> Any:
        call = CapabilityCall("act", args, kwargs)
        step_id, original_eval_id = self._registry.new_llm_step("act", call.prompt, self._run_id)
        display.step_started("act", call.prompt)

        result = await self._invoke(call, step_id, original_eval_id)
        self._registry.update_llm_step(step_id, "completed", final_eval_id=original_eval_id)
        display.step_completed("act", original_eval_id)
        return result

    async def extract(self, *args: Any, **kwargs: Any) -> Any:
        return await self._invoke_with_replay(CapabilityCall("extract", args, kwargs))

    async def observe(self, *args: Any, **kwargs: Any) -> Any:
        return await self._invoke_with_replay(CapabilityCall("observe", args, kwargs))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _invoke(self, call: CapabilityCall, step_id: str, eval_id: str) -> Any:
        """
        Run the driver once for `eval_id`. A failing driver call marks the
        eval and its step crashed before the error propagates to the script.
        """
        method = getattr(self._page, call.capability)
        try:
            result = await method(*call.args, **call.kwargs)
        except (Exception, asyncio.CancelledError) as exc:
            display.capability_failed(call.capability, exc)
            self._registry.fail_eval(eval_id)
            self._registry.update_llm_step(step_id, "crashed")
            raise

        payload = serialize_result(result)
        self._registry.complete_eval(eval_id, payload)
        display.eval_completed(payload)
        return result

    async def _invoke_with_replay(self, call: CapabilityCall) -> Any:
        step_id, original_eval_id = self._registry.new_llm_step(call.capability, call.prompt, self._run_id)
        display.step_started(call.capability, call.prompt)

        initial = await self._invoke(call, step_id, original_eval_id)

        pending = PendingStep(step_id, call, initial)
        self._pending[step_id] = pending
        try:
            self._registry.update_llm_step(step_id, "idle")
            display.step_awaiting_operator(call.capability, step_id)

            while True:
                command = await pending.commands.get()

                if isinstance(command, AdvanceRequested):
                    final_eval_id = self._registry.current_eval_id
                    self._registry.update_llm_step(step_id, "completed", final_eval_id=final_eval_id)
                    display.step_completed(call.capability, final_eval_id)
                    return pending.result

                eval_id = self._registry.new_eval(step_id, self._run_id, command.prompt)
                self._registry.update_llm_step(step_id, "running")
                display.replay_started(command.prompt)

                pending.result = await self._invoke(call.with_prompt(command.prompt), step_id, eval_id)
                self._registry.update_llm_step(step_id, "idle")
                display.step_awaiting_operator(call.capability, step_id)
        except asyncio.CancelledError:
            if self._registry.get_step(step_id).status not in TERMINAL_STATUSES:
                self._registry.update_llm_step(step_id, "crashed")
            raise
        finally:
            del self._pending[step_id]


class InstrumentedStagehand:
    """The driver object as a script sees it: `.page` is the instrumented page."""

    def __init__(self, stagehand: Any, page: InstrumentedPage) -> None:
        self._stagehand = stagehand
        self._page = page

    @property
    def page(self) -> InstrumentedPage:
        return self._page

    def __getattr__(self, name: str) -> Any:
        return getattr(self._stagehand, name)
