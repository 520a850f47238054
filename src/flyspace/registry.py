# registry.py
# Run / Step / Eval registry, the single source of truth for what the
# instrumented script is doing.
#
# Append-only: entities are never deleted, only replaced by a copy with a new
# status. Every mutation validates first, then mutates, then publishes a
# StateChanged snapshot on the bus. There is no await between the mutation and
# its notification, so readers never observe one without the other.

from typing import Literal, NamedTuple

from flyspace.bus import CommandBus, StateChanged
from flyspace.errors import InvariantViolation
from flyspace.ids import new_id
from flyspace.models import (
    TERMINAL_STATUSES,
    Eval,
    GotoStep,
    LLMStep,
    LLMStepType,
    RegistryState,
    Run,
    RunStatus,
    Step,
    utc_now,
)


class NewLLMStep(NamedTuple):
    step_id: str
    original_eval_id: str


class Registry:
    """
    In-memory store of every run, step and eval for the process lifetime.

    One instance per process, constructed at startup and handed to the
    sandbox, the interceptor and the transport.
    """

    def __init__(self, bus: CommandBus) -> None:
        self._bus = bus
        self._runs: dict[str, Run] = {}
        self._steps: dict[str, Step] = {}
        self._evals: dict[str, Eval] = {}
        self._current_run_id: str | None = None
        self._current_step_id: str | None = None
        self._current_eval_id: str | None = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def current_run_id(self) -> str | None:
        return self._current_run_id

    @property
    def current_step_id(self) -> str | None:
        return self._current_step_id

    @property
    def current_eval_id(self) -> str | None:
        return self._current_eval_id

    def get_run(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def get_step(self, step_id: str) -> Step | None:
        return self._steps.get(step_id)

    def get_eval(self, eval_id: str) -> Eval | None:
        return self._evals.get(eval_id)

    def snapshot(self) -> RegistryState:
        # Entities are frozen, so copying the maps is enough to isolate readers.
        return RegistryState.model_construct(
            current_run_id=self._current_run_id,
            current_step_id=self._current_step_id,
            current_eval_id=self._current_eval_id,
            runs=dict(self._runs),
            steps=dict(self._steps),
            evals=dict(self._evals),
        )

    # ------------------------------------------------------------------
    # Lookups that enforce invariants
    # ------------------------------------------------------------------

    def _require_run(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise InvariantViolation(f"Run with id {run_id} not found")
        return run

    def _require_llm_step(self, step_id: str) -> LLMStep:
        step = self._steps.get(step_id)
        if step is None:
            raise InvariantViolation(f"Step with id {step_id} not found")
        if isinstance(step, GotoStep):
            raise InvariantViolation(f"Step {step_id} is a goto step, expected an LLM step")
        return step

    def _require_goto_step(self, step_id: str) -> GotoStep:
        step = self._steps.get(step_id)
        if step is None:
            raise InvariantViolation(f"Step with id {step_id} not found")
        if not isinstance(step, GotoStep):
            raise InvariantViolation(f"Step {step_id} is a {step.type} step, expected a goto step")
        return step

    def _require_eval(self, eval_id: str) -> Eval:
        found = self._evals.get(eval_id)
        if found is None:
            raise InvariantViolation(f"Eval with id {eval_id} not found")
        return found

    def _notify(self, mutation: str) -> None:
        self._bus.publish(StateChanged(mutation=mutation, state=self.snapshot()))

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def new_run(self, file: str, code: str) -> str:
        run_id = new_id()
        self._runs[run_id] = Run(id=run_id, file=file, code=code)
        self._current_run_id = run_id
        self._notify("new_run")
        return run_id

    def complete_run(self, run_id: str, status: RunStatus = "completed") -> None:
        run = self._require_run(run_id)
        if run.status in TERMINAL_STATUSES:
            raise InvariantViolation(f"Run {run_id} already finished as {run.status}")
        if status not in TERMINAL_STATUSES:
            raise InvariantViolation(f"Cannot complete run {run_id} with status {status!r}")

        self._runs[run_id] = run.model_copy(update={"completed_at": utc_now(), "status": status})
        self._notify("complete_run")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def new_llm_step(self, type: LLMStepType, original_prompt: str, run_id: str) -> NewLLMStep:
        """Create a step and its original eval together; both become current."""
        self._require_run(run_id)

        step_id = new_id()
        original_eval_id = new_id()
        self._evals[original_eval_id] = Eval(
            id=original_eval_id,
            step_id=step_id,
            run_id=run_id,
            prompt=original_prompt,
        )
        self._steps[step_id] = LLMStep(
            type=type,
            id=step_id,
            run_id=run_id,
            original_eval_id=original_eval_id,
        )
        self._current_eval_id = original_eval_id
        self._current_step_id = step_id
        self._notify("new_llm_step")
        return NewLLMStep(step_id, original_eval_id)

    def new_goto_step(self, url: str, run_id: str) -> str:
        self._require_run(run_id)

        step_id = new_id()
        self._steps[step_id] = GotoStep(id=step_id, run_id=run_id, url=url)
        self._current_step_id = step_id
        self._notify("new_goto_step")
        return step_id

    def complete_goto_step(self, step_id: str) -> None:
        step = self._require_goto_step(step_id)
        self._steps[step_id] = step.model_copy(update={"status": "completed"})
        self._notify("complete_goto_step")

    def fail_goto_step(self, step_id: str) -> None:
        step = self._require_goto_step(step_id)
        self._steps[step_id] = step.model_copy(update={"status": "crashed"})
        self._notify("fail_goto_step")

    def update_llm_step(
        self,
        step_id: str,
        status: Literal["idle", "running", "completed", "crashed"],
        final_eval_id: str | None = None,
    ) -> None:
        """
        Transition an LLM step. `final_eval_id` is required exactly when the
        step becomes completed, and is immutable afterwards.
        """
        step = self._require_llm_step(step_id)
        if step.status in TERMINAL_STATUSES:
            raise InvariantViolation(f"Step {step_id} already finished as {step.status}")

        update: dict = {"status": status}
        if status == "completed":
            if final_eval_id is None:
                raise InvariantViolation(f"Completing step {step_id} requires a final eval id")
            final = self._require_eval(final_eval_id)
            if final.step_id != step_id:
                raise InvariantViolation(f"Eval {final_eval_id} does not belong to step {step_id}")
            update["final_eval_id"] = final_eval_id
        elif final_eval_id is not None:
            raise InvariantViolation(f"A final eval id is only accepted when completing step {step_id}")

        self._steps[step_id] = step.model_copy(update=update)
        self._notify("update_llm_step")

    # ------------------------------------------------------------------
    # Evals
    # ------------------------------------------------------------------

    def new_eval(self, step_id: str, run_id: str, prompt: str) -> str:
        """Append a replay eval under an idle LLM step."""
        step = self._require_llm_step(step_id)
        self._require_run(run_id)
        if step.run_id != run_id:
            raise InvariantViolation(f"Step {step_id} belongs to run {step.run_id}, not {run_id}")
        if step.status != "idle":
            raise InvariantViolation(f"Step {step_id} is {step.status}; replays need an idle step")

        eval_id = new_id()
        self._evals[eval_id] = Eval(id=eval_id, step_id=step_id, run_id=run_id, prompt=prompt)
        self._current_eval_id = eval_id
        self._notify("new_eval")
        return eval_id

    def complete_eval(self, eval_id: str, result: str) -> None:
        found = self._require_eval(eval_id)
        self._evals[eval_id] = found.model_copy(
            update={"result": result, "completed_at": utc_now(), "status": "completed"}
        )
        self._notify("complete_eval")

    def fail_eval(self, eval_id: str) -> None:
        found = self._require_eval(eval_id)
        self._evals[eval_id] = found.model_copy(update={"completed_at": utc_now(), "status": "crashed"})
        self._notify("fail_eval")
