# models.py
# Data contracts for the instrumented run engine.
# No business logic lives here, only schema and validation.
#
# Every model serializes with camelCase aliases, which is the shape the web
# client reads (startedAt, runId, finalEvalId, ...).

from datetime import datetime, timezone
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RunStatus = Literal["running", "completed", "crashed"]
LLMStepStatus = Literal["idle", "running", "completed", "crashed"]
GotoStepStatus = Literal["running", "completed", "crashed"]
EvalStatus = Literal["running", "completed", "crashed"]
LLMStepType = Literal["act", "extract", "observe"]

TERMINAL_STATUSES = frozenset({"completed", "crashed"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Contract(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Run(_Contract):
    """One execution of a triggered automation script."""

    id: str
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    file: str = Field(..., description="Absolute path of the script that was run.")
    code: str = Field(..., description="Raw source captured when the run started.")
    status: RunStatus = "running"


class LLMStep(_Contract):
    """An act/extract/observe invocation. Owns one or more evals."""

    type: LLMStepType
    id: str
    run_id: str
    original_eval_id: str
    final_eval_id: str | None = None
    status: LLMStepStatus = "running"


class GotoStep(_Contract):
    """A plain navigation. Owns no evals."""

    type: Literal["goto"] = "goto"
    id: str
    run_id: str
    url: str
    status: GotoStepStatus = "running"


Step = Annotated[LLMStep | GotoStep, Field(discriminator="type")]


class Eval(_Contract):
    """One concrete instruction + result pair."""

    id: str
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    step_id: str
    run_id: str
    prompt: str
    result: str | None = Field(default=None, description="Always a JSON string.")
    status: EvalStatus = "running"


class RegistryState(_Contract):
    """Full registry snapshot, plus the cursor of most recent entities."""

    current_run_id: str | None = None
    current_step_id: str | None = None
    current_eval_id: str | None = None
    runs: dict[str, Run] = Field(default_factory=dict)
    steps: dict[str, Step] = Field(default_factory=dict)
    evals: dict[str, Eval] = Field(default_factory=dict)


class FrameMetadata(_Contract):
    offset_top: float = 0
    page_scale_factor: float = 1
    device_width: float
    device_height: float
    scroll_offset_x: float = 0
    scroll_offset_y: float = 0
    timestamp: float | None = None


class ScreencastFrame(_Contract):
    """A single Page.screencastFrame event as sent by the browser."""

    data: str = Field(..., description="Base64-encoded compressed image.")
    metadata: FrameMetadata
    session_id: int = Field(..., description="Frame number; echoed back in the ack.")


class ExportDetails(_Contract):
    matching_exports: list[str] = Field(default_factory=list)
    all_exports: list[str] = Field(default_factory=list)
