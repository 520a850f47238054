# sandbox.py
# Script sandbox.
#
# A script is a plain Python module exposing one or more entry points:
#
#   async def main(page, context, stagehand): ...
#
# The sandbox loads the module from its path under a run-specific name
# (its folder importable while the run lasts), looks up the requested export
# and calls it with explicit dependencies:
# the instrumented page, the driver's browser context and the driver object
# whose `.page` is the instrumented page. Nothing is injected globally.
#
# One run at a time: a trigger while a run is active is rejected.

import asyncio
import importlib.util
import inspect
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from flyspace import display
from flyspace.bus import CommandBus, RunTriggered
from flyspace.errors import RunInProgressError, ScriptLoadError
from flyspace.interceptor import InstrumentedPage, InstrumentedStagehand
from flyspace.models import Run
from flyspace.registry import Registry

BLANK_URL = "about:blank"


@contextmanager
def script_imports(path: Path, module_name: str) -> Iterator[None]:
    """
    Import environment for one run of the script at `path`.

    The script's folder goes on sys.path so it can import its neighbours, and
    the script itself is importable as `module_name` (dataclasses and pydantic
    look classes up through sys.modules). Everything loaded from the folder
    is dropped again afterwards, so the next run sees fresh code.
    """
    root = path.resolve().parent
    folder = str(root)
    added = folder not in sys.path
    if added:
        sys.path.insert(0, folder)
    before = set(sys.modules)
    try:
        yield
    finally:
        if added and folder in sys.path:
            sys.path.remove(folder)
        sys.modules.pop(module_name, None)
        for name in set(sys.modules) - before:
            origin = getattr(sys.modules.get(name), "__file__", None)
            if origin and Path(origin).resolve().is_relative_to(root):
                sys.modules.pop(name, None)


def load_entry_point(path: Path, export_name: str, module_name: str) -> Callable[..., Any]:
    """
    Execute the module at `path` as `module_name` and return its
    `export_name` attribute. Use inside script_imports() so the module is
    unregistered when the run ends.
    """
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ScriptLoadError(f"{path} is not a loadable Python module")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)

    entry = getattr(module, export_name, None)
    if entry is None or not callable(entry):
        raise ScriptLoadError(f"{path} has no callable export {export_name!r}")
    return entry


class ScriptSandbox:
    """
    Executes triggered scripts against the instrumented driver.

    Example:
        sandbox = ScriptSandbox(registry, bus, stagehand)
        run = await sandbox.run("scripts/hn.py", "main")
        assert run.status == "completed"
    """

    def __init__(self, registry: Registry, bus: CommandBus, stagehand: Any) -> None:
        self._registry = registry
        self._bus = bus
        self._stagehand = stagehand
        self._active: asyncio.Task | None = None
        self._detach = bus.on(RunTriggered, self._on_trigger)

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.done()

    def close(self) -> None:
        self._detach()

    def _on_trigger(self, event: RunTriggered) -> None:
        self.trigger(event.file, event.export_name)

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger(self, file: str, export_name: str) -> str:
        """
        Start a run in the background and return its id.

        Raises RunInProgressError or ScriptLoadError before any run is
        recorded; once a run exists it always ends completed or crashed.
        """
        if self.busy:
            display.trigger_rejected(file, "another run is still in progress")
            raise RunInProgressError(f"Run {self._registry.current_run_id} is still in progress")

        path = Path(file).resolve()
        try:
            code = path.read_text(encoding="utf-8")
        except OSError as exc:
            display.trigger_rejected(file, str(exc))
            raise ScriptLoadError(f"Cannot read script {path}: {exc}") from exc

        run_id = self._registry.new_run(str(path), code)
        display.run_started(run_id, str(path), export_name)
        self._active = asyncio.get_running_loop().create_task(
            self._execute(run_id, path, export_name),
            name=f"flyspace-run-{run_id}",
        )
        return run_id

    async def run(self, file: str, export_name: str) -> Run:
        """Trigger a run and wait until it settles."""
        run_id = self.trigger(file, export_name)
        await self._active
        return self._registry.get_run(run_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, run_id: str, path: Path, export_name: str) -> None:
        page = InstrumentedPage(self._stagehand.page, registry=self._registry, bus=self._bus, run_id=run_id)
        module_name = f"flyspace_script_{run_id.replace('-', '_')}"
        try:
            with script_imports(path, module_name):
                entry = load_entry_point(path, export_name, module_name)
                outcome = entry(
                    page=page,
                    context=self._stagehand.context,
                    stagehand=InstrumentedStagehand(self._stagehand, page),
                )
                if inspect.isawaitable(outcome):
                    await outcome
        except asyncio.CancelledError as exc:
            self._registry.complete_run(run_id, "crashed")
            display.run_crashed(run_id, exc)
            raise
        except (Exception, SystemExit) as exc:
            # sys.exit() in a script ends the run, not the server.
            self._registry.complete_run(run_id, "crashed")
            display.run_crashed(run_id, exc)
            return
        finally:
            page.release()

        self._registry.complete_run(run_id)
        display.run_completed(run_id)
        await self._reset_page()

    async def _reset_page(self) -> None:
        try:
            await self._stagehand.page.goto(BLANK_URL)
        except Exception as exc:
            display.capability_failed("goto", exc)
