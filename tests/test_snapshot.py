import json

from flyspace.registry import Registry
from flyspace.snapshot import dump_snapshot, load_snapshot, mark_interrupted, merge_snapshots


def _busy_registry(registry):
    """One finished run and one run stuck waiting on an extract step."""
    done = registry.new_run("done.py", "")
    registry.new_goto_step("https://example.com", done)
    registry.complete_run(done)

    live = registry.new_run("live.py", "")
    goto_id = registry.new_goto_step("https://news.ycombinator.com", live)
    step_id, eval_id = registry.new_llm_step("extract", "find the title", live)
    registry.complete_eval(eval_id, '{"title": "HN"}')
    registry.update_llm_step(step_id, "idle")
    replay_id = registry.new_eval(step_id, live, "find the subtitle")
    return done, live, goto_id, step_id, replay_id


def test_dump_uses_camel_case_wire_names(registry):
    _busy_registry(registry)
    payload = json.loads(dump_snapshot(registry.snapshot()))

    assert set(payload) == {"currentRunId", "currentStepId", "currentEvalId", "runs", "steps", "evals"}
    step = payload["steps"][payload["currentStepId"]]
    assert step["originalEvalId"] and step["runId"]
    run = next(iter(payload["runs"].values()))
    assert "startedAt" in run and "completedAt" in run


def test_dump_then_load_preserves_step_variants(registry):
    _busy_registry(registry)
    state = registry.snapshot()
    loaded = load_snapshot(dump_snapshot(state))

    assert loaded.model_dump() == state.model_dump()
    assert {s.type for s in loaded.steps.values()} == {"goto", "extract"}


def test_mark_interrupted_leaves_nothing_running_or_idle(registry):
    done, live, goto_id, step_id, replay_id = _busy_registry(registry)
    state = mark_interrupted(load_snapshot(dump_snapshot(registry.snapshot())))

    for group in (state.runs, state.steps, state.evals):
        assert all(entity.status in {"completed", "crashed"} for entity in group.values())

    assert state.runs[done].status == "completed"
    assert state.runs[live].status == "crashed"
    assert state.steps[goto_id].status == "crashed"
    assert state.steps[step_id].status == "crashed"
    assert state.evals[replay_id].status == "crashed"
    assert state.evals[state.steps[step_id].original_eval_id].status == "completed"


def test_mark_interrupted_does_not_touch_the_input(registry):
    _, live, *_ = _busy_registry(registry)
    state = registry.snapshot()
    mark_interrupted(state)
    assert state.runs[live].status == "running"


def test_merge_keeps_history_and_prefers_current(registry, bus):
    done, live, *_ = _busy_registry(registry)
    history = mark_interrupted(registry.snapshot())

    fresh = Registry(bus)
    new_run = fresh.new_run("again.py", "")
    merged = merge_snapshots(history, fresh.snapshot())

    assert set(merged.runs) == {done, live, new_run}
    assert merged.runs[live].status == "crashed"
    assert merged.runs[new_run].status == "running"
    assert merged.current_run_id == new_run
    assert merged.current_step_id is None
