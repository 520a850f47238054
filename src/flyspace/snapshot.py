# snapshot.py
# Client-side handling of registry snapshots.
#
# The registry lives only as long as its process. Clients cache snapshots and
# merge every new one into their history; after a restart, anything the dead
# process left running or idle can never finish and is shown as crashed.

from flyspace.models import RegistryState

NON_TERMINAL_STATUSES = frozenset({"running", "idle"})


def dump_snapshot(state: RegistryState) -> str:
    return state.model_dump_json(by_alias=True)


def load_snapshot(text: str) -> RegistryState:
    return RegistryState.model_validate_json(text)


def _crash_unfinished(entities: dict) -> dict:
    return {
        entity_id: (
            entity.model_copy(update={"status": "crashed"})
            if entity.status in NON_TERMINAL_STATUSES
            else entity
        )
        for entity_id, entity in entities.items()
    }


def mark_interrupted(state: RegistryState) -> RegistryState:
    """Return a copy where every running/idle run, step and eval is crashed."""
    return state.model_copy(
        update={
            "runs": _crash_unfinished(state.runs),
            "steps": _crash_unfinished(state.steps),
            "evals": _crash_unfinished(state.evals),
        }
    )


def merge_snapshots(previous: RegistryState, current: RegistryState) -> RegistryState:
    """
    Merge a fresh snapshot into cached history.

    Entities present in both take the current version; entities only in the
    history are kept. The cursor always comes from `current`.
    """
    return current.model_copy(
        update={
            "runs": {**previous.runs, **current.runs},
            "steps": {**previous.steps, **current.steps},
            "evals": {**previous.evals, **current.evals},
        }
    )
