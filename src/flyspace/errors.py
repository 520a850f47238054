# errors.py
# Exception taxonomy for the run engine.
#
# Script failures are not a class of their own: the sandbox catches any
# Exception escaping a script and records the run as crashed.


class InvalidArgumentError(ValueError):
    """Raised when a capability call carries no usable instruction. No state is recorded."""


class InvariantViolation(Exception):
    """Raised when a registry operation references an unknown id or the wrong step type. Always fatal."""


class ScriptLoadError(Exception):
    """Raised when a script file or its requested export cannot be loaded."""


class RunInProgressError(Exception):
    """Raised when a run is triggered while another run is still executing."""


class NoPendingStepError(Exception):
    """Raised when a replay/advance command arrives and no step is awaiting operator input."""
