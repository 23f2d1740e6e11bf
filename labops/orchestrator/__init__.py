from .run import (
    DEFAULT_CHECKPOINT_INTERVAL_MS,
    InterruptFlag,
    RunAborted,
    RunExecutor,
    RunOptions,
    RunOutcome,
    execute_run,
    make_run_id,
    resolve_device_selection,
    validate_scenario_path,
)

__all__ = [
    "DEFAULT_CHECKPOINT_INTERVAL_MS",
    "InterruptFlag",
    "RunAborted",
    "RunExecutor",
    "RunOptions",
    "RunOutcome",
    "execute_run",
    "make_run_id",
    "resolve_device_selection",
    "validate_scenario_path",
]
