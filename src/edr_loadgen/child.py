"""Self-spawn signaling.

Imported by `__main__` before anything else, so a spawned child can exit
without loading the rest of the package. Keep this module stdlib-only.
"""

import os
import sys
from collections.abc import Mapping

# Set in the environment of self-spawned children
CHILD_ENV_VAR = "EDR_LOADGEN_CHILD"


def is_spawned_child(environ: Mapping[str, str] | None = None) -> bool:
    """Return True if this process was started by a self-spawning run."""
    environ = os.environ if environ is None else environ
    return bool(environ.get(CHILD_ENV_VAR))


def exit_if_spawned_child() -> None:
    """Exit immediately with status 0 when running as a self-spawned child."""
    if is_spawned_child():
        raise SystemExit(0)


def self_command() -> tuple[str, ...]:
    """Command line that re-invokes this tool."""
    return (sys.executable, "-m", "edr_loadgen")
