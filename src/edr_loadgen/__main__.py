"""Entry point for `python -m edr_loadgen`."""

from edr_loadgen.child import exit_if_spawned_child

exit_if_spawned_child()

from edr_loadgen.cli import main  # noqa: E402

main()
