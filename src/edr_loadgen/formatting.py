"""Formatting utilities for consistent output across console, CLI and report."""


def format_seconds(seconds: float) -> str:
    """Format CPU seconds with two decimals."""
    return f"{seconds:.2f}"


def format_percent(percent: float) -> str:
    """Format a percentage with three decimals."""
    return f"{percent:.3f}"


def format_ticks(ticks: float) -> str:
    """Format an intended tick count with two decimals."""
    return f"{ticks:.2f}"


def truncate_command(command: str, length: int = 28) -> str:
    """Shorten a command line for display.

    Args:
        command: Full command line
        length: Maximum characters to keep before the ".." marker

    Returns:
        The command unchanged if it fits, otherwise its first `length`
        characters followed by "..".
    """
    return command[:length] + ".." if len(command) > length else command
