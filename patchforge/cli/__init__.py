"""patchforge CLI — Typer-based command-line interface.

Provides the ``patchforge`` command with subcommands to build, verify,
fetch pins, render the override config and inspect run history.

All output uses Rich for formatted terminal display.
"""
