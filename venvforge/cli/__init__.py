"""venvforge CLI — Typer-based command-line interface.

Provides the ``venvforge`` command with subcommands for installing a
manifest, previewing its install plan, inspecting and uninstalling an
environment, and reading the Install Ledger.

All output uses Rich for formatted terminal display.
"""
