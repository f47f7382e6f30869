"""Main Typer application — imports and registers all CLI commands.

Entry point: ``venvforge`` (configured via pyproject.toml project.scripts).

Global options override the storage paths of ``InstallerConfig`` for one
invocation; everything else comes from VENVFORGE_* environment variables.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from venvforge import __version__
from venvforge.cli.commands.history import history_cmd
from venvforge.cli.commands.install import install_cmd
from venvforge.cli.commands.plan import plan_cmd
from venvforge.cli.commands.status import status_cmd
from venvforge.cli.commands.uninstall import uninstall_cmd
from venvforge.config import config

app = typer.Typer(
    name="venvforge",
    help="venvforge: install packages into isolated, verified environments.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="install", help="Install a manifest and verify its entry point.")(install_cmd)
app.command(name="plan", help="Show the install order for a manifest.")(plan_cmd)
app.command(name="status", help="Show an environment's install record.")(status_cmd)
app.command(name="uninstall", help="Remove an environment and its links.")(uninstall_cmd)
app.command(name="history", help="Show the Install Ledger for a package.")(history_cmd)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"venvforge {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    envs_root: Optional[Path] = typer.Option(
        None, "--envs-root", help="Directory holding one environment per package."
    ),
    link_dir: Optional[Path] = typer.Option(
        None, "--link-dir", help="Shared directory for entry-point links."
    ),
    cache_dir: Optional[Path] = typer.Option(
        None, "--cache-dir", help="Content-addressed archive cache."
    ),
    staging_dir: Optional[Path] = typer.Option(
        None, "--staging-dir", help="Per-hash extraction directory."
    ),
    ledger: Optional[Path] = typer.Option(
        None, "--ledger", "-l", help="Path to the Install Ledger SQLite database."
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (default: VENVFORGE_LOG_LEVEL or INFO)."
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the venvforge version and exit.",
    ),
) -> None:
    overrides = {
        key: value
        for key, value in {
            "environments_root": envs_root,
            "link_dir": link_dir,
            "cache_dir": cache_dir,
            "staging_dir": staging_dir,
            "ledger_path": ledger,
            "log_level": log_level,
        }.items()
        if value is not None
    }
    settings = config.model_copy(update=overrides)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=settings.debug)],
        force=True,
    )
    ctx.obj = settings


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
