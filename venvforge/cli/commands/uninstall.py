"""``venvforge uninstall NAME`` — remove an environment and its links.

Only links that point into the package's own environment are removed.
The uninstall is journaled in the Install Ledger.
"""

from __future__ import annotations

import typer
from packaging.utils import canonicalize_name
from rich.console import Console

from venvforge.cli.renderer import InstallRenderer
from venvforge.config import InstallerConfig
from venvforge.core.errors import InstallError
from venvforge.core.installer import Installer

console = Console()


def uninstall_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
) -> None:
    """Unlink and tear down a package's environment."""
    settings: InstallerConfig = ctx.obj
    package = canonicalize_name(name)
    try:
        removed = Installer(settings).uninstall(package)
    except InstallError as exc:
        InstallRenderer(console=console).print_error(exc)
        raise typer.Exit(code=exc.exit_code)

    for link_path in removed:
        console.print(f"[dim]removed link[/dim] {link_path}")
    console.print(f"[bold green]Uninstalled[/bold green] {package}")
