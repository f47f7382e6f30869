"""``venvforge status NAME`` — show one package's environment.

Displays the install record (packages and links, with links that have not
passed verification marked unverified) and the state of the latest
install attempt from the Install Ledger.
"""

from __future__ import annotations

import typer
from packaging.utils import canonicalize_name
from rich.console import Console

from venvforge.cli.renderer import InstallRenderer
from venvforge.config import InstallerConfig
from venvforge.core.installer import Installer

console = Console()


def status_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
) -> None:
    """Show the environment and install record for a package.

    Exits 1 when the package has never been installed.
    """
    settings: InstallerConfig = ctx.obj
    status = Installer(settings).status(canonicalize_name(name))

    if not status.provisioned and not status.last_attempt_id:
        console.print(f"[bold red]Not installed:[/bold red] {name}")
        raise typer.Exit(code=1)

    console.print()
    console.print(InstallRenderer(console=console).render_status(status))
    console.print()
