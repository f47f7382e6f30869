"""``venvforge history NAME`` — show the Install Ledger for a package.

Every state transition of every attempt, oldest first. With
``--verify-chain`` the hash chain of each attempt is checked first.
"""

from __future__ import annotations

import typer
from packaging.utils import canonicalize_name
from rich.console import Console

from venvforge.cli.renderer import InstallRenderer
from venvforge.config import InstallerConfig
from venvforge.core.install_ledger import LedgerIntegrityError
from venvforge.core.installer import Installer

console = Console()


def history_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Package name."),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the hash chain integrity before displaying.",
    ),
) -> None:
    """Show every recorded install attempt for a package."""
    settings: InstallerConfig = ctx.obj
    package = canonicalize_name(name)
    installer = Installer(settings)

    if verify_chain:
        try:
            attempts = installer.verify_history(package)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Hash chain BROKEN:[/bold red] {exc}")
            raise typer.Exit(code=1)
        console.print(f"[green]Hash chain valid for {len(attempts)} attempt(s).[/green]")

    entries = installer.history(package)
    if not entries:
        console.print(f"[dim]No history for {package}.[/dim]")
        return

    console.print(InstallRenderer(console=console).render_history(package, entries))
