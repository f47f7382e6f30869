"""``venvforge install MANIFEST`` — install a manifest end to end.

Runs one install attempt: prerequisites, plan, provision, fetch, resolve,
link and verify. Exits 0 only when the attempt reaches ``verified``;
every installer error maps to its own exit code.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from venvforge.cli.renderer import InstallRenderer
from venvforge.config import InstallerConfig
from venvforge.core.errors import InstallError
from venvforge.core.installer import Installer, load_manifest

console = Console()


def install_cmd(
    ctx: typer.Context,
    manifest_path: Path = typer.Argument(
        ...,
        metavar="MANIFEST",
        help="Path to the JSON package manifest.",
    ),
    with_deps: bool = typer.Option(
        False,
        "--with-deps",
        help="Let pip install each package's own dependencies too.",
    ),
    verbose_pip: bool = typer.Option(
        False,
        "--verbose-pip",
        help="Pass --verbose to pip (same as VENVFORGE_DEBUG=true).",
    ),
) -> None:
    """Install a package manifest into its own environment.

    Re-running against an unchanged manifest is a no-op that re-verifies.
    """
    settings: InstallerConfig = ctx.obj
    updates: dict[str, bool] = {}
    if with_deps:
        updates["pip_no_deps"] = False
    if verbose_pip:
        updates["debug"] = True
    if updates:
        settings = settings.model_copy(update=updates)

    renderer = InstallRenderer(console=console)
    try:
        manifest = load_manifest(manifest_path)
        result = Installer(settings).install(manifest)
    except InstallError as exc:
        renderer.print_error(exc)
        raise typer.Exit(code=exc.exit_code)

    console.print()
    console.print(renderer.render_result(result))
    console.print()
