"""``venvforge plan MANIFEST`` — show the install order without installing.

Validates the manifest and its dependency graph (conflicts, constraints,
missing names, cycles) and prints the topological install order.
Nothing is provisioned, fetched or written.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from venvforge.cli.renderer import InstallRenderer
from venvforge.core.errors import InstallError
from venvforge.core.install_steps import PipInstallStep
from venvforge.core.installer import load_manifest
from venvforge.core.resolver import DependencyResolver

console = Console()


def plan_cmd(
    manifest_path: Path = typer.Argument(
        ...,
        metavar="MANIFEST",
        help="Path to the JSON package manifest.",
    ),
) -> None:
    """Print the validated install plan for a manifest."""
    renderer = InstallRenderer(console=console)
    try:
        manifest = load_manifest(manifest_path)
        plan = DependencyResolver(PipInstallStep()).plan(manifest)
    except InstallError as exc:
        renderer.print_error(exc)
        raise typer.Exit(code=exc.exit_code)

    console.print()
    console.print(renderer.render_plan(manifest, plan))
    console.print()
