"""Rich terminal renderer for install plans, results, status and history.

Color scheme
------------
- green     : verified
- red       : failed
- yellow    : in progress (provisioned .. linked)
- dim       : pending
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from venvforge.core.errors import InstallError
from venvforge.models.ledger import LedgerEntry
from venvforge.models.manifest import PackageManifest
from venvforge.models.packages import InstallPlan
from venvforge.models.results import EnvironmentStatus, InstallResult

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[str, str] = {
    "pending": "dim",
    "provisioned": "yellow",
    "fetched": "yellow",
    "resolved": "yellow",
    "linked": "yellow",
    "verified": "bold green",
    "failed": "bold red",
    "uninstalled": "magenta",
}


def _styled_state(state: str) -> str:
    style = _STATE_STYLES.get(state, "")
    if not style:
        return state or "[dim]-[/dim]"
    return f"[{style}]{state}[/{style}]"


class InstallRenderer:
    """Renders venvforge models as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def print_error(self, exc: InstallError) -> None:
        lines = [f"[bold red]{type(exc).__name__}[/bold red]: {exc.message}", ""]
        if exc.package:
            lines.append(f"[bold]Package:[/bold]   {exc.package}")
        if exc.stage:
            lines.append(f"[bold]Stage:[/bold]     {exc.stage}")
        if exc.content_hash:
            lines.append(f"[bold]Hash:[/bold]      {exc.content_hash}")
        for key, value in exc.details.items():
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value) or "-"
            lines.append(f"[dim]{key}:[/dim] {value}")
        lines.append("")
        lines.append(f"[dim]exit code {exc.exit_code}[/dim]")
        self.console.print(
            Panel(
                "\n".join(lines),
                title="[bold red]Installation failed[/bold red]",
                border_style="red",
                padding=(1, 2),
            )
        )

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    def render_plan(self, manifest: PackageManifest, plan: InstallPlan) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=4, justify="right")
        table.add_column("Package", min_width=20)
        table.add_column("Version")
        table.add_column("SHA-256", style="dim")
        table.add_column("Depends on")

        for i, package in enumerate(plan.order, start=1):
            name = f"[bold]{package.name}[/bold]" if package.is_root else package.name
            deps = ", ".join(plan.dependencies_of(package.name)) or "[dim]-[/dim]"
            table.add_row(str(i), name, package.version, package.content_hash[:12], deps)

        header: list[str] = [f"[bold]{manifest.canonical_name}[/bold] {manifest.version}"]
        if manifest.description:
            header.append(manifest.description)
        meta = [
            f"{label}: {value}"
            for label, value in (("homepage", manifest.homepage), ("license", manifest.license))
            if value
        ]
        if meta:
            header.append(f"[dim]{'  |  '.join(meta)}[/dim]")

        return Panel(
            Group(Text.from_markup("\n".join(header)), Text(""), table),
            title="[bold]Install plan[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # Result and status
    # ------------------------------------------------------------------

    def render_result(self, result: InstallResult) -> Panel:
        lines = [
            f"[bold green]{result.package} {result.version} installed and verified[/bold green]",
            "",
            f"[bold]Attempt:[/bold]      {result.attempt_id}",
            f"[bold]Environment:[/bold]  {result.environment_root}",
            f"[bold]Fetched:[/bold]      {', '.join(result.fetched) or '-'}",
            f"[bold]Installed:[/bold]    {', '.join(result.installed) or '-'}",
            f"[bold]Skipped:[/bold]      {', '.join(result.skipped) or '-'}",
        ]
        for link in result.links:
            lines.append(f"[bold]Link:[/bold]         {link.link_path} -> {link.target}")
        if result.verification is not None:
            lines.append(
                f"[dim]{' '.join(result.verification.command)}: "
                f"{result.verification.stdout.strip()}[/dim]"
            )
        return Panel(
            "\n".join(lines),
            title="[bold]venvforge[/bold]",
            border_style="green",
            padding=(1, 2),
        )

    def render_status(self, status: EnvironmentStatus) -> Panel:
        lines = [
            f"[bold]Package:[/bold]      {status.package}",
            f"[bold]Environment:[/bold]  {status.environment_root}",
            f"[bold]Provisioned:[/bold]  {'yes' if status.provisioned else 'no'}",
        ]
        if status.interpreter:
            lines.append(f"[bold]Interpreter:[/bold]  {status.interpreter}")
        if status.last_attempt_id:
            state = _styled_state(status.last_state)
            if status.last_failure_kind:
                state += f" [red]({status.last_failure_kind})[/red]"
            lines.append(f"[bold]Last attempt:[/bold] {status.last_attempt_id}  {state}")

        renderables: list = [Text.from_markup("\n".join(lines))]
        if status.record is not None:
            table = Table(show_header=True, header_style="bold cyan", expand=True)
            table.add_column("Package")
            table.add_column("Version")
            table.add_column("SHA-256", style="dim")
            table.add_column("Installed at", style="dim")
            for pkg in status.record.packages.values():
                table.add_row(
                    pkg.name,
                    pkg.version,
                    pkg.content_hash[:12],
                    pkg.installed_at.strftime("%Y-%m-%d %H:%M:%S"),
                )
            renderables.extend([Text(""), table])

            for link in status.record.links.values():
                mark = "[green]verified[/green]" if link.verified else "[yellow]unverified[/yellow]"
                renderables.append(
                    Text.from_markup(f"[bold]Link:[/bold] {link.link_path} -> {link.target}  {mark}")
                )

        border = "green" if status.verified else ("red" if status.last_failure_kind else "blue")
        return Panel(
            Group(*renderables),
            title="[bold]Environment status[/bold]",
            border_style=border,
            padding=(1, 2),
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def render_history(self, package: str, entries: list[LedgerEntry]) -> Table:
        table = Table(
            title=f"Install history: {package}",
            show_header=True,
            header_style="bold cyan",
            expand=True,
        )
        table.add_column("Time (UTC)", style="dim")
        table.add_column("Attempt")
        table.add_column("Version")
        table.add_column("Transition")
        table.add_column("Failure")
        table.add_column("Hash", style="dim")

        for entry in entries:
            previous, _, target = entry.state_transition.partition("->")
            table.add_row(
                entry.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
                entry.attempt_id,
                entry.version or "-",
                f"{previous} -> {_styled_state(target)}",
                f"[red]{entry.failure_kind}[/red]" if entry.failure_kind else "",
                entry.entry_hash[:12],
            )
        return table
