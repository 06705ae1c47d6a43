"""agkit CLI - Sync Antigravity kits into a global store or workspace."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from agkit import __version__
from agkit.config import ConfigError, LogLevel, SyncContext, resolve_context

app = typer.Typer(
    name="agkit",
    help="Antigravity unified CLI manager for kits and rules.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


LOG_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def _configure_logging(level: int) -> None:
    logger = logging.getLogger("agkit")
    logger.handlers = [
        RichHandler(console=err_console, show_time=False, show_path=False),
    ]
    logger.setLevel(level)
    logger.propagate = False


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"agkit {__version__}")
        raise typer.Exit()


def _context(ctx: typer.Context) -> SyncContext:
    return ctx.obj


def _format_timestamp(value: str) -> str:
    if not value:
        return "-"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.astimezone().strftime("%Y-%m-%d %H:%M:%S")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show debug logging",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """Antigravity unified CLI manager for kits and rules."""
    try:
        context = resolve_context()
    except ConfigError as e:
        err_console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)

    level = logging.DEBUG if verbose else LOG_LEVELS[context.config.log_level]
    _configure_logging(level)
    ctx.obj = context


# =============================================================================
# Kit Commands
# =============================================================================


@app.command()
def sync(
    ctx: typer.Context,
    source: Optional[str] = typer.Argument(
        None,
        help="Repository source (e.g. github:user/repo)",
    ),
    all_kits: bool = typer.Option(
        False,
        "--all",
        help="Sync all default kits",
    ),
    local: bool = typer.Option(
        False,
        "--local",
        help="Sync into ./.agent instead of the global store",
    ),
) -> None:
    """Sync Antigravity kits from GitHub to global or local storage.

    Kits are downloaded one at a time and merged into the target. A kit that
    fails to download or merge is reported and the others continue. After
    syncing, the canonical rules are enforced and the skills index rebuilt.

    Example:

    \b
        agkit sync github:user/my-kit
        agkit sync --all
        agkit sync gh:user/my-kit#v2 --local
    """
    from agkit.errors import UsageError
    from agkit.kits import select_sources, sync_kits
    from agkit.registry import RegistryError

    context = _context(ctx)

    console.print(Panel(
        "[bold]agkit[/bold]\nMulti-Kit Antigravity Manager",
        border_style="blue",
        expand=False,
    ))

    try:
        sources = select_sources(source, all_kits, context.config)
    except UsageError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    def show_result(result) -> None:
        if result.ok:
            console.print(f"[green]✓ Synced kit:[/green] [cyan]{result.source}[/cyan]")
            if result.merge and result.merge.skipped:
                console.print(f"  [dim]{len(result.merge.skipped)} file(s) could not be copied[/dim]")
        else:
            console.print(f"[red]✗ Failed to sync {result.source}:[/red] {result.error}")

    try:
        with console.status("[bold green]Syncing kits...") as status:
            report = sync_kits(
                context,
                sources,
                local=local,
                on_result=show_result,
                progress=lambda message: status.update(f"[bold green]{message}"),
            )
    except RegistryError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if report.rules and report.rules.applied:
        console.print("[green]✓ Golden Rules (GEMINI.md) enforced.[/green]")
    elif report.rules:
        console.print(f"[yellow]⚠ Rules not enforced:[/yellow] {report.rules.error or report.rules.reason}")

    if report.index and report.index.index_file:
        console.print(f"[green]✓ Generated skills index with {len(report.index.skills)} skills.[/green]")
    elif report.index and report.index.warning:
        console.print(f"[yellow]! {report.index.warning}[/yellow]")

    console.print()
    mode = "(Local Mode)" if local else "(Global Mode)"
    console.print(f"[green]Sync complete! {mode}[/green]")
    console.print(f"[dim]Target: {report.target_dir}[/dim]")
    if report.failed:
        console.print(f"[dim]{len(report.failed)} of {len(report.results)} kit(s) failed[/dim]")


@app.command()
def link(ctx: typer.Context) -> None:
    """Create a symbolic link from the global store to the current workspace.

    The canonical rules are enforced on the global store first. An existing
    link is replaced; a real .agent folder is left alone.

    Example:

    \b
        agkit link
    """
    from agkit.kits import link_workspace
    from agkit.linker import LinkError, StoreMissingError

    context = _context(ctx)

    try:
        with console.status(f"[bold green]Linking global agent to {context.cwd}..."):
            result = link_workspace(context)
    except StoreMissingError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    except LinkError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if result.replaced:
        console.print("[dim]Replaced existing link[/dim]")
    console.print(f"[green]✓ Linked global agent to workspace:[/green] [cyan]{result.link}[/cyan]")


@app.command()
def status(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON",
    ),
) -> None:
    """Show information about synced kits and global storage.

    Example:

    \b
        agkit status
        agkit status --json
    """
    from agkit.kits import get_status
    from agkit.registry import RegistryError

    context = _context(ctx)

    try:
        report = get_status(context)
    except RegistryError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    if json_output:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return

    if not report.initialized:
        console.print("[yellow]Antigravity is not initialized.[/yellow] Run [cyan]agkit sync --all[/cyan] to start.")
        return

    console.print()
    console.print("[bold blue]--- Antigravity Status ---[/bold blue]")
    console.print(f"Global Store: [cyan]{report.store_dir}[/cyan]")
    console.print(f"Kits Synced: {len(report.kits)}")

    if not report.kits:
        return

    console.print()
    table = Table(show_header=True, header_style="bold")
    table.add_column("Kit", style="cyan")
    table.add_column("Source")
    table.add_column("Files", justify="right")
    table.add_column("Updated", style="dim")

    for kit in report.kits:
        table.add_row(kit.kit_id, kit.source, str(kit.file_count), _format_timestamp(kit.last_updated))

    console.print(table)


@app.command()
def enforce(ctx: typer.Context) -> None:
    """Force apply the master GEMINI.md rules to the workspace or global store.

    Uses ./.agent when it exists, otherwise the global store.
    """
    from agkit.kits import enforce_workspace

    context = _context(ctx)

    with console.status("[bold green]Enforcing Golden Rules..."):
        result = enforce_workspace(context)

    if result.applied:
        console.print(f"[green]✓ Enforcement complete:[/green] {result.target_file}")
    elif result.error:
        console.print(f"[red]Error enforcing Golden Rules:[/red] {result.error}")
    else:
        console.print(f"[yellow]⚠ Nothing enforced:[/yellow] {result.reason}")


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the resolved configuration and any problems with it."""
    from agkit.config import get_project_config_path, get_user_config_path, validate_config

    context = _context(ctx)

    table = Table(title="agkit Configuration", show_header=True, header_style="bold")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Global store", str(context.store_dir))
    table.add_row("Local folder", str(context.local_agent_dir))
    table.add_row("Rules asset", str(context.rules_asset))
    table.add_row("Fetch timeout", f"{context.config.fetch_timeout:g}s")
    table.add_row("Keep downloads", str(context.config.keep_downloads))
    table.add_row("Log level", context.config.log_level.value)
    table.add_row("Default kits", "\n".join(context.config.default_kits) or "-")
    console.print(table)

    console.print(f"[dim]User config: {get_user_config_path(context.home)}[/dim]")
    console.print(f"[dim]Project config: {get_project_config_path(context.cwd)}[/dim]")

    problems = validate_config(context)
    if problems:
        console.print()
        for problem in problems:
            console.print(f"[yellow]⚠[/yellow] {problem}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
