"""CLI for relative-deps."""

import logging
import threading
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from .config import InstallOptions
from .constants import DEFAULT_SCRIPT, VERSION
from .core import install_relative_deps
from .errors import InstallFailedError, RelativeDepsError
from .monitor import watch_relative_deps
from .project import add_relative_deps, init_relative_deps
from .scheduler import RunResult, TaskOutcome, TaskStatus
from .utils import humanize_duration


app = typer.Typer(help="""\
Install local libraries declared under relativeDependencies in package.json
into node_modules, rebuilding only the ones that changed.""")

console = Console()
err_console = Console(stderr=True)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
        force=True,
    )


class ConsoleProgress:
    """Per-dependency progress lines on the console."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def on_task_start(self, name: str, lib_dir: Path) -> None:
        console.print(f"[dim]Checking '{name}' in '{lib_dir}'[/dim]")

    def on_task_complete(self, outcome: TaskOutcome) -> None:
        if outcome.status == TaskStatus.REBUILT:
            console.print(f"[green]✓[/green] Re-installing {outcome.name}... DONE [dim]({outcome.message})[/dim]")
        elif outcome.status == TaskStatus.UNCHANGED:
            if self.verbose:
                console.print(f"[dim]No changes detected for {outcome.name}[/dim]")
        elif outcome.status == TaskStatus.SKIPPED:
            console.print(f"[yellow]![/yellow] {outcome.name}: {outcome.message}")
        else:
            console.print(f"[red]✗[/red] {outcome.name}: {outcome.message}")


def _print_summary(result: RunResult, elapsed: Optional[float] = None) -> None:
    parts = [f"{len(result.rebuilt)} re-installed", f"{len(result.unchanged)} unchanged"]
    if result.skipped:
        parts.append(f"{len(result.skipped)} skipped")
    if result.failed:
        parts.append(f"[red]{len(result.failed)} failed[/red]")
    if result.not_started:
        parts.append(f"{len(result.not_started)} not started")
    suffix = f" in {humanize_duration(elapsed)}" if elapsed is not None else ""
    console.print(f"[bold]relative-deps:[/bold] {', '.join(parts)}{suffix}")


def _run_install(options: InstallOptions) -> None:
    """Run one install and map failures to exit code 1."""
    started = time.monotonic()
    try:
        result = install_relative_deps(options, progress=ConsoleProgress(options.verbose))
    except InstallFailedError as e:
        if e.result is not None:
            _print_summary(e.result)
        err_console.print("[red]✗[/red] Failed to process: " + ", ".join(e.failures))
        raise typer.Exit(1)
    except RelativeDepsError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if result.outcomes:
        _print_summary(result, time.monotonic() - started)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"relative-deps {VERSION}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Force update all relative dependencies, ignoring cache"),
    clean: bool = typer.Option(False, "--clean", "-c", help="Clean all caches before installing"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show detailed output"),
    parallel: bool = typer.Option(False, "--parallel", help="Process independent dependencies concurrently"),
    max_concurrency: Optional[int] = typer.Option(
        None, "--max-concurrency", "-j", min=1, help="Maximum dependencies processed at once (default: 1)"
    ),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """Install relative deps (default command).

    Examples:
        relative-deps                          # Re-install changed libraries
        relative-deps --force                  # Re-install everything
        relative-deps --parallel -j 3          # Up to 3 libraries at once
    """
    _configure_logging(verbose)
    options = InstallOptions(
        force=force, clean=clean, verbose=verbose, max_concurrency=max_concurrency, parallel=parallel
    )
    ctx.obj = options

    if ctx.invoked_subcommand is None:
        _run_install(options)


def _wait_for_interrupt() -> None:
    threading.Event().wait()


@app.command()
def watch(ctx: typer.Context):
    """Watch relative deps and install on change."""
    options: InstallOptions = ctx.obj or InstallOptions()
    try:
        _run_install(options)
    except typer.Exit:
        # Keep watching; the next change triggers another attempt
        pass

    try:
        monitor = watch_relative_deps(options=options, progress=ConsoleProgress(options.verbose))
    except RelativeDepsError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)
    if monitor is None:
        console.print("[yellow]No 'relativeDependencies' specified in package.json[/yellow]")
        return

    console.print("[green]Watching relative dependencies...[/green] [dim](Ctrl+C to stop)[/dim]")
    try:
        _wait_for_interrupt()
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping watch[/dim]")
    finally:
        monitor.stop()


@app.command()
def init(
    script: str = typer.Option(DEFAULT_SCRIPT, "--script", "-S", help="Script for relative-deps"),
):
    """Initialize relative-deps in the current project."""
    try:
        root = init_relative_deps(script=script)
    except RelativeDepsError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] relative-deps initialized in {root}")


@app.command()
def add(
    ctx: typer.Context,
    paths: Optional[List[str]] = typer.Argument(None, help="Paths of local libraries"),
    dev: bool = typer.Option(False, "--dev", "-D", "--save-dev", help="Save as dev dependency"),
    script: str = typer.Option(DEFAULT_SCRIPT, "--script", "-S", help="Script for relative-deps"),
):
    """Add paths as relative dependencies and install them."""
    options: InstallOptions = ctx.obj or InstallOptions()
    try:
        result = add_relative_deps(
            paths or [], dev=dev, script=script, options=options, progress=ConsoleProgress(options.verbose)
        )
    except InstallFailedError as e:
        err_console.print("[red]✗[/red] Failed to process: " + ", ".join(e.failures))
        raise typer.Exit(1)
    except RelativeDepsError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(1)

    if result is not None and result.outcomes:
        _print_summary(result)


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
