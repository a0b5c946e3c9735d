import logging
import threading
from pathlib import Path
from typing import Annotated

import tomli_w
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table

from pipewright._errors import ConfigError, GraphError, InvalidTargetError, NotFoundError, StorageIOError
from pipewright._invalidation import TargetState
from pipewright._pipeline import Pipeline
from pipewright._report import RunReport, TargetStatus

from .config import ModuleSource, PipelineSource, ScriptSource, get_config
from .discover import load_pipeline_from_source

app = typer.Typer()

logger = logging.getLogger(__name__)
# Console for stderr (info/errors)
err_console = Console(stderr=True)
# Console for stdout (results)
out_console = Console()

PathArgument = Annotated[
    str | None,
    typer.Argument(
        help="Path to Python script or module path (e.g., analysis:pipeline). "
        "Defaults to [tool.pipewright].pipeline in pyproject.toml",
    ),
]
PipelineOption = Annotated[
    str | None,
    typer.Option("--pipeline", help="Name of the pipeline variable (for script paths only)"),
]
TargetsOption = Annotated[
    list[str] | None,
    typer.Option("-t", "--target", help="Target name (repeat for several targets)"),
]

# Errors raised while building the dependency graph
_GRAPH_ERRORS = (GraphError, InvalidTargetError)

_STATUS_STYLES: dict[TargetStatus, str] = {
    TargetStatus.CURRENT: "[dim]current[/dim]",
    TargetStatus.BUILT: "[green]✓ built[/green]",
    TargetStatus.ERRORED: "[red]✗ errored[/red]",
    TargetStatus.ERRORED_UPSTREAM: "[red]errored upstream[/red]",
    TargetStatus.CANCELLED: "[yellow]cancelled[/yellow]",
}

_STATE_STYLES: dict[TargetState, str] = {
    TargetState.CURRENT: "[green]current[/green]",
    TargetState.OUTDATED: "[yellow]outdated[/yellow]",
    TargetState.ERRORED_PREVIOUSLY: "[red]errored previously[/red]",
}


@app.callback()
def callback(
    *,
    verbose: bool = typer.Option(default=False, help="Enable verbose output"),
) -> None:
    """Pipewright CLI."""
    log_level = logging.DEBUG if verbose else logging.INFO

    # Configure rich logging handler to output to stderr
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=err_console,
                show_time=False,
                show_path=verbose,
                rich_tracebacks=True,
            ),
        ],
    )


def _load_pipeline(path: str | None, pipeline_var: str | None) -> Pipeline:
    """Load the pipeline from the command line argument or the configuration."""
    try:
        config = get_config()
    except ConfigError as e:
        err_console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e

    source: PipelineSource
    if path is None:
        if config.pipeline is None:
            err_console.print(
                "[red]No pipeline given. Pass a script or module path, "
                "or set [tool.pipewright].pipeline in pyproject.toml.[/red]",
            )
            raise typer.Exit(code=1)
        source = config.pipeline
    elif ":" in path:
        source = ModuleSource(module_path=path)
    else:
        source = ScriptSource(script=Path(path), name=pipeline_var)

    match source:
        case ModuleSource(module_path=module_path):
            err_console.print(f"[cyan]Loading pipeline from module:[/cyan] {module_path}")
        case ScriptSource(script=script):
            err_console.print(f"[cyan]Loading pipeline from script:[/cyan] {script}")

    try:
        pipeline = load_pipeline_from_source(source)
    except ConfigError as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    pipeline.apply_config(config.settings)
    err_console.print(f"[cyan]Pipeline:[/cyan] [bold]{escape(pipeline.name)}[/bold]")
    err_console.print()
    return pipeline


def _print_report(report: RunReport) -> None:
    table = Table(show_header=True, header_style="bold cyan", box=None)
    table.add_column("Target", style="bold")
    table.add_column("Status")
    table.add_column("Time", justify="right", style="dim")
    table.add_column("Detail")

    for outcome in report.outcomes:
        status = _STATUS_STYLES[outcome.status]
        if outcome.substituted:
            status += " [yellow](default value)[/yellow]"
        detail = ""
        if outcome.error is not None:
            detail = f"[red]{escape(outcome.error)}[/red]"
        elif outcome.upstream is not None:
            detail = f"[dim]after {escape(outcome.upstream)}[/dim]"
        for warning in outcome.warnings:
            detail += f"\n[yellow]⚠ {escape(warning)}[/yellow]"
        duration = f"{outcome.duration:.2f}s" if outcome.started_at is not None else ""
        table.add_row(escape(outcome.name), status, duration, detail.strip())

    counts = report.counts()
    subtitle = ", ".join(f"{count} {status}" for status, count in counts.items() if count)
    err_console.print(Panel(table, title="[bold]Run Report[/bold]", subtitle=f"[dim]{subtitle}[/dim]", border_style="cyan"))
    err_console.print()


@app.command()
def run(
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
    targets: TargetsOption = None,
    workers: Annotated[
        int | None,
        typer.Option("-j", "--workers", min=1, help="Number of targets evaluated in parallel"),
    ] = None,
) -> None:
    """Bring the pipeline up to date, running only outdated targets."""
    err_console.print()
    pipeline = _load_pipeline(path, pipeline_var)
    if workers is not None:
        pipeline.settings = pipeline.settings.model_copy(update={"worker_concurrency": workers})

    cancel_event = threading.Event()
    try:
        report = pipeline.run(names=targets or None, cancel_event=cancel_event)
    except _GRAPH_ERRORS as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e

    _print_report(report)

    if report.cancelled:
        err_console.print("[yellow]⚠ Run cancelled[/yellow]")
        raise typer.Exit(code=1)
    if not report.success:
        err_console.print("[red]✗ Some targets errored[/red]")
        raise typer.Exit(code=1)

    err_console.print("[green]✓ Pipeline is up to date[/green]")
    err_console.print()


@app.command()
def outdated(
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
) -> None:
    """List the targets the next run would execute."""
    pipeline = _load_pipeline(path, pipeline_var)
    try:
        classification = pipeline.classify()
    except _GRAPH_ERRORS as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e

    if not classification.pending:
        err_console.print("[green]✓ All targets are current[/green]")
        return
    for name in classification.pending:
        reason = classification.reasons.get(name, "")
        out_console.print(f"{escape(name)} [dim]({escape(reason)})[/dim]")


@app.command()
def manifest(
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
    output: Annotated[
        Path | None,
        typer.Option("-o", "--output", help="Write the manifest to a TOML file"),
    ] = None,
) -> None:
    """Show every target with its dependencies, format and state."""
    pipeline = _load_pipeline(path, pipeline_var)
    try:
        entries = pipeline.manifest()
    except _GRAPH_ERRORS as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e

    if output is not None:
        data = {
            "pipeline": pipeline.name,
            "targets": {entry.name: entry.to_dict() for entry in entries},
        }
        err_console.print(f"[cyan]Writing manifest to:[/cyan] {output}")
        output.parent.mkdir(parents=True, exist_ok=True)
        with output.open("wb") as f:
            tomli_w.dump(data, f)
        err_console.print("[green]✓ Manifest written[/green]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Target", style="bold")
    table.add_column("Depends on")
    table.add_column("Format", style="dim")
    table.add_column("State")
    table.add_column("Description", style="dim")
    for entry in entries:
        table.add_row(
            escape(entry.name),
            escape(", ".join(entry.dependencies)),
            str(entry.format),
            _STATE_STYLES[entry.state],
            escape(entry.description),
        )
    out_console.print(Panel(table, title=f"[bold]Pipeline: {escape(pipeline.name)}[/bold]", border_style="cyan"))


@app.command()
def read(
    name: Annotated[str, typer.Argument(help="Target name")],
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
) -> None:
    """Print a target's stored result."""
    pipeline = _load_pipeline(path, pipeline_var)
    try:
        value = pipeline.read(name)
    except (NotFoundError, StorageIOError) as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    out_console.print(Pretty(value))


@app.command()
def clear(
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
    targets: TargetsOption = None,
    yes: Annotated[
        bool,
        typer.Option("-y", "--yes", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Remove fingerprints and stored results (of every target unless --target is given)."""
    pipeline = _load_pipeline(path, pipeline_var)
    if not targets and not yes:
        typer.confirm(f"Clear every stored result in {pipeline.store_root}?", abort=True)
    cleared = pipeline.clear(targets or None)
    err_console.print(f"[green]✓ Cleared {len(cleared)} target(s)[/green]")


@app.command()
def invalidate(
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
    targets: TargetsOption = None,
) -> None:
    """Force targets to rebuild on the next run, keeping their stored results readable."""
    pipeline = _load_pipeline(path, pipeline_var)
    if not targets:
        err_console.print("[red]Give at least one --target to invalidate[/red]")
        raise typer.Exit(code=1)
    invalidated = pipeline.invalidate(targets)
    err_console.print(f"[green]✓ Invalidated {len(invalidated)} target(s)[/green]")


@app.command()
def destroy(
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
    yes: Annotated[
        bool,
        typer.Option("-y", "--yes", help="Skip confirmation prompt"),
    ] = False,
) -> None:
    """Delete the pipeline's store directory."""
    pipeline = _load_pipeline(path, pipeline_var)
    if not yes:
        typer.confirm(f"Delete {pipeline.store_root}?", abort=True)
    pipeline.destroy()
    err_console.print(f"[green]✓ Deleted {pipeline.store_root}[/green]")


@app.command()
def check(
    path: PathArgument = None,
    *,
    pipeline_var: PipelineOption = None,
) -> None:
    """Check that the declared targets form a valid graph, without running anything."""
    pipeline = _load_pipeline(path, pipeline_var)

    err_console.print("[cyan]Validating dependencies...[/cyan]")
    try:
        graph = pipeline.graph()
    except _GRAPH_ERRORS as e:
        err_console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from e
    err_console.print()

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Target", style="bold")
    table.add_column("Depends on")
    table.add_column("Format", justify="right", style="yellow")

    for name in graph.order:
        table.add_row(
            escape(name),
            escape(", ".join(graph.dependencies[name])),
            str(pipeline.settings.format_for(graph.targets[name])),
        )

    err_console.print(
        Panel(
            table,
            title=f"[bold]Pipeline: {escape(pipeline.name)}[/bold]",
            subtitle=f"[dim]{len(graph)} targets[/dim]",
            border_style="cyan",
        ),
    )

    err_console.print()
    err_console.print("[green]✓ Pipeline is valid[/green]")
    err_console.print()


def main() -> None:
    app()
