"""Typer-based CLI for BlastRadius acceptance-test impact analysis."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__, config
from .cli_groups import config_grp, project_grp
from .config_manager import load_analysis_config
from .errors import StoreLoadError
from .models import BuildSummary, QueryCatalog
from .orchestrator import AnalysisOrchestrator
from .parser import ExtractOptions
from .predicates import TemplateFilter
from .query import OPERATIONS, BlastRadiusQuery
from .storage import GraphStore, ProjectManager

console = Console()
logger = logging.getLogger(__name__)

app = typer.Typer(
    help="💥 BlastRadius: which acceptance tests does a resource change affect?",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(project_grp, name="project")
app.add_typer(config_grp, name="config")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"BlastRadius v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """BlastRadius: map resource changes to the acceptance tests that exercise them."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _expand_paths(raw: List[str]) -> List[Path]:
    """Resolve file arguments; ``@list.txt`` reads one path per line."""
    paths: List[Path] = []
    for item in raw:
        if item.startswith("@"):
            list_file = Path(item[1:])
            if not list_file.is_file():
                raise typer.BadParameter(f"File list '{list_file}' does not exist.")
            for line in list_file.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if line and not line.startswith("#"):
                    paths.append(Path(line))
        else:
            paths.append(Path(item))

    kept = []
    for path in paths:
        if path.suffix not in config.SUPPORTED_EXTENSIONS:
            logger.warning("Skipping non-Go file %s", path)
            continue
        kept.append(path)
    return kept


def _open_current_store(pm: ProjectManager) -> GraphStore:
    project = pm.get_current_project()
    if not project:
        raise typer.BadParameter("No project loaded. Use 'br project load <name>' or run 'br build'.")
    if not pm.project_dir(project).exists():
        raise typer.BadParameter(f"Loaded project '{project}' does not exist.")
    return pm.load_store(project)


def _print_summary(summary: BuildSummary) -> None:
    console.print(
        f"Files: [bold]{summary.files_total}[/bold] | parsed: [green]{summary.files_parsed}[/green] "
        f"| skipped: [yellow]{summary.files_skipped}[/yellow]"
    )
    for path, error in sorted(summary.errors.items()):
        console.print(f"  [yellow]![/yellow] {path}: {error}")
    if summary.resolution:
        stats = ", ".join(f"{k}={v}" for k, v in sorted(summary.resolution.items()))
        console.print(f"Calls: {stats}")
    console.print(f"Steps skipped: {summary.steps_skipped} | stubs created: {summary.stubs_created}")

    if not summary.invocations:
        console.print("[dim]No affected tests.[/dim]")
        return
    table = Table(title="Tests to run", show_header=True)
    table.add_column("Service", style="cyan")
    table.add_column("Resource")
    table.add_column("Package")
    table.add_column("Tests")
    for inv in summary.invocations:
        table.add_row(inv.service, inv.resource, inv.package_dir, "\n".join(inv.tests))
    console.print(table)


def _print_unresolved(summary: BuildSummary) -> None:
    if not summary.unresolved_calls:
        console.print("[dim]No unresolved calls.[/dim]")
        return
    table = Table(title=f"Unresolved calls ({len(summary.unresolved_calls)})", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Caller")
    table.add_column("Call")
    for call in summary.unresolved_calls:
        caller = f"{call.caller_struct}.{call.caller}" if call.caller_struct else call.caller
        table.add_row(call.caller_file, str(call.line), caller, f"{call.receiver}.{call.method}")
    console.print(table)


def _print_catalog(catalog: QueryCatalog) -> None:
    console.print(f"Operations: {', '.join(catalog.operations)}")
    table = Table(title="Loaded resources", show_header=True)
    table.add_column("Resource", style="cyan")
    table.add_column("Service")
    for name, service in catalog.resources.items():
        table.add_row(name, service or "[dim]unregistered[/dim]")
    console.print(table)


@app.command("build")
def build(
    paths: List[str] = typer.Argument(..., help="Go test files, or @file containing one path per line."),
    resources: List[str] = typer.Option(..., "--resource", "-r", help="Target resource name (repeatable)."),
    repo_root: Optional[Path] = typer.Option(None, "--repo-root", file_okay=False, help="Root for relative paths."),
    project_name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name for the persisted store."),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=0, help="Extraction processes."),
    show_unresolved: bool = typer.Option(False, "--unresolved", help="List call sites that could not be resolved."),
):
    """Analyze Go test files and persist the dependency store."""
    file_paths = _expand_paths(paths)
    if not file_paths:
        raise typer.BadParameter("No Go files to analyze.")

    analysis = load_analysis_config(config.CONFIG_FILE)
    options = ExtractOptions(
        resource_prefix=analysis["resource_prefix"],
        test_prefixes=tuple(analysis["test_prefixes"]),
        test_step_packages=tuple(analysis["test_step_packages"]),
        predicate=TemplateFilter.from_config(analysis),
    )
    orchestrator = AnalysisOrchestrator(options, workers=workers)
    store, summary = orchestrator.build(file_paths, resources, repo_root=repo_root)

    pm = ProjectManager()
    name = project_name or (repo_root.resolve().name if repo_root else "default")
    pm.save_store(name, store, {
        "project_name": name,
        "repo_root": str(repo_root.resolve()) if repo_root else None,
        "resources": list(dict.fromkeys(resources)),
        "files": summary.files_total,
        "built_at": datetime.now().isoformat(),
    })
    pm.set_current_project(name)
    store.close()

    _print_summary(summary)
    if show_unresolved:
        _print_unresolved(summary)
    typer.echo(f"Saved store as project '{name}'.")


@app.command("query")
def query(
    operation: Optional[str] = typer.Argument(None, help=f"One of: {', '.join(OPERATIONS)}."),
    resources: Optional[List[str]] = typer.Argument(None, help="Resource names."),
):
    """Query the current project's store."""
    pm = ProjectManager()
    try:
        store = _open_current_store(pm)
    except StoreLoadError as exc:
        console.print(f"[red]✗[/red] Could not load store: {exc}")
        raise typer.Exit(code=1)

    engine = BlastRadiusQuery(store)
    if operation is None:
        _print_catalog(engine.catalog())
        store.close()
        return
    if operation not in OPERATIONS:
        store.close()
        raise typer.BadParameter(f"Unknown operation '{operation}'. Choose from: {', '.join(OPERATIONS)}.")
    if not resources:
        store.close()
        raise typer.BadParameter("At least one resource name is required.")

    rows = engine.run(operation, *resources)
    store.close()

    if not rows:
        console.print(f"[yellow]No {operation} results for {', '.join(resources)}.[/yellow]")
        return

    table = Table(title=f"{operation} results", show_header=True)
    table.add_column("Origin", style="cyan")
    table.add_column("Resource")
    table.add_column("File")
    table.add_column("Function", style="bold")
    table.add_column("Line", justify="right")
    table.add_column("Depth", justify="right")
    table.add_column("Crosses")
    table.add_column("Detail")
    for row in rows:
        detail = row.via or row.reference_style
        table.add_row(
            row.origin,
            row.resource,
            row.file_path or "[dim](stub)[/dim]",
            row.function,
            str(row.line),
            str(row.chain_depth) if row.origin != "direct" else "",
            "yes" if row.crosses_boundary else "",
            detail,
        )
    console.print(table)


if __name__ == "__main__":
    app()
