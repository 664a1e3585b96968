"""Command hierarchy groups for organized CLI experience.

Provides logical grouping of commands under:
  br project  - Persisted store management
  br config   - Analysis settings in config.toml
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from . import config
from .config_manager import DEFAULT_ANALYSIS_CONFIG, load_analysis_config, save_analysis_config
from .storage import ProjectManager

console = Console()

# ── Project management group ─────────────────────────────────
project_grp = typer.Typer(
    help="📂 Projects: list, load and delete persisted stores.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# ── Configuration group ──────────────────────────────────────
config_grp = typer.Typer(
    help="⚙️  Configuration: analysis settings.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@project_grp.command("list")
def list_projects():
    """List all persisted project stores."""
    pm = ProjectManager()
    projects = pm.list_projects()
    current = pm.get_current_project()

    if not projects:
        typer.echo("No projects built yet.")
        raise typer.Exit(code=0)

    for p in projects:
        marker = "*" if p == current else " "
        typer.echo(f"{marker} {p}")


@project_grp.command("load")
def load_project(project_name: str = typer.Argument(..., help="Name of project store to load.")):
    """Switch the active project store."""
    pm = ProjectManager()
    if project_name not in pm.list_projects():
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    pm.set_current_project(project_name)
    typer.echo(f"Loaded project '{project_name}'.")


@project_grp.command("unload")
def unload_project():
    """Unload the active project without deleting it."""
    pm = ProjectManager()
    pm.unload_project()
    typer.echo("Unloaded active project.")


@project_grp.command("current")
def current_project():
    """Print the active project name."""
    pm = ProjectManager()
    project = pm.get_current_project()
    if not project:
        typer.echo("No project loaded.")
        raise typer.Exit(code=0)
    meta = pm.get_metadata(project)
    typer.echo(project)
    if meta:
        typer.echo(f"  built: {meta.get('built_at', '?')}  resources: {', '.join(meta.get('resources', []))}")


@project_grp.command("delete")
def delete_project(project_name: str = typer.Argument(..., help="Project store to delete.")):
    """Delete a persisted project store."""
    pm = ProjectManager()
    deleted = pm.delete_project(project_name)
    if not deleted:
        raise typer.BadParameter(f"Project '{project_name}' not found.")
    typer.echo(f"Deleted project '{project_name}'.")


@config_grp.command("show")
def show_config():
    """Show the effective analysis settings."""
    settings = load_analysis_config(config.CONFIG_FILE)
    table = Table(title=f"Analysis settings ({config.CONFIG_FILE})", show_header=True)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in settings.items():
        shown = ", ".join(value) if isinstance(value, list) else str(value)
        if value != DEFAULT_ANALYSIS_CONFIG[key]:
            shown = f"[bold]{shown}[/bold]"
        table.add_row(key, shown)
    console.print(table)


@config_grp.command("set")
def set_config(
    key: str = typer.Argument(..., help="Setting name, e.g. resource_prefix."),
    value: str = typer.Argument(..., help="New value; lists are comma-separated."),
):
    """Change one analysis setting."""
    if key not in DEFAULT_ANALYSIS_CONFIG:
        raise typer.BadParameter(f"Unknown setting '{key}'.")
    default = DEFAULT_ANALYSIS_CONFIG[key]
    if isinstance(default, list):
        parsed = [v.strip() for v in value.split(",") if v.strip()]
    elif isinstance(default, int):
        try:
            parsed = int(value)
        except ValueError:
            raise typer.BadParameter(f"'{key}' expects an integer.")
    else:
        parsed = value

    if not save_analysis_config(config.CONFIG_FILE, **{key: parsed}):
        console.print(f"[red]✗[/red] Could not write {config.CONFIG_FILE}")
        raise typer.Exit(code=1)
    typer.echo(f"Set {key} = {value}")
