"""CLI entry point for routeshot."""

from __future__ import annotations

import functools
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from routeshot.errors import RouteshotError
from routeshot.models.config import ProjectConfig
from routeshot.orchestrator import Pipeline

console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_pipeline(config: str) -> Pipeline:
    try:
        cfg = ProjectConfig.load(config)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Run 'routeshot init' to create a default config.")
        sys.exit(1)
    pipeline = Pipeline(cfg)
    for path in pipeline.session_store.quarantined:
        console.print(
            f"[yellow]Unreadable review session moved aside to {escape(path)}[/yellow]"
        )
    return pipeline


def _handle_errors(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RouteshotError, FileNotFoundError) as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            sys.exit(1)
    return wrapper


config_option = click.option(
    "--config", "-c", default="routeshot.json", help="Config file path",
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Route screenshots for client review"""
    setup_logging(verbose)


@cli.command()
@click.option("--base-url", "-u", prompt="Dev server URL", help="Base URL of the running app")
def init(base_url: str) -> None:
    """Create a default configuration file."""
    config_path = Path("routeshot.json")
    if config_path.exists():
        if not click.confirm("routeshot.json already exists. Overwrite?"):
            return

    cfg = ProjectConfig(base_url=base_url)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nAdd fixture profiles and viewports to this file, then run:")
    console.print("  [blue]routeshot capture[/blue]")


@cli.command()
@config_option
@_handle_errors
def routes(config: str) -> None:
    """Discover routes and print the manifest."""
    pipeline = _load_pipeline(config)
    manifest = pipeline.discover_routes()

    table = Table(title=f"Routes ({len(manifest)})")
    table.add_column("Path", style="bold")
    table.add_column("Convention")
    table.add_column("Layouts")
    table.add_column("Source")
    for route in manifest:
        table.add_row(
            route.path, route.source_convention.value,
            " > ".join(route.layout_chain) or "-", route.source,
        )
    console.print(table)


@cli.command()
@click.option("--profile", "-p", default=None, help="Fixture profile id")
@click.option("--no-session", is_flag=True, help="Capture only; do not open a review session")
@config_option
@_handle_errors
def capture(profile: str | None, no_session: bool, config: str) -> None:
    """Capture every route at every viewport and open a review session."""
    pipeline = _load_pipeline(config)
    try:
        results = pipeline.run_capture(profile, open_session=not no_session)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        sys.exit(1)

    console.print("\n[bold green]Capture Complete[/bold green]")
    table = Table(title="Capture Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Run ID", results["run_id"])
    table.add_row("Duration", f"{results['duration']}s")
    table.add_row("Routes", str(results["routes"]))
    table.add_row("Screenshots", f"[green]{results['ok']}[/green] / {results['requested']}")
    table.add_row("Failed", f"[red]{len(results['failed'])}[/red]")
    table.add_row("Session", results["session_id"] or "[yellow]not opened[/yellow]")
    console.print(table)

    for failure in results["failed"]:
        console.print(
            f"  [red]FAILED[/red] {failure['route']} @ {failure['viewport']}: {failure['error']}"
        )


@cli.command()
@config_option
@_handle_errors
def status(config: str) -> None:
    """Show the active review session."""
    pipeline = _load_pipeline(config)
    session = pipeline.session_store.active_session()
    if session is None:
        console.print("[yellow]No active review session[/yellow]")
        return

    console.print(
        f"Session [bold]{session.session_id}[/bold] "
        f"({session.status.value}, version {session.version}, "
        f"{len(session.artifacts)} screenshots)"
    )
    table = Table(title="Annotations")
    table.add_column("ID", style="bold")
    table.add_column("Route")
    table.add_column("Viewport")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Content")
    for a in session.annotations:
        table.add_row(a.id, a.route, a.viewport, a.priority.value, a.status.value, a.content)
    console.print(table)


@cli.command()
@click.argument("annotations_file", type=click.Path(exists=True))
@config_option
@_handle_errors
def submit(annotations_file: str, config: str) -> None:
    """Submit client annotations from a JSON file."""
    pipeline = _load_pipeline(config)
    added = pipeline.submit_annotations_file(annotations_file)
    console.print(f"[green]Accepted {added} annotation(s)[/green]")


@cli.command()
@click.argument("annotation_id")
@click.argument("new_status", type=click.Choice(["in-progress", "resolved"]))
@config_option
@_handle_errors
def mark(annotation_id: str, new_status: str, config: str) -> None:
    """Move an annotation to in-progress or resolved."""
    pipeline = _load_pipeline(config)
    annotation = pipeline.mark(annotation_id, new_status)
    console.print(f"[green]{annotation.id}:[/green] {annotation.status.value}")


@cli.command()
@config_option
@_handle_errors
def publish(config: str) -> None:
    """Publish the client's annotations for the developer."""
    pipeline = _load_pipeline(config)
    session = pipeline.publish()
    console.print(
        f"[green]Published {session.session_id}[/green] "
        f"with {len(session.annotations)} annotation(s)"
    )


@cli.command()
@config_option
@_handle_errors
def resolve(config: str) -> None:
    """Close the review once every annotation is resolved."""
    pipeline = _load_pipeline(config)
    session = pipeline.resolve()
    console.print(f"[green]Resolved and archived {session.session_id}[/green]")


@cli.command()
@click.argument("output", type=click.Path())
@config_option
@_handle_errors
def bundle(output: str, config: str) -> None:
    """Export the active session with inlined screenshots."""
    pipeline = _load_pipeline(config)
    path = pipeline.export_bundle(output)
    console.print(f"[green]Bundle written to[/green] [blue]{path}[/blue]")


@cli.command("mount-config")
@click.argument("mount", type=click.Choice(["annotate", "resolve"]))
@config_option
@_handle_errors
def mount_config(mount: str, config: str) -> None:
    """Print the JSON config for the annotate or resolve mount point."""
    pipeline = _load_pipeline(config)
    click.echo(json.dumps(pipeline.mount_config(mount), indent=2))


if __name__ == "__main__":
    cli()
