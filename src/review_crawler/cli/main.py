"""
Main CLI application for the review crawler.

Provides the command-line interface for:
- Starting, stopping and resuming crawl sessions
- Managing the target queue and running batches
- Viewing session status and configuration
"""

import asyncio
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from review_crawler import __version__
from review_crawler.config import Settings, load_config
from review_crawler.config.loader import get_default_config_path
from review_crawler.core.exceptions import ReviewCrawlerError
from review_crawler.crawler.models import CrawlSession, QueueEntry, SessionStatus, TraversalMode
from review_crawler.runtime import Runtime
from review_crawler.utils.logging import get_logger, setup_logging
from review_crawler.utils.metrics import Metrics

app = typer.Typer(
    name="review-crawler",
    help="Review Crawler - resumable collection of product reviews",
    add_completion=False,
    no_args_is_help=True,
)
queue_app = typer.Typer(help="Manage the target queue", no_args_is_help=True)
config_app = typer.Typer(help="Configuration management", no_args_is_help=True)
app.add_typer(queue_app, name="queue")
app.add_typer(config_app, name="config")

console = Console()
logger = get_logger(__name__)

# Options given to the root command
_state: dict[str, Any] = {"config_file": None}

STATUS_STYLES = {
    SessionStatus.COMPLETED: "green",
    SessionStatus.STOPPED: "yellow",
    SessionStatus.FAILED: "red",
}


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]Review Crawler[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
        exists=True,
        dir_okay=False,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose logging",
    ),
) -> None:
    """
    Review Crawler - collect product reviews page by page.

    Use 'review-crawler --help' for command list.
    """
    _state["config_file"] = config_file
    settings = _load_settings()
    setup_logging(settings.logging, level="DEBUG" if verbose else None)


def _load_settings() -> Settings:
    try:
        return load_config(_state["config_file"] or get_default_config_path())
    except ReviewCrawlerError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


def _build_runtime() -> Runtime:
    settings = _load_settings()
    logger.debug(f"Using database {settings.storage.database_path}")
    runtime = Runtime(settings)
    runtime.events.on_progress(_print_progress)
    runtime.events.on_complete(_print_complete)
    return runtime


def _print_progress(snapshot: dict[str, Any]) -> None:
    total = snapshot.get("total_pages")
    pages = f"{snapshot['current_page']}/{total}" if total else str(snapshot["current_page"])
    console.print(
        f"[cyan]{snapshot['target_id']}[/cyan] page {pages} "
        f"[dim]({snapshot['collected_count']} collected, {snapshot['status']})[/dim]"
    )


def _print_complete(snapshot: dict[str, Any]) -> None:
    style = STATUS_STYLES.get(SessionStatus(snapshot["status"]), "white")
    console.print(
        f"[{style}]{snapshot['target_id']} {snapshot['status']}[/{style}] "
        f"({snapshot.get('end_reason') or '-'}): {snapshot['collected_count']} reviews"
    )


async def _run_active(runtime: Runtime) -> CrawlSession | None:
    session = runtime.controller().active_session()
    needs_browser = session is not None and session.mode is TraversalMode.NAVIGATION
    try:
        async with runtime.page_loader(needed=needs_browser) as loader:
            return await runtime.runner(loader).run_active()
    finally:
        await runtime.aclose()


def _session_panel(session: CrawlSession) -> Panel:
    style = STATUS_STYLES.get(session.status, "cyan")
    lines = [
        f"[bold]Target:[/bold] {session.target_id} ({session.source}, {session.mode.value})",
        f"[bold]Status:[/bold] [{style}]{session.status.value}[/{style}]"
        + (f" ({session.end_reason.value})" if session.end_reason else ""),
        f"[bold]Page:[/bold] {session.current_page}"
        + (f" of ~{session.total_pages}" if session.total_pages else ""),
        f"[bold]Collected:[/bold] {session.collected_count}"
        + (f" of {session.expected_total} reported" if session.expected_total else ""),
        f"[dim]Duplicates dropped: {session.duplicates_dropped} | "
        f"Older than watermark: {session.stale_dropped}[/dim]",
    ]
    if session.watermark_date:
        lines.append(f"[dim]Watermark: {session.watermark_date}[/dim]")
    if session.error_message:
        lines.append(f"[red]{session.error_message}[/red]")
    return Panel("\n".join(lines), title="Session", border_style=style)


@app.command()
def start(
    url: str = typer.Argument(..., help="Product or review listing URL"),
    mode: Optional[TraversalMode] = typer.Option(
        None,
        "--mode",
        "-m",
        help="Traversal mode (defaults to the source's configured mode)",
    ),
    incremental: bool = typer.Option(
        False,
        "--incremental",
        "-i",
        help="Only collect reviews newer than the last run",
    ),
    watermark: Optional[str] = typer.Option(
        None,
        "--watermark",
        "-w",
        help="Collect reviews dated on or after this day (YYYY-MM-DD)",
    ),
    queue_name: Optional[str] = typer.Option(
        None,
        "--queue-name",
        help="Label stored with the session",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Stop a running session first",
    ),
    run: bool = typer.Option(
        True,
        "--run/--no-run",
        help="Run the session after starting it",
    ),
) -> None:
    """
    Start collecting reviews for a product.

    Example:
        review-crawler start https://www.amazon.co.jp/dp/B0ABC12345 --incremental
    """
    runtime = _build_runtime()
    try:
        result = runtime.controller().start_session(
            url,
            mode=mode,
            incremental_only=incremental or watermark is not None,
            watermark_date=watermark,
            queue_name=queue_name,
            force=force,
        )
        if not result.accepted:
            console.print(f"[red]Not started:[/red] {result.reason}")
            raise typer.Exit(1)

        console.print(_session_panel(result.session))
        if run:
            session = asyncio.run(_run_active(runtime))
            if session is not None:
                console.print(_session_panel(session))
    except KeyboardInterrupt:
        runtime.controller().stop_session()
        console.print("\n[yellow]Crawl stopped by user[/yellow]")
        raise typer.Exit(1)
    finally:
        runtime.close()


@app.command()
def stop(
    target_id: Optional[str] = typer.Argument(
        None,
        help="Target to stop (defaults to the active session)",
    ),
) -> None:
    """Stop the active crawl session."""
    runtime = _build_runtime()
    try:
        stopped = runtime.controller().stop_session(target_id)
    finally:
        runtime.close()

    if stopped:
        console.print("[green]✓[/green] Session stopped")
    else:
        console.print("[yellow]No running session[/yellow]")


@app.command()
def resume() -> None:
    """Continue the active session from its last persisted page."""
    runtime = _build_runtime()
    try:
        session = runtime.controller().active_session()
        if session is None or not session.is_live:
            console.print("[yellow]No session to resume[/yellow]")
            return
        session = asyncio.run(_run_active(runtime))
        if session is not None:
            console.print(_session_panel(session))
    except KeyboardInterrupt:
        runtime.controller().stop_session()
        console.print("\n[yellow]Crawl stopped by user[/yellow]")
        raise typer.Exit(1)
    finally:
        runtime.close()


@app.command()
def status(
    target_id: Optional[str] = typer.Argument(
        None,
        help="Show one session in detail",
    ),
) -> None:
    """
    Show crawl sessions.

    Without a target, lists every stored session and the queue length.
    """
    runtime = _build_runtime()
    try:
        _show_status(runtime, target_id)
    finally:
        runtime.close()


def _show_status(runtime: Runtime, target_id: Optional[str]) -> None:
    controller = runtime.controller()

    if target_id:
        session = controller.get_session(target_id)
        if session is None:
            console.print(f"[yellow]No session for {target_id}[/yellow]")
            raise typer.Exit(1)
        console.print(_session_panel(session))
        return

    console.print(Panel(f"[bold]Review Crawler[/bold] v{__version__}", border_style="blue"))

    sessions = sorted(runtime.sessions.all(), key=lambda s: s.updated_at, reverse=True)
    if not sessions:
        console.print("[dim]No sessions yet. Run 'review-crawler start <url>'[/dim]")
    else:
        active = runtime.sessions.active_target()
        table = Table(show_header=True)
        table.add_column("Target", style="cyan")
        table.add_column("Source")
        table.add_column("Mode", style="dim")
        table.add_column("Status")
        table.add_column("Page", justify="right")
        table.add_column("Collected", justify="right")
        table.add_column("Updated", style="dim")

        for session in sessions:
            style = STATUS_STYLES.get(session.status, "cyan")
            marker = " *" if session.target_id == active else ""
            table.add_row(
                session.target_id + marker,
                session.source,
                session.mode.value,
                f"[{style}]{session.status.value}[/{style}]",
                str(session.current_page),
                str(session.collected_count),
                session.updated_at.replace("T", " "),
            )
        console.print(table)

    console.print(f"\n[bold]Queue:[/bold] {len(runtime.queue_manager().entries())} waiting")


@queue_app.command("add")
def queue_add(
    url: str = typer.Argument(..., help="Product or review listing URL"),
    title: str = typer.Option("", "--title", "-t", help="Display name"),
    queue_name: Optional[str] = typer.Option(None, "--queue-name", help="Label stored with the session"),
    incremental: bool = typer.Option(False, "--incremental", "-i", help="Collect only new reviews"),
) -> None:
    """Add a target to the end of the queue."""
    runtime = _build_runtime()
    try:
        result = runtime.queue_manager().enqueue(
            QueueEntry(url=url, title=title, queue_name=queue_name, incremental_only=incremental)
        )
    finally:
        runtime.close()

    if result.ok:
        console.print(f"[green]✓[/green] Queued {title or url}")
    else:
        console.print(f"[yellow]Already queued:[/yellow] {url}")


@queue_app.command("list")
def queue_list() -> None:
    """Show queued targets in the order they will run."""
    runtime = _build_runtime()
    try:
        entries = runtime.queue_manager().entries()
    finally:
        runtime.close()

    if not entries:
        console.print("[dim]Queue is empty[/dim]")
        return

    table = Table(title="Queue", show_header=True)
    table.add_column("#", style="dim", width=4)
    table.add_column("Title / URL", style="cyan")
    table.add_column("Source")
    table.add_column("Incremental")
    table.add_column("Added", style="dim")
    for i, entry in enumerate(entries, 1):
        table.add_row(
            str(i),
            entry.title or entry.url,
            entry.source,
            "yes" if entry.incremental_only else "no",
            entry.added_at.replace("T", " "),
        )
    console.print(table)


@queue_app.command("remove")
def queue_remove(url: str = typer.Argument(..., help="URL to remove")) -> None:
    """Remove a target from the queue."""
    runtime = _build_runtime()
    try:
        removed = runtime.queue_manager().remove(url)
    finally:
        runtime.close()

    if removed:
        console.print(f"[green]✓[/green] Removed {url}")
    else:
        console.print(f"[yellow]Not in queue:[/yellow] {url}")


@queue_app.command("clear")
def queue_clear() -> None:
    """Remove every queued target."""
    runtime = _build_runtime()
    try:
        count = runtime.queue_manager().clear()
    finally:
        runtime.close()
    console.print(f"[green]✓[/green] Removed {count} targets")


@app.command()
def batch() -> None:
    """Collect every queued target, one after another."""
    runtime = _build_runtime()
    try:
        result = asyncio.run(_run_batch(runtime))
    except KeyboardInterrupt:
        runtime.queue_manager().stop_batch()
        console.print("\n[yellow]Batch stopped by user[/yellow]")
        raise typer.Exit(1)
    finally:
        runtime.close()

    if not result.ok:
        console.print(f"[red]Batch not started:[/red] {result.reason}")
        raise typer.Exit(1)

    table = Table(title="Batch", show_header=True)
    table.add_column("URL", style="cyan")
    table.add_column("Status")
    table.add_column("Reason", style="dim")
    table.add_column("Collected", justify="right")
    for item in result.results:
        style = {"completed": "green", "stopped": "yellow"}.get(item.status, "red")
        table.add_row(
            item.url,
            f"[{style}]{item.status}[/{style}]",
            item.end_reason or item.message or "",
            str(item.collected_count),
        )
    console.print(table)

    console.print(f"\n[dim]{Metrics.get().summary()}[/dim]")


async def _run_batch(runtime: Runtime):
    entries = runtime.queue_manager().entries()
    needs_browser = any(
        runtime.settings.crawler.source(e.source).mode == TraversalMode.NAVIGATION.value
        for e in entries
    )
    try:
        async with runtime.page_loader(needed=needs_browser) as loader:
            return await runtime.queue_manager(loader).start_batch()
    finally:
        await runtime.aclose()


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration."""
    settings = _load_settings()
    config_dict = settings.model_dump(mode="json")

    console.print(Panel("[bold]Current Configuration[/bold]", border_style="blue"))

    for section, values in config_dict.items():
        console.print(f"\n[bold cyan]{section}:[/bold cyan]")
        if isinstance(values, dict):
            for key, value in values.items():
                console.print(f"  {key}: [dim]{value}[/dim]")
        else:
            console.print(f"  {values}")


@config_app.command("init")
def config_init(
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output path for config file",
    ),
) -> None:
    """Write the default configuration to a YAML file."""
    output_path = output or Path("config.yaml")

    if output_path.exists():
        if not typer.confirm(f"File {output_path} exists. Overwrite?"):
            raise typer.Exit(0)

    with open(output_path, "w") as f:
        yaml.dump(Settings().model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

    console.print(f"[green]✓[/green] Configuration saved to: {output_path}")


if __name__ == "__main__":
    app()
