"""Command-line interface for the schedule harvester."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.json import JSON
from rich.logging import RichHandler
from rich.table import Table

from .ingestion.config import STATE_DIR_ENV, HarvestConfig, load_harvest_config
from .ingestion.errors import MissingStateError
from .models.documents import Views
from .pipeline.orchestrator import HarvestPipeline
from .pipeline.summary import StageSummary
from .storage.state_store import StateStore

app = typer.Typer(
    name="schedule-harvest",
    help="Incremental schedule harvester - discover, extract, enrich, view and diff",
    add_completion=False,
)
console = Console()

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def build_pipeline(config: HarvestConfig) -> HarvestPipeline:
    return HarvestPipeline(config)


@app.callback()
def main(
    ctx: typer.Context,
    state_dir: Optional[Path] = typer.Option(
        None, "--state-dir", envvar=STATE_DIR_ENV, help="State directory (default ~/.schedule_harvester)"
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to harvest configuration YAML"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Harvest a semi-structured schedule source into a durable local snapshot."""
    configure_logging(verbose)
    ctx.obj = {"state_dir": state_dir, "config": config}


# =============================================================================
# HELPERS
# =============================================================================


def _load_config(ctx: typer.Context) -> HarvestConfig:
    options = ctx.obj or {}
    try:
        cfg = load_harvest_config(options["config"]) if options.get("config") else HarvestConfig.from_env()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1)

    if options.get("state_dir"):
        cfg.state_dir = options["state_dir"]
    return cfg


def _apply_pacing(
    cfg: HarvestConfig,
    pacing: Optional[bool],
    min_delay: Optional[float],
    max_delay: Optional[float],
    burst_size: Optional[int],
) -> None:
    if pacing is not None:
        cfg.pacing.enabled = pacing
    if min_delay is not None:
        cfg.pacing.min_delay = min_delay
    if max_delay is not None:
        cfg.pacing.max_delay = max_delay
    if burst_size is not None:
        cfg.pacing.burst_size = max(1, burst_size)
    if cfg.pacing.max_delay < cfg.pacing.min_delay:
        console.print("[red]Configuration error: --max-delay must be >= --min-delay[/red]")
        raise typer.Exit(1)


def _print_summary(payload: dict[str, Any]) -> None:
    console.print(JSON(json.dumps(payload, ensure_ascii=False, default=str)))
    if payload.get("blocked"):
        console.print("[yellow]⚠ Source answered with an anti-bot challenge; run stopped early[/yellow]")


def _execute(cfg: HarvestConfig, action) -> Any:
    """Run an action against a pipeline, mapping stage errors to exit code 1."""
    try:
        with build_pipeline(cfg) as pipeline:
            return action(pipeline)
    except MissingStateError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception(f"Unrecovered stage error: {e}")
        console.print(f"[red]Unexpected error: {e}[/red]")
        raise typer.Exit(1)


# =============================================================================
# COMMANDS
# =============================================================================


@app.command()
def discover(
    ctx: typer.Context,
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Pages fetched per paginated seed"),
    pacing: Optional[bool] = typer.Option(None, "--pacing/--no-pacing", help="Human-like pacing between requests"),
    min_delay: Optional[float] = typer.Option(None, "--min-delay", min=0, help="Minimum pacing delay (seconds)"),
    max_delay: Optional[float] = typer.Option(None, "--max-delay", min=0, help="Maximum pacing delay (seconds)"),
    burst_size: Optional[int] = typer.Option(None, "--burst-size", min=1, help="Requests between cooldowns"),
):
    """Discover index pages from the configured seeds."""
    cfg = _load_config(ctx)
    _apply_pacing(cfg, pacing, min_delay, max_delay, burst_size)
    summary: StageSummary = _execute(cfg, lambda p: p.discover(max_pages=max_pages))
    _print_summary(summary.to_dict())


@app.command("events")
def events(
    ctx: typer.Context,
    months: Optional[int] = typer.Option(None, "--months", min=1, help="Maximum index pages to parse"),
    pacing: Optional[bool] = typer.Option(None, "--pacing/--no-pacing", help="Human-like pacing between requests"),
    min_delay: Optional[float] = typer.Option(None, "--min-delay", min=0, help="Minimum pacing delay (seconds)"),
    max_delay: Optional[float] = typer.Option(None, "--max-delay", min=0, help="Maximum pacing delay (seconds)"),
    burst_size: Optional[int] = typer.Option(None, "--burst-size", min=1, help="Requests between cooldowns"),
):
    """Extract events and seed entities from discovered index pages."""
    cfg = _load_config(ctx)
    _apply_pacing(cfg, pacing, min_delay, max_delay, burst_size)
    summary: StageSummary = _execute(cfg, lambda p: p.extract(max_index_pages=months))
    _print_summary(summary.to_dict())


app.command("extract", help="Alias for 'events'.")(events)


@app.command()
def enrich(
    ctx: typer.Context,
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, max=32, help="Worker count"),
    refresh_hours: Optional[float] = typer.Option(None, "--refresh-hours", min=0, help="Re-enrich after this many hours"),
    force: bool = typer.Option(False, "--force", help="Ignore freshness and re-enrich everything"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum entities attempted"),
    pacing: Optional[bool] = typer.Option(None, "--pacing/--no-pacing", help="Human-like pacing between requests"),
    min_delay: Optional[float] = typer.Option(None, "--min-delay", min=0, help="Minimum pacing delay (seconds)"),
    max_delay: Optional[float] = typer.Option(None, "--max-delay", min=0, help="Maximum pacing delay (seconds)"),
    burst_size: Optional[int] = typer.Option(None, "--burst-size", min=1, help="Requests between cooldowns"),
):
    """Fetch detail pages for entities that are due."""
    cfg = _load_config(ctx)
    _apply_pacing(cfg, pacing, min_delay, max_delay, burst_size)
    if refresh_hours is not None:
        cfg.enrichment.refresh_interval_hours = refresh_hours
    summary: StageSummary = _execute(
        cfg, lambda p: p.enrich(concurrency=concurrency, force=force or None, limit=limit)
    )
    _print_summary(summary.to_dict())


@app.command()
def views(
    ctx: typer.Context,
    horizon_days: Optional[int] = typer.Option(None, "--horizon-days", min=0, help="Upcoming window in days"),
    recent_days: Optional[int] = typer.Option(None, "--recent-days", min=0, help="Recent window in days"),
    preview: int = typer.Option(10, "--preview", min=0, help="Upcoming events to show"),
):
    """Build upcoming/recent/undated views."""
    cfg = _load_config(ctx)
    summary: StageSummary = _execute(cfg, lambda p: p.views(horizon_days=horizon_days, recent_days=recent_days))
    _print_summary(summary.to_dict())
    if preview:
        _print_upcoming(cfg, preview)


@app.command()
def delta(
    ctx: typer.Context,
    allow_partial: bool = typer.Option(False, "--allow-partial", help="Commit even if extraction was incomplete"),
):
    """Diff against the previous snapshot and commit."""
    cfg = _load_config(ctx)
    summary: StageSummary = _execute(cfg, lambda p: p.delta(allow_partial=allow_partial))
    _print_summary(summary.to_dict())


@app.command()
def run(
    ctx: typer.Context,
    max_pages: Optional[int] = typer.Option(None, "--max-pages", min=1, help="Pages fetched per paginated seed"),
    months: Optional[int] = typer.Option(None, "--months", min=1, help="Maximum index pages to parse"),
    enrich_entities: bool = typer.Option(True, "--enrich/--no-enrich", help="Run the enrichment stage"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", min=1, max=32, help="Worker count"),
    refresh_hours: Optional[float] = typer.Option(None, "--refresh-hours", min=0, help="Re-enrich after this many hours"),
    force: bool = typer.Option(False, "--force", help="Ignore freshness and re-enrich everything"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum entities attempted"),
    horizon_days: Optional[int] = typer.Option(None, "--horizon-days", min=0, help="Upcoming window in days"),
    recent_days: Optional[int] = typer.Option(None, "--recent-days", min=0, help="Recent window in days"),
    allow_partial: bool = typer.Option(False, "--allow-partial", help="Commit even if extraction was incomplete"),
    pacing: Optional[bool] = typer.Option(None, "--pacing/--no-pacing", help="Human-like pacing between requests"),
    min_delay: Optional[float] = typer.Option(None, "--min-delay", min=0, help="Minimum pacing delay (seconds)"),
    max_delay: Optional[float] = typer.Option(None, "--max-delay", min=0, help="Maximum pacing delay (seconds)"),
    burst_size: Optional[int] = typer.Option(None, "--burst-size", min=1, help="Requests between cooldowns"),
):
    """Run discover, events, enrich, views and delta in order."""
    cfg = _load_config(ctx)
    _apply_pacing(cfg, pacing, min_delay, max_delay, burst_size)
    if refresh_hours is not None:
        cfg.enrichment.refresh_interval_hours = refresh_hours

    console.print(f"[bold green]Harvesting into:[/bold green] {cfg.state_dir}")
    result = _execute(
        cfg,
        lambda p: p.run(
            max_pages=max_pages,
            max_index_pages=months,
            enrich=enrich_entities,
            concurrency=concurrency,
            force=force or None,
            limit=limit,
            horizon_days=horizon_days,
            recent_days=recent_days,
            allow_partial=allow_partial,
        ),
    )
    _print_summary(result.to_dict())


def _print_upcoming(cfg: HarvestConfig, limit: int) -> None:
    store = StateStore(cfg.state_dir)
    doc = store.load_model(StateStore.VIEWS, Views)
    if doc is None or not doc.upcoming:
        console.print("[yellow]No upcoming events[/yellow]")
        return

    table = Table(title=f"Upcoming events ({len(doc.upcoming)})")
    table.add_column("Date", style="cyan")
    table.add_column("Time")
    table.add_column("Kind", style="magenta")
    table.add_column("Entity", style="green")
    table.add_column("Raw text")
    for event in doc.upcoming[:limit]:
        table.add_row(
            event.event_date.isoformat() if event.event_date else "TBD",
            f"{event.event_time} {event.event_tz}" if event.event_time else "",
            event.event_kind.value,
            event.entity_key.rstrip("/").rsplit("/", 1)[-1],
            event.raw_text,
        )
    console.print(table)


if __name__ == "__main__":
    app()
