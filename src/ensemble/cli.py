"""CLI interface for the Ensemble library cache."""

from __future__ import annotations

import asyncio
import typing
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

import typer
from pydantic import SecretStr
from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm

from ensemble.config import AppConfig, ensure_dirs, load_config, save_config
from ensemble.library.models import CACHED_TYPES, TRACKED_TYPES, MediaType
from ensemble.logging import APP_LOG, SYNC_LOG, setup_logging
from ensemble.storage.database import LibraryStore
from ensemble.sync.catalog import MusicAssistantClient
from ensemble.sync.scheduler import SyncScheduler
from ensemble.sync.service import LibrarySyncService, SyncStatus

app = typer.Typer(
    name="ensemble",
    help="Ensemble: offline library cache for Music Assistant, with per-provider sync and filtering.",
    add_completion=False,
)
console = Console()

T = TypeVar("T")


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _bootstrap() -> AppConfig:
    ensure_dirs()
    cfg = load_config()
    setup_logging(cfg.general.log_level, cfg.log_dir)
    return cfg


def _with_service(cfg: AppConfig, fn: Callable[[LibrarySyncService, LibraryStore], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with LibraryStore(cfg.db_path) as store:
            service = LibrarySyncService.from_config(cfg, store)
            return await fn(service, store)

    return asyncio.run(runner())


def _parse_media_type(raw: str) -> MediaType:
    value = raw.lower()
    by_name = {str(t): t for t in CACHED_TYPES} | {f"{t}s": t for t in CACHED_TYPES}
    media_type = by_name.get(value)
    if media_type is None:
        console.print(f"[red]Unknown media type:[/red] {raw}")
        console.print(f"[dim]Valid types: {', '.join(CACHED_TYPES)}[/dim]")
        raise typer.Exit(1)
    return media_type


def _human_time(iso_str: str | None) -> str:
    """Convert an ISO timestamp to a relative time string."""
    if not iso_str:
        return "—"
    try:
        dt = datetime.fromisoformat(iso_str.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        diff = (datetime.now(UTC) - dt).total_seconds()
        if diff < 60:
            return f"{max(int(diff), 0)}s ago"
        if diff < 3600:
            return f"{int(diff / 60)} min ago"
        return f"{int(diff / 3600)}h {int((diff % 3600) / 60)}m ago"
    except (ValueError, AttributeError):
        return iso_str


def _print_counts(status: dict) -> None:
    tracked = status.get("tracked", {})
    for media_type, count in status.get("counts", {}).items():
        extra = f"  [dim]({tracked[media_type]} tracked)[/dim]" if media_type in tracked else ""
        console.print(f"    {media_type:10s} {count:>6}{extra}")


def _print_status_change(service: LibrarySyncService) -> None:
    if service.status is SyncStatus.ERROR:
        console.print(f"[red]sync failed:[/red] {escape(service.last_error or '')}")
    elif service.status is SyncStatus.COMPLETED:
        console.print(f"[green]sync completed[/green] [dim]{_human_time(service.get_status()['last_sync_time'])}[/dim]")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def sync(
    force: bool = typer.Option(False, "--force", "-f", help="Sync even if the cache is still fresh"),
    provider: list[str] | None = typer.Option(
        None, "--provider", "-p", help="Provider instance to sync individually (repeatable; default: config)"
    ),
) -> None:
    """Refresh the local library cache from the Music Assistant server."""
    cfg = _bootstrap()
    providers = provider or cfg.sync.provider_instances

    async def run(service: LibrarySyncService, store: LibraryStore) -> dict:
        await service.load_from_cache()
        async with MusicAssistantClient(cfg.server) as client:
            await service.sync_from_api(client, force=force, scoped_providers=providers or None)
        return service.get_status()

    status = _with_service(cfg, run)

    if status["state"] == SyncStatus.ERROR:
        console.print(f"[red]Sync failed:[/red] {escape(status['last_error'] or '')}")
        console.print("[dim]The previous cache is unchanged.[/dim]")
        raise typer.Exit(1)
    if status["state"] == SyncStatus.COMPLETED:
        scope = ", ".join(providers) if providers else "all providers"
        console.print(f"[green]Sync completed[/green] ({scope}).")
    else:
        console.print("[dim]Cache is fresh, nothing to do (use --force to sync anyway).[/dim]")
    _print_counts(status)


@app.command()
def watch(
    interval: int = typer.Option(0, "--interval", "-i", help="Minutes between syncs (default: config)"),
) -> None:
    """Keep the cache fresh, syncing in the foreground until interrupted."""
    cfg = _bootstrap()
    minutes = interval or cfg.sync.interval_minutes

    async def run(service: LibrarySyncService, store: LibraryStore) -> None:
        await service.load_from_cache()
        service.subscribe(_print_status_change)
        async with MusicAssistantClient(cfg.server) as client:
            scheduler = SyncScheduler(
                service,
                client,
                interval_minutes=minutes,
                scoped_providers=cfg.sync.provider_instances,
            )
            console.print(f"Watching [bold]{cfg.server.url}[/bold] every {minutes} min. Press Ctrl+C to stop.")
            await scheduler.start()
            await scheduler.wait()

    _with_service(cfg, run)


@app.command()
def status() -> None:
    """Show cached item counts and when each type was last synced."""
    cfg = _bootstrap()

    async def run(service: LibrarySyncService, store: LibraryStore) -> tuple[dict, dict]:
        counts = await store.count_items()
        synced = {}
        for media_type in CACHED_TYPES:
            meta = await store.get_sync_metadata(media_type)
            synced[str(media_type)] = meta.last_synced_at.isoformat() if meta else None
        return counts, synced

    counts, synced = _with_service(cfg, run)

    console.print(f"\n[bold]Library cache[/bold]  {cfg.server.url}\n")
    for media_type in CACHED_TYPES:
        key = str(media_type)
        count = counts.get(key, 0)
        style = "green" if count > 0 else "dim"
        console.print(f"  [{style}]{key:10s}[/{style}]  {count:>6}  [dim]synced {_human_time(synced[key])}[/dim]")
    console.print()


@app.command(name="list")
def list_items(
    media_type: str = typer.Argument(help="album, artist, audiobook, playlist, track or podcast"),
    provider: list[str] | None = typer.Option(
        None, "--provider", "-p", help="Only show items from this provider instance (repeatable)"
    ),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum number of items to show"),
) -> None:
    """List cached items, optionally filtered by provider instance (no network)."""
    kind = _parse_media_type(media_type)
    if provider and kind not in TRACKED_TYPES:
        console.print(f"[red]{kind} items cannot be filtered by provider.[/red]")
        raise typer.Exit(1)
    cfg = _bootstrap()

    async def run(service: LibrarySyncService, store: LibraryStore) -> tuple[list, dict]:
        await service.load_from_cache()
        if kind in TRACKED_TYPES:
            items = service.filter_by_providers(kind, set(provider or ()))
        else:
            items = list(service.cached(kind))
        return items, dict(service.sources(kind))

    items, sources = _with_service(cfg, run)

    if not items:
        console.print(f"[dim]No cached {kind} items.[/dim]")
        return
    for item in items[:limit]:
        tracked = ", ".join(sorted(sources.get(item.item_id, ()))) or "untracked"
        ref = escape(f"{item.provider}/{item.item_id}")
        console.print(f"  {escape(item.name)}  [dim]{ref}  ({tracked})[/dim]", highlight=False)
    if len(items) > limit:
        console.print(f"[dim]… {len(items) - limit} more[/dim]")


@app.command()
def clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete every cached item and all sync bookkeeping."""
    if not yes and not Confirm.ask("Clear the whole library cache?", default=False):
        console.print("[dim]Aborted.[/dim]")
        raise typer.Exit(0)
    cfg = _bootstrap()

    async def run(service: LibrarySyncService, store: LibraryStore) -> None:
        await service.clear_cache()

    _with_service(cfg, run)
    console.print("[green]Library cache cleared.[/green]")


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    sync: bool = typer.Option(False, "--sync", help="Show sync.log (JSON) instead of app.log"),
) -> None:
    """Show recent log output (use --sync for the JSON sync log)."""
    log_file = load_config().log_dir / (SYNC_LOG if sync else APP_LOG)
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        _print_log_line(line)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style for *line* based on its structlog level marker."""
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


def _print_log_line(line: str) -> None:
    line = line.rstrip("\n")
    if not line:
        return
    console.print(line, style=_log_line_style(line), highlight=False, markup=False)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: SecretStr) -> str:
    return "[bold]***[/bold]" if secret.get_secret_value() else "[dim](not set)[/dim]"


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration (the server token is masked)."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")

    console.print("[bold cyan]\\[general][/bold cyan]")
    console.print(f"  log_level = {cfg.general.log_level}")

    console.print("\n[bold cyan]\\[server][/bold cyan]")
    console.print(f"  url   = {cfg.server.url}")
    console.print(f"  token = {_mask(cfg.server.token)}")

    console.print("\n[bold cyan]\\[sync][/bold cyan]")
    for key, value in cfg.sync.model_dump(mode="python").items():
        console.print(f"  {key} = {value}", highlight=False)
    console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. sync.stale_after_minutes"),
    value: str = typer.Argument(help="New value (comma-separated for lists)"),
) -> None:
    """Set a configuration value (e.g. ensemble config set sync.provider_instances spotify--a,tidal--b)."""
    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. server.url).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {
        "general": cfg.general,
        "server": cfg.server,
        "sync": cfg.sync,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)

    display_val = "***" if isinstance(coerced, SecretStr) else coerced
    console.print(f"[green]Set[/green] {key} = {display_val}")


def _coerce_value(raw: str, field_type: object) -> object:
    """Coerce a string value to the expected field type."""
    origin = typing.get_origin(field_type)

    if field_type is SecretStr:
        return SecretStr(raw)

    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    if origin is list:
        return [part.strip() for part in raw.split(",") if part.strip()]

    return raw
