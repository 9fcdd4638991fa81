"""CLI interface for Mirasync snapshot sync."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from mirasync.config import AppConfig, ensure_dirs, load_config, save_config
from mirasync.errors import DefaultListError, SyncError
from mirasync.language import SUPPORTED_LANGUAGES, SYSTEM_LANGUAGE
from mirasync.library import Library
from mirasync.logging import log_file, setup_logging
from mirasync.storage.database import Database
from mirasync.storage.models import MediaList
from mirasync.sync.engine import SyncEngine

T = TypeVar("T")

app = typer.Typer(
    name="mirasync",
    help="Export and merge Mira library snapshots between installations.",
    add_completion=False,
)
console = Console()


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also print log events to stderr"),
) -> None:
    cfg = load_config()
    ensure_dirs()
    setup_logging(cfg.logging.log_level, cfg.log_dir, console=verbose)


# ---------------------------------------------------------------------------
# Engine helper
# ---------------------------------------------------------------------------


def _run_with_engine(action: Callable[[SyncEngine], Awaitable[T]]) -> T:
    """Open the library database, run *action* against a fresh engine, close.

    Sync failures are reported in red and turned into exit code 1.
    """
    cfg = load_config()

    async def _run() -> T:
        db = Database(cfg.db_path)
        await db.connect()
        try:
            return await action(SyncEngine(cfg, db))
        finally:
            await db.close()

    try:
        return asyncio.run(_run())
    except SyncError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _human_time(value: datetime | None) -> str:
    """Render a timestamp as a relative time string."""
    if value is None:
        return "—"
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    diff = (datetime.now(UTC) - value).total_seconds()
    if diff < 0:
        return value.isoformat(timespec="seconds")
    if diff < 60:
        return f"{int(diff)}s ago"
    if diff < 3600:
        return f"{int(diff / 60)} min ago"
    if diff < 86400:
        return f"{int(diff / 3600)}h {int((diff % 3600) / 60)}m ago"
    return f"{int(diff / 86400)}d ago"


def _print_stats(stats: dict[str, int]) -> None:
    for key, value in stats.items():
        style = "green" if value else "dim"
        console.print(f"    [{style}]{key:20s}[/{style}] {value:>6}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def export(
    path: Path | None = typer.Argument(None, help="Target file (default: configured export path)"),
) -> None:
    """Write a snapshot of the local library to a JSON file."""

    async def _export(engine: SyncEngine) -> Path:
        return await engine.export_to_file(path)

    written = _run_with_engine(_export)
    console.print(f"[green]Snapshot written[/green] to [bold]{written}[/bold]")


@app.command("import")
def import_(
    path: Path = typer.Argument(help="Snapshot file exported by another installation"),
) -> None:
    """Merge a snapshot file into the local library."""

    async def _import(engine: SyncEngine) -> dict[str, int]:
        stats = await engine.import_from_file(path)
        return json.loads(stats.to_json())

    stats = _run_with_engine(_import)
    console.print(f"[green]Merged[/green] {path}\n")
    _print_stats(stats)
    console.print()


@app.command()
def status() -> None:
    """Show device id, library counters, pending deletions and settings timestamps."""

    async def _status(engine: SyncEngine) -> dict:
        db = engine.db
        states = await engine.settings.get_all()
        return {
            "device_id": await db.get_device_id(),
            "counts": await db.get_counts(),
            "language": await engine.settings.get_resolved_language(),
            "settings": {ns.value: state.updated_at for ns, state in states.items()},
            "last_run": next(iter(await db.list_sync_runs(limit=1)), None),
        }

    data = _run_with_engine(_status)

    console.print()
    console.print(f"  [bold]Device:[/bold]   {data['device_id']}")
    if data["language"]:
        console.print(f"  [bold]Language:[/bold] {data['language']}")

    counts = data["counts"]
    console.print("\n  [bold cyan]Library[/bold cyan]")
    console.print(f"    media:       {counts['media']}")
    console.print(f"    favorites:   {counts['favorites']}")
    console.print(f"    progress:    {counts['progress']}")
    console.print(f"    lists:       {counts['lists']}")
    console.print(f"    list items:  {counts['list_items']}")
    console.print(f"    deletions:   {counts['tombstones']}")

    console.print("\n  [bold cyan]Settings[/bold cyan]")
    for namespace, updated_at in data["settings"].items():
        console.print(f"    {namespace:22s} {_human_time(updated_at)}")

    last_run = data["last_run"]
    if last_run is not None:
        color = {"completed": "green", "failed": "red"}.get(last_run.status, "yellow")
        console.print("\n  [bold cyan]Last sync[/bold cyan]")
        console.print(f"    direction: {last_run.direction}")
        console.print(f"    status:    [{color}]{last_run.status}[/{color}]")
        console.print(f"    started:   {_human_time(last_run.started_at)}")
    console.print()


@app.command()
def history(
    limit: int = typer.Option(10, "--lines", "-n", help="Number of runs to show"),
) -> None:
    """List recent export and import runs."""

    async def _history(engine: SyncEngine) -> list:
        return await engine.db.list_sync_runs(limit=limit)

    runs = _run_with_engine(_history)
    if not runs:
        console.print("[dim]No sync runs yet.[/dim]")
        return

    table = Table(title="Sync runs")
    table.add_column("#", justify="right")
    table.add_column("Direction", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Started")
    table.add_column("Remote device")
    table.add_column("File", overflow="fold")
    for run in runs:
        color = {"completed": "green", "failed": "red"}.get(run.status, "yellow")
        table.add_row(
            str(run.id),
            run.direction,
            f"[{color}]{run.status}[/{color}]",
            _human_time(run.started_at),
            run.remote_device_id or "—",
            run.file_path or "—",
        )
    console.print(table)


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    sync: bool = typer.Option(False, "--sync", help="Show sync.log (JSON) instead of mirasync.log"),
) -> None:
    """Show recent log output."""
    path = log_file(load_config().log_dir, sync=sync)
    if not path.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {path}")
        raise typer.Exit(1)

    with open(path, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        _print_log_line(line)


def _log_line_style(line: str) -> str | None:
    """Return a Rich style based on the structlog level found in *line*."""
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
# Lists / language
# ---------------------------------------------------------------------------


lists_app = typer.Typer(name="lists", help="Manage the local lists.", add_completion=False)
app.add_typer(lists_app)


def _library(engine: SyncEngine) -> Library:
    return Library(engine.db, device_language=load_config().language.device_language or None)


@lists_app.command(name="show")
def lists_show() -> None:
    """Show local lists with their item counts."""

    async def _show(engine: SyncEngine) -> list[tuple]:
        rows = []
        for media_list in await engine.db.list_lists():
            items = await engine.db.list_list_items(media_list.id)
            rows.append((media_list, len(items)))
        return rows

    rows = _run_with_engine(_show)
    if not rows:
        console.print("[dim]No lists yet.[/dim]")
        return

    table = Table(title="Lists")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Items", justify="right")
    table.add_column("Default", no_wrap=True)
    for media_list, count in rows:
        table.add_row(media_list.id, media_list.name, str(count), "yes" if media_list.is_default else "")
    console.print(table)


@lists_app.command(name="create")
def lists_create(name: str = typer.Argument(help="List name")) -> None:
    """Create a list (the default Watchlist is created first if missing)."""
    if not name.strip():
        console.print("[red]List name cannot be empty.[/red]")
        raise typer.Exit(1)

    async def _create(engine: SyncEngine) -> MediaList:
        library = _library(engine)
        await library.ensure_default_list()
        return await library.create_list(name)

    created = _run_with_engine(_create)
    console.print(f"[green]Created[/green] {created.name} ({created.id})")


@lists_app.command(name="rename")
def lists_rename(
    list_id: str = typer.Argument(help="List id (see 'lists show')"),
    name: str = typer.Argument(help="New name"),
) -> None:
    """Rename a list."""

    async def _rename(engine: SyncEngine) -> bool:
        return await _library(engine).rename_list(list_id, name)

    if not _run_with_engine(_rename):
        console.print(f"[yellow]List not found:[/yellow] {list_id}")
        raise typer.Exit(1)
    console.print(f"[green]Renamed[/green] {list_id} to {name.strip()}")


@lists_app.command(name="delete")
def lists_delete(list_id: str = typer.Argument(help="List id (see 'lists show')")) -> None:
    """Delete a list; the deletion is carried by the next export."""

    async def _delete(engine: SyncEngine) -> bool:
        return await _library(engine).delete_list(list_id)

    try:
        deleted = _run_with_engine(_delete)
    except DefaultListError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc
    if not deleted:
        console.print(f"[yellow]List not found:[/yellow] {list_id}")
        raise typer.Exit(1)
    console.print(f"[green]Deleted[/green] {list_id}")


@app.command()
def language(
    value: str = typer.Argument(SYSTEM_LANGUAGE, help=f"One of: {SYSTEM_LANGUAGE}, {', '.join(SUPPORTED_LANGUAGES)}"),
) -> None:
    """Set the display language preference."""
    if value != SYSTEM_LANGUAGE and value not in SUPPORTED_LANGUAGES:
        console.print(f"[red]Unsupported language:[/red] {value}")
        raise typer.Exit(1)

    async def _set(engine: SyncEngine) -> str:
        return await _library(engine).set_language(value)

    resolved = _run_with_engine(_set)
    console.print(f"[green]Language[/green] {value} → {resolved}")


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


def _sections(cfg: AppConfig) -> dict:
    return {
        "storage": cfg.storage,
        "sync": cfg.sync,
        "logging": cfg.logging,
        "language": cfg.language,
    }


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration."""
    cfg = load_config()
    console.print("\n[bold]Current Configuration[/bold]\n")
    for name, section in _sections(cfg).items():
        console.print(f"[bold cyan]\\[{name}][/bold cyan]")
        for key, value in section.model_dump(mode="python").items():
            console.print(f"  {key} = {value if value != '' else '[dim](not set)[/dim]'}")
        console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. sync.indent"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. mirasync config set logging.log_level debug)."""
    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. sync.indent).[/red]")
        raise typer.Exit(1)
    section_name, field_name = parts

    cfg = load_config()
    sections = _sections(cfg)
    if section_name not in sections:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(sections)}[/dim]")
        raise typer.Exit(1)

    section_model = sections[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model).model_validate(section_data)
    except ValueError as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)
    console.print(f"[green]Set[/green] {key} = {coerced}")


def _coerce_value(raw: str, field_type: object) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)
    if field_type is int:
        return int(raw)
    return raw
