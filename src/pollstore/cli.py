"""Command line interface for pollstore."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from pollstore.config import AppConfig
from pollstore.errors import ListingFailure, StoreUnavailable
from pollstore.models import Record
from pollstore.service import PollStore
from pollstore.sources.stortinget import StortingetClient

console = Console()
app = typer.Typer(help="pollstore - incremental cache of a polled document source")

BackendOption = typer.Option(None, "--backend", help="Storage backend: memory, sqlite or kv")
DbOption = typer.Option(None, "--db", help="SQLite database path")
SnapshotOption = typer.Option(None, "--snapshot", help="JSON snapshot for the memory backend")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _load_config(backend: Optional[str], db: Optional[Path], snapshot: Optional[Path]) -> AppConfig:
    try:
        return AppConfig.from_env(backend=backend, db_path=db, snapshot_path=snapshot)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _open_store(config: AppConfig) -> tuple[PollStore, StortingetClient]:
    client = StortingetClient(config.api_base, site_base=config.site_base, timeout=config.timeout)
    try:
        store = PollStore.from_config(config, client, base_dir=Path.cwd())
    except StoreUnavailable as exc:
        client.close()
        console.print(f"[red]Store unavailable:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    return store, client


def _records_table(records: List[Record]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Date")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("Attachments")
    for record in records:
        table.add_row(
            record.date.strftime("%Y-%m-%d %H:%M"),
            record.id,
            (record.title or "")[:100],
            str(len(record.attachment_ids())),
        )
    return table


@app.command()
def sync(
    backend: Optional[str] = BackendOption,
    db: Optional[Path] = DbOption,
    snapshot: Optional[Path] = SnapshotOption,
    verbose: bool = VerboseOption,
) -> None:
    """Poll the source once and fetch new or updated items."""
    _setup_logging(verbose)
    config = _load_config(backend, db, snapshot)
    store, client = _open_store(config)
    try:
        stats = store.sync()
    except ListingFailure as exc:
        console.print(f"[red]Listing failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    except StoreUnavailable as exc:
        console.print(f"[red]Store unavailable:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()
        client.close()

    console.print(
        f"Listed: {stats.listed}, in window: {stats.in_window}, new: {stats.new}, "
        f"changed: {stats.changed}, unchanged: {stats.unchanged}, "
        f"fetched: {stats.fetched}, failed: {stats.failed}"
    )
    if stats.failed_ids:
        console.print(f"[yellow]Retried next cycle:[/yellow] {', '.join(stats.failed_ids)}")


@app.command()
def show(
    record_id: str = typer.Argument(..., help="Record id"),
    backend: Optional[str] = BackendOption,
    db: Optional[Path] = DbOption,
    snapshot: Optional[Path] = SnapshotOption,
) -> None:
    """Print one stored record."""
    config = _load_config(backend, db, snapshot)
    store, client = _open_store(config)
    try:
        record = store.get_record(record_id)
    finally:
        store.close()
        client.close()

    if record is None:
        console.print(f"[yellow]No record {record_id}.[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[bold]{record.title or record.id}[/bold]")
    console.print(f"Date: {record.date.isoformat()}  Revision: {record.revision}")
    for label, value in (
        ("Status", record.status),
        ("Committee", record.committee),
        ("Department", record.department),
        ("Topic", record.topic),
        ("URL", record.url),
    ):
        if value:
            console.print(f"{label}: {value}")
    if record.body:
        console.print()
        console.print(record.body)
    for ref in record.attachments:
        console.print(f"- {ref.id or '-'}  {ref.title}")


@app.command(name="range")
def range_(
    start: datetime = typer.Argument(..., formats=["%Y-%m-%d"], help="First day"),
    end: datetime = typer.Argument(..., formats=["%Y-%m-%d"], help="Last day"),
    backend: Optional[str] = BackendOption,
    db: Optional[Path] = DbOption,
    snapshot: Optional[Path] = SnapshotOption,
) -> None:
    """List stored records dated between START and END, newest first."""
    _print_range(start.date(), end.date(), backend, db, snapshot)


@app.command()
def recent(
    days: int = typer.Option(7, help="Number of days to include"),
    backend: Optional[str] = BackendOption,
    db: Optional[Path] = DbOption,
    snapshot: Optional[Path] = SnapshotOption,
) -> None:
    """List stored records from the last DAYS days."""
    today = datetime.now(timezone.utc).date()
    _print_range(today - timedelta(days=days), today, backend, db, snapshot)


def _print_range(
    start: date, end: date, backend: Optional[str], db: Optional[Path], snapshot: Optional[Path]
) -> None:
    config = _load_config(backend, db, snapshot)
    store, client = _open_store(config)
    try:
        records = store.get_records_in_range(start, end)
    finally:
        store.close()
        client.close()

    if not records:
        console.print("[yellow]No records in range.[/yellow]")
        return
    console.print(_records_table(records))


@app.command()
def chunks(
    attachment_id: str = typer.Argument(..., help="Attachment (export) id"),
    backend: Optional[str] = BackendOption,
    db: Optional[Path] = DbOption,
    snapshot: Optional[Path] = SnapshotOption,
    verbose: bool = VerboseOption,
) -> None:
    """Print the chunks of an attachment, extracting them if needed."""
    _setup_logging(verbose)
    config = _load_config(backend, db, snapshot)
    store, client = _open_store(config)
    try:
        result = store.get_chunks_for_attachment(attachment_id)
    finally:
        store.close()
        client.close()

    if result is None:
        console.print(f"[yellow]No chunks available for {attachment_id}, try again later.[/yellow]")
        raise typer.Exit(code=1)
    for chunk in result:
        console.print(f"[bold]#{chunk.index}[/bold] ({len(chunk.text)} chars)")
        console.print(chunk.text)
        console.print()


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    attachment_ids: List[str] = typer.Argument(..., help="Attachment ids to search"),
    limit: int = typer.Option(10, help="Number of chunks to display"),
    backend: Optional[str] = BackendOption,
    db: Optional[Path] = DbOption,
    snapshot: Optional[Path] = SnapshotOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show the attachment chunks that best match a query."""
    _setup_logging(verbose)
    config = _load_config(backend, db, snapshot)
    store, client = _open_store(config)
    try:
        results = store.selector.select(attachment_ids, query, limit=limit)
    finally:
        store.close()
        client.close()

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Attachment")
    table.add_column("Chunk")
    table.add_column("Snippet")
    for result in results:
        snippet = result.chunk.text.replace("\n", " ")
        table.add_row(
            str(result.score), result.chunk.attachment_id, str(result.chunk.index), snippet[:180]
        )
    console.print(table)
