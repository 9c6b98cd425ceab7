"""Typer-based CLI for chatvault."""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress
from rich.table import Table

from .config import ChatVaultConfig
from .errors import ArchiveError, StoreInitError
from .importer import import_archive
from .ledger import read_ledger_tail
from .store import check_search_index, open_store, search_messages

app = typer.Typer(
    name="chatvault",
    help="chatvault - ChatGPT export archive to searchable SQLite",
    add_completion=False,
)

console = Console()


def _load_config(output: Optional[str]) -> ChatVaultConfig:
    config = ChatVaultConfig.from_env()
    if output:
        config.db_path = Path(output).expanduser()
    return config


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Log pipeline details",
    ),
):
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@app.command("import")
def import_command(
    archive: str = typer.Argument(..., help="Path to the ChatGPT export ZIP"),
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="SQLite database path (default: CHATVAULT_DB_PATH or ./conversations.db)",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-w",
        help="Worker threads for parsing and asset resolution",
    ),
    fresh: bool = typer.Option(
        False,
        "--fresh",
        help="Drop existing tables before importing",
    ),
    keep_hidden: bool = typer.Option(
        False,
        "--keep-hidden",
        help="Keep hidden and empty messages on the thread",
    ),
):
    """Import an export archive into the SQLite store.

    Malformed conversations are skipped with a warning; an unreadable archive
    or database exits with code 1.
    """
    try:
        config = _load_config(output)
        if workers is not None:
            config.max_workers = max(1, workers)
        if keep_hidden:
            config.skip_hidden_messages = False
    except (OSError, ValueError) as e:
        console.print(f"[red]Error: invalid configuration: {e}[/red]")
        raise typer.Exit(code=1)

    console.print(f"[green]Importing[/green] {archive} -> {config.db_path}")

    try:
        with Progress(console=console, transient=True) as progress:
            task = progress.add_task("Conversations", total=None)

            def _on_progress(done: int, total: int) -> None:
                progress.update(task, completed=done, total=total)

            summary = import_archive(
                Path(archive),
                config,
                fresh=fresh,
                progress_callback=_on_progress,
            )
    except ArchiveError as e:
        console.print(f"[red]Archive error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    except StoreInitError as e:
        console.print(f"[red]Database error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Import Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Conversations", str(summary.conversations_total))
    table.add_row("Imported", f"[green]{summary.conversations_imported}[/green]")
    table.add_row("Skipped", f"[yellow]{summary.conversations_skipped}[/yellow]")
    table.add_row("Empty threads", str(len(summary.empty_conversations)))
    table.add_row("Messages", str(summary.messages_written))
    table.add_row("Assets", str(summary.assets_written))
    table.add_row("Missing asset payloads", str(summary.assets_missing))
    console.print(table)

    for skipped in summary.skipped:
        label = skipped.conversation_id or f"#{skipped.index}"
        console.print(f"[yellow]  skipped {escape(label)}: {escape(skipped.reason)}[/yellow]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Text to search for (matched as a phrase)"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum results"),
):
    """Full-text search over imported messages and conversation titles."""
    if not query.strip():
        console.print("[red]Error: empty query[/red]")
        raise typer.Exit(code=1)

    config = _load_config(db)
    if not config.db_path.exists():
        console.print(f"[red]Error: database not found: {config.db_path}[/red]")
        raise typer.Exit(code=1)

    try:
        conn = open_store(config.db_path)
    except StoreInitError as e:
        console.print(f"[red]Database error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    try:
        rows = search_messages(conn, query=query, limit=limit)
    finally:
        conn.close()

    if not rows:
        console.print("[dim]No matches[/dim]")
        return

    table = Table(title=f"{len(rows)} match(es) for {query!r}")
    table.add_column("Conversation", style="cyan")
    table.add_column("#", justify="right")
    table.add_column("Role", style="magenta")
    table.add_column("Snippet", style="dim")
    for row in rows:
        table.add_row(
            escape(row["title"]),
            str(row["message_order"]),
            row["author_role"],
            escape(row["snippet"] or ""),
        )
    console.print(table)


@app.command()
def verify(
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Check that the search index matches the messages table."""
    config = _load_config(db)
    if not config.db_path.exists():
        console.print(f"[red]Error: database not found: {config.db_path}[/red]")
        raise typer.Exit(code=1)

    try:
        conn = open_store(config.db_path)
    except StoreInitError as e:
        console.print(f"[red]Database error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)

    try:
        result = check_search_index(conn)
    finally:
        conn.close()

    if result["orphaned"] or result["unindexed"]:
        console.print(
            f"[red]Search index out of sync: {result['orphaned']} orphaned, "
            f"{result['unindexed']} unindexed[/red]"
        )
        raise typer.Exit(code=1)
    console.print("[green]Search index is in sync[/green]")


ledger_app = typer.Typer(help="Import ledger commands")
app.add_typer(ledger_app, name="ledger")


@ledger_app.command("tail")
def ledger_tail(
    n: int = typer.Option(20, "--n", help="Number of recent events to display"),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite database path"),
):
    """Display the last N events from the import ledger."""
    config = _load_config(db)
    ledger_path = config.resolved_ledger_path
    if ledger_path is None:
        console.print("[yellow]Ledger is disabled[/yellow]")
        return

    events = read_ledger_tail(ledger_path, n=n)
    if not events:
        console.print("[dim]No events in ledger[/dim]")
        return

    table = Table(title=f"Last {len(events)} Ledger Event(s)")
    table.add_column("Timestamp (UTC)", style="cyan", no_wrap=True)
    table.add_column("Event Type", style="magenta", no_wrap=True)
    table.add_column("Conversation", style="yellow")
    table.add_column("Payload", style="dim")

    for event in events:
        payload_str = str(event.payload)
        if len(payload_str) > 60:
            payload_str = payload_str[:57] + "..."
        table.add_row(
            event.ts.strftime("%Y-%m-%d %H:%M:%S"),
            event.event_type,
            event.conversation_id or "-",
            escape(payload_str),
        )

    console.print(table)


@app.command()
def version():
    """Show chatvault version."""
    from . import __version__
    console.print(f"chatvault v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
