"""Lifelog command-line interface."""

import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

# Load .env file before importing config
load_dotenv()


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _settings(ctx: click.Context):
    from lifelog.config import Settings, get_settings

    storage_dir = ctx.obj.get("storage_dir")
    if storage_dir is None:
        return get_settings()
    return Settings(storage_dir=Path(storage_dir))


def _open_store(ctx: click.Context, console: Console):
    """Open the database, exiting with an error message on failure."""
    from lifelog.core.errors import LifelogError
    from lifelog.db import initialize

    try:
        return initialize(settings=_settings(ctx))
    except LifelogError as exc:
        console.print(f"[red]Cannot open database:[/] {escape(str(exc))}")
        sys.exit(1)


def _fail(console: Console, exc: Exception) -> None:
    console.print(f"[red]Error:[/] {escape(str(exc))}")
    sys.exit(1)


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value is not None else "-"


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--storage-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Storage directory (default: LIFELOG_STORAGE_DIR or .lifelog)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, storage_dir: str | None) -> None:
    """Lifelog - transcript storage, clustering and search."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["storage_dir"] = storage_dir
    setup_logging(verbose)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the database and apply schema migrations."""
    from lifelog.db.migrations import MIGRATIONS

    console = Console()
    with _open_store(ctx, console) as store:
        console.print(f"[green]Database ready:[/] {store.path}")
        console.print(f"  Schema version: {MIGRATIONS[-1].version}")


@cli.command()
@click.argument("export_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def ingest(ctx: click.Context, export_file: str) -> None:
    """Ingest lifelogs from a JSON export.

    Examples:
        lifelog ingest lifelogs.json
        lifelog -v ingest ~/exports/2024-05-01.json
    """
    from lifelog.core.errors import IngestError, LifelogError
    from lifelog.pipeline import IngestionPipeline
    from lifelog.sources import LifelogExportSource

    console = Console()
    source = LifelogExportSource(file_path=Path(export_file))

    with _open_store(ctx, console) as store:
        pipeline = IngestionPipeline(store)
        try:
            result = pipeline.sync(source)
        except IngestError as exc:
            console.print(f"[red]Ingest stopped:[/] {escape(str(exc))}")
            if exc.result is not None:
                console.print(f"  Stored before failure: {exc.result.processed}")
            sys.exit(1)
        except LifelogError as exc:
            _fail(console, exc)

    table = Table(title="Ingest Summary")
    table.add_column("Outcome", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Inserted", str(len(result.inserted)))
    table.add_row("Updated", str(len(result.updated)))
    table.add_row("Relabeled", str(len(result.relabeled)))
    table.add_row("Skipped", str(len(result.skipped)))
    table.add_row("Failed", str(len(result.failed)))
    console.print(table)

    for failure in (*result.skipped, *result.failed):
        console.print(f"  [yellow]{failure.external_log_id or '?'}[/]: {escape(failure.reason)}")


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", default=None, type=int, help="Max results")
@click.option("--raw", is_flag=True, help="Treat QUERY as an FTS5 expression")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int | None, raw: bool) -> None:
    """Search utterances using FTS.

    Examples:
        lifelog search budget
        lifelog search "budget OR forecast" --raw
    """
    from lifelog.core.errors import LifelogError
    from lifelog.services import ConversationRepository, UtteranceRepository

    console = Console()
    with _open_store(ctx, console) as store:
        try:
            hits = UtteranceRepository(store).search(query, limit, raw=raw)
        except LifelogError as exc:
            _fail(console, exc)

        if not hits:
            console.print("[yellow]No results found.[/]")
            return

        conversations = ConversationRepository(store)
        console.print(f"\n[bold]Search results for:[/] {escape(query)}\n")
        for i, hit in enumerate(hits, 1):
            utterance = hit.utterance
            conversation = conversations.fetch_by_id(utterance.conversation_id)
            title = conversation.title if conversation and conversation.title else "Untitled"
            display = escape(hit.snippet or utterance.text_content)
            display = display.replace("<mark>", "[bold yellow]").replace("</mark>", "[/]")
            console.print(
                Panel(
                    display,
                    title=f"#{i} [bold blue]{escape(title)}[/] (rank: {hit.rank:.2f})",
                    subtitle=(
                        f"[dim]conversation {utterance.conversation_id} · "
                        f"{_fmt_time(utterance.start_time)}[/]"
                    ),
                    title_align="left",
                    subtitle_align="left",
                    border_style="blue",
                )
            )


@cli.command()
@click.argument("conversation")
@click.option("--window", "-w", default=None, type=float, help="Time window in minutes")
@click.pass_context
def context(ctx: click.Context, conversation: str, window: float | None) -> None:
    """Show a conversation together with its surrounding conversations.

    CONVERSATION is an external lifelog id or a numeric conversation id.
    External ids win when both match.
    """
    from datetime import timedelta

    from lifelog.context import ContextResolver
    from lifelog.core.errors import LifelogError
    from lifelog.services import ConversationRepository

    console = Console()
    with _open_store(ctx, console) as store:
        try:
            found = ConversationRepository(store).fetch_by_external_id(conversation)
            if found is not None:
                conversation_id = found.id
            elif conversation.isdigit():
                conversation_id = int(conversation)
            else:
                console.print(f"[red]Conversation not found:[/] {escape(conversation)}")
                sys.exit(1)
            resolved = ContextResolver(store).resolve(
                conversation_id,
                timedelta(minutes=window) if window is not None else None,
            )
        except LifelogError as exc:
            _fail(console, exc)

    table = Table(title=f"Context ({resolved.mode.replace('_', ' ')})")
    table.add_column("", style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Title", style="cyan")
    for item in resolved.conversations:
        marker = ">" if item.id == resolved.anchor.id else ""
        table.add_row(
            marker,
            str(item.id),
            _fmt_time(item.start_time),
            _fmt_time(item.end_time),
            escape(item.title or "Untitled"),
        )
    console.print(table)

    if resolved.transcript:
        console.print(Panel(escape(resolved.transcript), title="Transcript", border_style="green"))


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show record counts by processing status."""
    from lifelog.core.models import ProcessingStatus
    from lifelog.services import ConversationRepository, SpeakerRepository, UtteranceRepository

    console = Console()
    settings = _settings(ctx)
    if not settings.database_path.exists():
        console.print("[yellow]No database found. Run 'lifelog init' first.[/]")
        return

    with _open_store(ctx, console) as store:
        conversations = ConversationRepository(store)
        table = Table(title=f"Lifelog Store ({store.path})")
        table.add_column("Item", style="cyan")
        table.add_column("Count", justify="right")
        table.add_row("Conversations", str(conversations.count()))
        for state in ProcessingStatus:
            table.add_row(f"  {state.value}", str(conversations.count(state)))
        table.add_row("Speakers", str(SpeakerRepository(store).count()))
        table.add_row("Utterances", str(UtteranceRepository(store).count()))
        console.print(table)


@cli.command()
@click.option("--limit", "-n", default=10, help="Max conversations")
@click.pass_context
def pending(ctx: click.Context, limit: int) -> None:
    """List conversations waiting for processing, oldest first."""
    from lifelog.services import ConversationRepository

    console = Console()
    with _open_store(ctx, console) as store:
        rows = ConversationRepository(store).fetch_pending_processing(limit)

    if not rows:
        console.print("[yellow]No pending conversations.[/]")
        return

    table = Table(title="Pending Conversations")
    table.add_column("ID", style="dim")
    table.add_column("External ID")
    table.add_column("Start")
    table.add_column("Event", style="dim")
    table.add_column("Title", style="cyan")
    for row in rows:
        table.add_row(
            str(row.id),
            row.external_log_id,
            _fmt_time(row.start_time),
            (row.logical_event_id or "-")[:8],
            escape(row.title or "Untitled"),
        )
    console.print(table)


@cli.command()
@click.pass_context
def speakers(ctx: click.Context) -> None:
    """List known speakers."""
    from lifelog.services import SpeakerRepository

    console = Console()
    with _open_store(ctx, console) as store:
        rows = SpeakerRepository(store).fetch_all()

    if not rows:
        console.print("[yellow]No speakers found.[/]")
        return

    table = Table(title="Speakers")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Primary user")
    for row in rows:
        table.add_row(str(row.id), escape(row.name), "[green]yes[/]" if row.is_primary_user else "")
    console.print(table)


@cli.command()
@click.argument("key")
@click.argument("value", required=False)
@click.pass_context
def setting(ctx: click.Context, key: str, value: str | None) -> None:
    """Show or change a stored application setting.

    Examples:
        lifelog setting primary_user_creator_id
        lifelog setting primary_user_creator_id alice
    """
    from lifelog.core.errors import LifelogError
    from lifelog.services import ApplicationSettingRepository

    console = Console()
    with _open_store(ctx, console) as store:
        repo = ApplicationSettingRepository(store)
        try:
            if value is None:
                current = repo.get_value(key)
                console.print(f"{key} = {escape(current) if current is not None else '[dim]unset[/]'}")
            else:
                repo.set_value(key, value)
                console.print(f"[green]Set[/] {key} = {escape(value)}")
        except LifelogError as exc:
            _fail(console, exc)


@cli.command()
@click.confirmation_option(prompt="Delete every conversation and utterance?")
@click.pass_context
def purge(ctx: click.Context) -> None:
    """Delete all conversations (utterances and suggestions follow)."""
    from lifelog.services import ConversationRepository

    console = Console()
    with _open_store(ctx, console) as store:
        deleted = ConversationRepository(store).delete_all()
    console.print(f"[green]Deleted {deleted} conversations[/]")


@cli.command()
@click.pass_context
def reindex(ctx: click.Context) -> None:
    """Rebuild the utterance full-text index."""
    console = Console()
    with _open_store(ctx, console) as store:
        store.rebuild_search_index()
    console.print("[green]Search index rebuilt[/]")


def main() -> None:
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
