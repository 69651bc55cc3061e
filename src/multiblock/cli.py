"""CLI for inspecting a multiblock data directory.

Read-only views over boards, connections, composed contexts and memory.
"""

import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .constants import DB_FILENAME
from .engine import MultiblockEngine
from .errors import MultiblockError
from .injection import MemoryFilterOptions, build_memory_context, extract_keywords
from .settings import configure_logging, get_data_dir, load_settings
from .store import BoardStore

console = Console()


def _open_store(data_dir: Path) -> BoardStore:
    return BoardStore(data_dir / DB_FILENAME)


def _engine_for(ctx, store: BoardStore, board_id: str) -> MultiblockEngine:
    """Engine acting as --user, or as the board's owner when none is given."""
    user_id = ctx.obj["user_id"]
    if user_id is None:
        board = store.get_board(board_id)
        if board is None:
            raise click.ClickException(f"Board not found: {board_id}")
        user_id = board.user_id
    return MultiblockEngine(ctx.obj["data_dir"], user_id, store=store, settings=ctx.obj["settings"])


@click.group()
@click.option(
    "--data-path",
    envvar="MULTIBLOCK_PATH",
    type=click.Path(path_type=Path),
    help="Path to the data directory",
)
@click.option(
    "--user",
    "user_id",
    envvar="MULTIBLOCK_USER",
    help="Act as this user (defaults to the board owner)",
)
@click.pass_context
def cli(ctx, data_path, user_id):
    """Multiblock - context composition for connected chat blocks."""
    ctx.ensure_object(dict)
    data_dir = data_path or get_data_dir()
    settings = load_settings(data_dir)
    to_file = bool(settings["log_to_file"]) and data_dir.exists()
    configure_logging(data_dir, settings["log_level"], to_file=to_file)
    ctx.obj["data_dir"] = data_dir
    ctx.obj["user_id"] = user_id
    ctx.obj["settings"] = settings


@cli.command()
@click.pass_context
def status(ctx):
    """Show record counts."""
    store = _open_store(ctx.obj["data_dir"])
    try:
        counts = store.counts()
    finally:
        store.close()

    console.print(f"Data directory: [cyan]{ctx.obj['data_dir']}[/cyan]")
    console.print(
        f"[bold]{counts['boards']}[/bold] boards, "
        f"[bold]{counts['blocks']}[/bold] blocks, "
        f"[bold]{counts['messages']}[/bold] messages"
    )
    console.print(
        f"[bold]{counts['connections']}[/bold] connections, "
        f"[bold]{counts['memory']}[/bold] memory items, "
        f"[bold]{counts['events']}[/bold] events"
    )


@cli.command()
@click.argument("board_id")
@click.pass_context
def connections(ctx, board_id):
    """List the connections of a board."""
    store = _open_store(ctx.obj["data_dir"])
    try:
        engine = _engine_for(ctx, store, board_id)
        engine.access.require_board(engine.user_id, board_id)
        conns = engine.graph.board_connections(board_id)

        if not conns:
            console.print("[dim]No connections[/dim]")
            return

        table = Table(title=f"Connections on {board_id}")
        table.add_column("ID", style="dim")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Type")
        table.add_column("Enabled")

        for conn in conns:
            source = store.get_block(conn.from_block)
            target = store.get_block(conn.to_block)
            table.add_row(
                conn.id,
                source.title if source else conn.from_block,
                target.title if target else conn.to_block,
                conn.context_type,
                "[green]yes[/green]" if conn.enabled else "[red]no[/red]",
            )
        console.print(table)
    except MultiblockError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()


@cli.command()
@click.argument("block_id")
@click.option("--json", "as_json", is_flag=True, help="Print the full composed context as JSON")
@click.pass_context
def context(ctx, block_id, as_json):
    """Show the composed context for a block."""
    store = _open_store(ctx.obj["data_dir"])
    try:
        block = store.get_block(block_id)
        if block is None:
            raise click.ClickException(f"Block not found: {block_id}")
        engine = _engine_for(ctx, store, block.board_id)
        composed = engine.compose_context(block_id)
    except MultiblockError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if as_json:
        click.echo(json.dumps(composed.model_dump(mode="json"), indent=2))
        return

    console.print(f"[bold]{block.title}[/bold] [dim]({block_id})[/dim]")
    console.print(
        f"{len(composed.block_contexts)} sources, "
        f"{len(composed.memory.included_items)} memory items"
        + (" [yellow](memory truncated)[/yellow]" if composed.memory_truncated else "")
    )
    console.print()
    if composed.content:
        console.print(composed.content, markup=False)
    else:
        console.print("[dim]No context[/dim]")


@cli.command()
@click.argument("board_id")
@click.option("--block", "block_id", help="Only memory visible to this block")
@click.option("--max-chars", type=int, help="Character budget (default from settings)")
@click.pass_context
def memory(ctx, board_id, block_id, max_chars):
    """Show board memory as it would be injected into a prompt."""
    options = MemoryFilterOptions(max_chars=max_chars or int(ctx.obj["settings"]["max_memory_chars"]))
    store = _open_store(ctx.obj["data_dir"])
    try:
        engine = _engine_for(ctx, store, board_id)
        if block_id:
            result = engine.memory_for_block(block_id, options)
        else:
            result = build_memory_context(engine.memory.list_items(board_id), options)
    except MultiblockError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if not result.included_items and not result.excluded_items:
        console.print("[dim]No memory[/dim]")
        return

    console.print(result.formatted_content, markup=False)
    console.print()
    console.print(
        f"[dim]{len(result.included_items)} included, {len(result.excluded_items)} excluded, "
        f"{result.char_count} chars[/dim]"
    )
    if result.was_truncated:
        console.print(f"[yellow]Truncated to fit {options.max_chars} chars[/yellow]")


@cli.command()
@click.argument("text")
def keywords(text):
    """Extract keywords from TEXT."""
    found = extract_keywords(text)
    if found:
        console.print(", ".join(found))
    else:
        console.print("[dim]No keywords[/dim]")


@cli.command()
@click.option("-n", "--max-count", default=20, help="Number of events to show")
@click.pass_context
def log(ctx, max_count):
    """Show recent events, newest first."""
    store = _open_store(ctx.obj["data_dir"])
    try:
        events = store.event_store.read_recent(max_count)
    finally:
        store.close()

    if not events:
        console.print("[dim]No events[/dim]")
        return

    for event in events:
        ts = event.ts.strftime("%Y-%m-%d %H:%M:%S")
        target = event.data.get("title") or event.data.get("id", "")
        console.print(f"[dim]{ts}[/dim] [cyan]{event.op}[/cyan] {target} [dim]by {event.actor_id}[/dim]")


if __name__ == "__main__":
    cli()
