from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import typer
from rich.console import Console
from rich.table import Table

from membank._version import __version__
from membank.builder import MemoryBankBuilder
from membank.config import MembankConfig
from membank.errors import MembankError, MemoryNotFoundError
from membank.logging import setup_logging
from membank.types import MemoryQuery, MemoryType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from membank.bank import MemoryBank
    from membank.types import Memory

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="membank",
    help="Membank: bounded, relevance-ranked memory store",
    no_args_is_help=True,
)


@app.callback()
def _main(
    ctx: typer.Context,
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Config file (defaults to ~/.membank + project layering)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    try:
        config = (
            MembankConfig.from_toml(config_path)
            if config_path is not None
            else MembankConfig.load()
        )
    except MembankError as exc:
        err_console.print(f"[red]Config error:[/red] {exc}")
        raise typer.Exit(1) from exc
    setup_logging("DEBUG" if verbose else config.log_level)
    ctx.obj = config


def _run(ctx: typer.Context, action: Callable[[MemoryBank], Awaitable[Any]]) -> Any:
    """Build a bank from the CLI config, run *action*, tear the bank down."""
    config: MembankConfig = ctx.obj

    async def runner() -> Any:
        bank = await MemoryBankBuilder(config).build()
        try:
            return await action(bank)
        finally:
            await bank.destroy()

    try:
        return asyncio.run(runner())
    except MemoryNotFoundError as exc:
        err_console.print(f"[yellow]{exc}[/yellow]")
        raise typer.Exit(1) from exc
    except MembankError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(1) from exc


def _print_memories(memories: list[Memory], title: str) -> None:
    if not memories:
        console.print("[dim]No memories found.[/dim]")
        return
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Importance", justify="right")
    table.add_column("Accesses", justify="right")
    table.add_column("Content")
    for memory in memories:
        table.add_row(
            memory.id,
            memory.type.value,
            f"{memory.importance:.2f}",
            str(memory.access_count),
            memory.content if len(memory.content) <= 80 else memory.content[:77] + "...",
        )
    console.print(table)


def _parse_metadata(pairs: list[str]) -> dict[str, Any]:
    """Parse ``key=value`` options; values are JSON when they parse as JSON."""
    metadata: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}")
        try:
            metadata[key] = json.loads(raw)
        except json.JSONDecodeError:
            metadata[key] = raw
    return metadata


@app.command()
def add(
    ctx: typer.Context,
    content: str = typer.Argument(..., help="Memory text"),
    memory_type: MemoryType = typer.Option(MemoryType.FACT, "--type", "-t"),
    importance: float | None = typer.Option(
        None, "--importance", "-i", min=0.0, max=1.0,
        help="Override the configured default importance",
    ),
    meta: list[str] = typer.Option([], "--meta", "-m", help="Metadata as key=value"),
) -> None:
    """Store a new memory."""
    metadata = _parse_metadata(meta) or None
    memory = _run(ctx, lambda bank: bank.add_memory(
        content, memory_type, metadata, importance=importance,
    ))
    console.print(f"[green]Added[/green] {memory.id}")


@app.command()
def get(
    ctx: typer.Context,
    memory_id: str = typer.Argument(..., help="Memory id"),
) -> None:
    """Show one memory (counts as an access)."""
    memory = _run(ctx, lambda bank: bank.get_memory(memory_id))
    if memory is None:
        err_console.print(f"[yellow]Memory {memory_id} not found[/yellow]")
        raise typer.Exit(1)
    console.print_json(data=memory.to_dict())


@app.command()
def search(
    ctx: typer.Context,
    keywords: list[str] = typer.Argument(None, help="Match any of these substrings"),
    memory_type: MemoryType | None = typer.Option(None, "--type", "-t"),
    min_importance: float | None = typer.Option(None, "--min-importance"),
    meta: list[str] = typer.Option([], "--meta", "-m", help="Require metadata key=value"),
    limit: int | None = typer.Option(None, "--limit", "-n"),
) -> None:
    """Filter memories by type, importance, keywords and metadata."""
    query = MemoryQuery(
        type=memory_type,
        min_importance=min_importance,
        keywords=tuple(keywords or ()),
        metadata=_parse_metadata(meta),
        limit=limit,
    )
    results = _run(ctx, lambda bank: bank.search_memories(query))
    _print_memories(results, "Search results")


@app.command()
def relevant(
    ctx: typer.Context,
    context: str = typer.Argument(..., help="Free text to rank memories against"),
    limit: int = typer.Option(10, "--limit", "-n"),
) -> None:
    """List the memories most relevant to a context."""
    results = _run(ctx, lambda bank: bank.get_relevant_memories(context, limit))
    _print_memories(results, f"Relevant to: {context}")


@app.command()
def update(
    ctx: typer.Context,
    memory_id: str = typer.Argument(..., help="Memory id"),
    content: str | None = typer.Option(None, "--content"),
    importance: float | None = typer.Option(None, "--importance", "-i", min=0.0, max=1.0),
    memory_type: MemoryType | None = typer.Option(None, "--type", "-t"),
) -> None:
    """Change fields of an existing memory."""
    fields: dict[str, Any] = {}
    if content is not None:
        fields["content"] = content
    if importance is not None:
        fields["importance"] = importance
    if memory_type is not None:
        fields["type"] = memory_type
    if not fields:
        err_console.print("[yellow]Nothing to update.[/yellow]")
        raise typer.Exit(1)
    _run(ctx, lambda bank: bank.update_memory(memory_id, fields))
    console.print(f"[green]Updated[/green] {memory_id}")


@app.command()
def delete(
    ctx: typer.Context,
    memory_id: str = typer.Argument(..., help="Memory id"),
) -> None:
    """Delete a memory."""
    _run(ctx, lambda bank: bank.delete_memory(memory_id))
    console.print(f"[green]Deleted[/green] {memory_id}")


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show collection statistics."""
    result = _run(ctx, lambda bank: bank.get_stats())
    table = Table(title="Memory bank", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total memories", str(result.total_memories))
    for memory_type, count in sorted(result.memories_by_type.items()):
        table.add_row(f"  {memory_type.value}", str(count))
    table.add_row("Average importance", f"{result.average_importance:.2f}")
    if result.storage_size is not None:
        table.add_row("Storage size (bytes)", str(result.storage_size))
    console.print(table)


@app.command()
def cleanup(ctx: typer.Context) -> None:
    """Evict low-value memories down to the configured capacity."""
    deleted = _run(ctx, lambda bank: bank.cleanup())
    console.print(f"Evicted {deleted} memories")


@app.command("export")
def export_command(
    ctx: typer.Context,
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to file"),
) -> None:
    """Export all memories as JSON."""
    payload = _run(ctx, lambda bank: bank.export_memories())
    if output is None:
        typer.echo(payload)
    else:
        output.write_text(payload)
        console.print(f"Exported to {output}")


@app.command("import")
def import_command(
    ctx: typer.Context,
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON export file"),
) -> None:
    """Import memories from a JSON export; malformed records are skipped."""
    payload = source.read_text()
    imported = _run(ctx, lambda bank: bank.import_memories(payload))
    console.print(f"Imported {imported} memories")


@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete every memory."""
    if not yes:
        typer.confirm("Delete all memories?", abort=True)
    _run(ctx, lambda bank: bank.clear_memories())
    console.print("[green]Cleared[/green]")


@app.command()
def version() -> None:
    """Show the membank version."""
    console.print(f"membank {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
