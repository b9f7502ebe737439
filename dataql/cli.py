"""Command line interface for DataQL."""

import logging
from typing import Optional, Tuple

import click
import duckdb
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .cache import CacheManager
from .config import Config, config_manager
from .mqreader import DEFAULT_MAX_MESSAGES
from .pipeline import SourcePipeline
from .queryerror import enhance_error
from .resolvers.stdin import FORMAT_EXTENSIONS
from .utils.error_handling import DataQLError
from .utils.formatting import format_size


def setup_logging(verbose: bool) -> None:
    """Route library logging through rich when verbose."""
    if not verbose:
        logging.basicConfig(level=logging.WARNING, format="%(message)s")
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool):
    """DataQL - query files, URLs, S3 objects and queues with SQL."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = Console()
    setup_logging(verbose)

    try:
        if config:
            config_manager.config_path = config
            config_manager.reload()
        ctx.obj["config"] = config_manager.config
    except ValueError as e:
        click.echo(f"Configuration error: {e}", err=True)
        ctx.exit(1)


def _open_cache(ctx: click.Context, cache_dir: Optional[str]) -> CacheManager:
    config = ctx.obj["config"]
    return CacheManager(
        cache_dir=cache_dir or config.cache.cache_dir,
        enabled=True,
        lock_timeout=config.cache.lock_timeout_seconds,
    )


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


INPUT_FORMAT_OPTION = click.option(
    "--input-format",
    "-f",
    type=click.Choice(sorted(FORMAT_EXTENSIONS), case_sensitive=False),
    default=None,
    help="Format of data piped on stdin (default: config, or csv)",
)


def _with_input_format(config: Config, input_format: Optional[str]) -> Config:
    if not input_format:
        return config
    config = config.model_copy(deep=True)
    config.remote.stdin_format = input_format.lower()
    return config


# === Loading and querying ===


@cli.command("load")
@click.argument("sources", nargs=-1, required=True)
@click.option("--no-cache", is_flag=True, help="Import without reading or writing the cache")
@INPUT_FORMAT_OPTION
@click.pass_context
def load(
    ctx: click.Context,
    sources: Tuple[str, ...],
    no_cache: bool,
    input_format: Optional[str],
):
    """Import SOURCES and show the resulting tables.

    A source of "-" reads from standard input.
    """
    console = ctx.obj["console"]
    config = _with_input_format(ctx.obj["config"], input_format)
    if no_cache:
        config = config.model_copy(deep=True)
        config.cache.enabled = False

    try:
        with SourcePipeline(config=config) as pipeline:
            result = pipeline.load(list(sources))

            if result.database_path:
                status = "[green]cache hit[/green]" if result.cache_hit else "[yellow]imported[/yellow]"
                console.print(f"[bold cyan]Database:[/bold cyan] {result.database_path}")
                console.print(f"[dim]Status:[/dim] {status}")

                table = Table(show_header=True, header_style="bold blue")
                table.add_column("Table", style="cyan")
                for name in result.tables:
                    table.add_row(name)
                console.print(table)
                console.print(f"[dim]Total rows:[/dim] {result.total_rows:,}")

            for reader in result.readers:
                console.print(f"[dim]Queue source:[/dim] {type(reader).__name__}")
    except DataQLError as e:
        _fail(str(e))


@cli.command("query")
@click.argument("sources", nargs=-1, required=True)
@click.option("--query", "-q", "sql", required=True, help="SQL to run against the sources")
@INPUT_FORMAT_OPTION
@click.pass_context
def query(
    ctx: click.Context,
    sources: Tuple[str, ...],
    sql: str,
    input_format: Optional[str],
):
    """Import SOURCES and run a SQL query against them."""
    console = ctx.obj["console"]
    config = _with_input_format(ctx.obj["config"], input_format)

    try:
        with SourcePipeline(config=config) as pipeline:
            result = pipeline.load(list(sources))
            if not result.database_path:
                _fail("no file sources to query")

            conn = duckdb.connect(result.database_path, read_only=True)
            try:
                cursor = conn.execute(sql)
                columns = [d[0] for d in cursor.description or []]
                rows = cursor.fetchall()
            except duckdb.Error as e:
                _fail(str(enhance_error(e)))
            finally:
                conn.close()
    except DataQLError as e:
        _fail(str(e))

    table = Table(show_header=True, header_style="bold blue")
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row))
    console.print(table)
    console.print(f"[dim]{len(rows):,} rows[/dim]")


@cli.command("peek")
@click.argument("url")
@click.option(
    "--max-messages",
    "-n",
    type=int,
    default=None,
    help=f"Messages to read (default: config, or {DEFAULT_MAX_MESSAGES})",
)
@click.pass_context
def peek(ctx: click.Context, url: str, max_messages: Optional[int]):
    """Read messages from a queue URL without consuming them."""
    console = ctx.obj["console"]
    config = ctx.obj["config"]
    limit = max_messages or config.queue.max_messages

    try:
        with SourcePipeline(config=config) as pipeline:
            reader = pipeline.registry.new_reader_from_url(url)
            with reader:
                messages = reader.peek(limit)
    except DataQLError as e:
        _fail(str(e))

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="cyan")
    table.add_column("Timestamp", style="dim")
    table.add_column("Body")
    for message in messages:
        timestamp = message.timestamp.isoformat() if message.timestamp else ""
        table.add_row(message.id, timestamp, message.body)
    console.print(table)


# === Cache management commands ===


@cli.group()
def cache():
    """Cache management commands.

    Manage imported DuckDB databases kept under the cache directory.
    """
    pass


@cache.command("list")
@click.option("--cache-dir", "-d", type=click.Path(), help="Cache directory")
@click.pass_context
def cache_list(ctx: click.Context, cache_dir: Optional[str]):
    """List cached imports, newest first."""
    console = ctx.obj["console"]

    try:
        cache_mgr = _open_cache(ctx, cache_dir)
        entries = cache_mgr.list_entries()
    except DataQLError as e:
        _fail(str(e))

    if not entries:
        console.print("[dim]No cached entries.[/dim]")
        return

    table = Table(title="Cache Entries", show_header=True, header_style="bold blue")
    table.add_column("Key", style="cyan")
    table.add_column("Cached At", style="dim")
    table.add_column("Tables")
    table.add_column("Rows", justify="right", style="green")
    table.add_column("Size", justify="right", style="yellow")

    for entry in entries:
        table.add_row(
            entry.cache_key,
            entry.cached_at.strftime("%Y-%m-%d %H:%M:%S"),
            ", ".join(entry.tables),
            f"{entry.total_rows:,}",
            format_size(entry.size_bytes),
        )
    console.print(table)


@cache.command("clear")
@click.argument("key", required=False)
@click.option("--all", "clear_all", is_flag=True, help="Remove every cached entry")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.option("--cache-dir", "-d", type=click.Path(), help="Cache directory")
@click.pass_context
def cache_clear(
    ctx: click.Context,
    key: Optional[str],
    clear_all: bool,
    yes: bool,
    cache_dir: Optional[str],
):
    """Remove one cached entry by KEY, or everything with --all."""
    if not key and not clear_all:
        _fail("specify a cache key or --all")

    try:
        cache_mgr = _open_cache(ctx, cache_dir)

        if key:
            cache_mgr.clear_entry(key)
            click.echo(f"Removed cache entry {key}.")
            return

        if not yes:
            if not click.confirm("This will delete all cached data. Continue?"):
                click.echo("Cancelled.")
                return

        result = cache_mgr.clear_all()
    except DataQLError as e:
        _fail(str(e))

    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)
    click.echo(f"Cleared {result.cleared} cache files.")


@cache.command("stats")
@click.option("--cache-dir", "-d", type=click.Path(), help="Cache directory")
@click.pass_context
def cache_stats(ctx: click.Context, cache_dir: Optional[str]):
    """Show cache directory, entry count and total size."""
    console = ctx.obj["console"]

    try:
        cache_mgr = _open_cache(ctx, cache_dir)
        stats = cache_mgr.stats()
    except DataQLError as e:
        _fail(str(e))

    console.print("[bold cyan]Cache Status[/bold cyan]")
    console.print()
    console.print(f"[dim]Directory:[/dim] {cache_mgr.get_cache_dir()}")
    console.print(f"[dim]Entries:[/dim] {stats.count:,}")
    console.print(f"[dim]Size:[/dim] {format_size(stats.total_bytes)}")


def main():
    """Entry point for the CLI application."""
    cli()


if __name__ == "__main__":
    main()
