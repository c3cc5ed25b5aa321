"""Command line interface for codevec."""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, NoReturn, Optional

import click
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import CONFIG_DIR_NAME, CONFIG_FILE_NAME, Config, ConfigManager, EmbeddingConfig
from .errors import CodevecError
from .indexing.indexer import IndexingStats
from .services.code_search_service import (
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_SYMBOL_LIMIT,
    CodeSearchService,
    format_results,
)

console = Console()

PROVIDER_DEFAULT_DIMENSIONS = {
    "sentence-transformers": 384,
    "voyage-ai": 1024,
    "hash": 384,
}


def _fail(message: str) -> NoReturn:
    console.print(f"❌ {message}", style="red", markup=False)
    sys.exit(1)


def _load_config(ctx: click.Context) -> Config:
    config_manager: ConfigManager = ctx.obj["config_manager"]
    try:
        return config_manager.load()
    except ValueError as e:
        _fail(str(e))


@contextmanager
def _open_service(ctx: click.Context) -> Iterator[CodeSearchService]:
    """Open the service for the current project; CodevecErrors exit with status 1."""
    config = _load_config(ctx)
    try:
        service = CodeSearchService.open(config, console)
    except (CodevecError, ValueError) as e:
        _fail(str(e))

    try:
        yield service
    except CodevecError as e:
        _fail(str(e))
    finally:
        service.close()


def _print_stats(stats: IndexingStats) -> None:
    style = "yellow" if stats.failed_files or stats.cancelled else "green"
    console.print(f"✅ {stats.summary()} ({stats.duration:.1f}s)", style=style)
    for path, reason in sorted(stats.failed_files.items()):
        console.print(f"   ⚠️  {path}: {reason}", style="yellow", markup=False)


@click.group()
@click.option("--config", "-c", type=click.Path(exists=False), help="Config file path")
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, file_okay=False),
    help="Start directory for config discovery (walks up to find .codevec/)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="codevec")
@click.pass_context
def cli(ctx, config: Optional[str], path: Optional[str], verbose: bool):
    """Local semantic code search over an HNSW index.

    \b
    GETTING STARTED:
      1. codevec init                 # Write .codevec/config.json
      2. codevec index                # Chunk, embed and store every source file
      3. codevec search "open a tcp connection"

    \b
    CONFIGURATION:
      Config file: .codevec/config.json
      Index files: .codevec/index/index.hnsw and metadata.json

      Exclusions respect exclude_dirs, hidden files and the root .gitignore.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    # Suppress per-request noise from the HTTP client
    logging.getLogger("httpx").setLevel(logging.WARNING)

    if config:
        ctx.obj["config_manager"] = ConfigManager(Path(config))
    else:
        start_dir = Path(path).resolve() if path else None
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack(start_dir)
    ctx.obj["start_dir"] = Path(path).resolve() if path else Path.cwd().resolve()


@cli.command()
@click.option("--force", "-f", is_flag=True, help="Overwrite existing configuration")
@click.option(
    "--embedding-provider",
    type=click.Choice(["sentence-transformers", "voyage-ai", "hash"]),
    default="sentence-transformers",
    show_default=True,
    help="Embedding provider",
)
@click.option("--dimension", type=int, help="Vector dimension (default depends on provider)")
@click.option("--max-file-size", type=int, help="Maximum file size to index in bytes")
@click.pass_context
def init(
    ctx,
    force: bool,
    embedding_provider: str,
    dimension: Optional[int],
    max_file_size: Optional[int],
):
    """Create .codevec/config.json in the current (or --path) directory."""
    project_dir: Path = ctx.obj["start_dir"]
    config_path = project_dir / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    config_manager = ConfigManager(config_path)

    if config_path.exists() and not force:
        _fail(f"Configuration already exists at {config_path} (use --force to overwrite)")

    config = Config(
        codebase_dir=project_dir,
        embedding=EmbeddingConfig(
            provider=embedding_provider,
            dimension=dimension or PROVIDER_DEFAULT_DIMENSIONS[embedding_provider],
        ),
    )
    if max_file_size is not None:
        config.max_file_size = max_file_size

    config_manager.save(config)
    console.print(f"✅ Initialized configuration at {config_path}", style="green")
    console.print(f"   Embedding provider: {embedding_provider}", style="dim")
    console.print(f"   Languages: {', '.join(config.language_names())}", style="dim")


@cli.command()
@click.option(
    "--incremental",
    "-i",
    is_flag=True,
    help="Skip files unchanged since the last run and drop deleted files",
)
@click.pass_context
def index(ctx, incremental: bool):
    """Index the codebase into the vector store."""
    with _open_service(ctx) as service:
        console.print(f"📂 Indexing {service.root}", style="blue")
        stats = service.index(incremental=incremental)
        _print_stats(stats)


@cli.command()
@click.pass_context
def reindex(ctx):
    """Rebuild the whole index from scratch.

    The new index is built beside the current one and swapped in when
    complete.
    """
    with _open_service(ctx) as service:
        console.print(f"🔄 Reindexing {service.root}", style="blue")
        stats = service.reindex(background=False)
        _print_stats(stats)


@cli.command()
@click.argument("query")
@click.option("--language", "-l", help="Only return chunks in this language")
@click.option(
    "--limit", "-n", type=int, default=DEFAULT_SEARCH_LIMIT, show_default=True,
    help="Maximum number of results",
)
@click.pass_context
def search(ctx, query: str, language: Optional[str], limit: int):
    """Semantic search by natural-language QUERY."""
    with _open_service(ctx) as service:
        results = service.search(query, language, limit)
        if not results:
            console.print(
                "No results found. The index may be empty, or no matching code was found.",
                style="yellow",
            )
            return
        console.print(
            format_results(results, True), markup=False, highlight=False, soft_wrap=True
        )


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", "-l", help="Only return chunks in this language")
@click.option(
    "--limit", "-n", type=int, default=DEFAULT_SEARCH_LIMIT, show_default=True,
    help="Maximum number of results",
)
@click.pass_context
def similar(ctx, file: str, language: Optional[str], limit: int):
    """Find indexed code similar to the contents of FILE."""
    code = Path(file).read_text(encoding="utf-8")
    with _open_service(ctx) as service:
        results = service.find_similar(code, language, limit)
        if not results:
            console.print("No similar code found.", style="yellow")
            return
        console.print(
            format_results(results, True), markup=False, highlight=False, soft_wrap=True
        )


@cli.command("find-symbol")
@click.argument("name")
@click.option("--kind", "-k", help="Exact symbol kind, e.g. function_definition")
@click.option(
    "--limit", "-n", type=int, default=DEFAULT_SYMBOL_LIMIT, show_default=True,
    help="Maximum number of results",
)
@click.pass_context
def find_symbol(ctx, name: str, kind: Optional[str], limit: int):
    """Find symbols whose name contains NAME (case-insensitive)."""
    with _open_service(ctx) as service:
        records = service.find_symbol(name, kind, limit)
        if not records:
            console.print(f"No symbols matching '{name}' found in the index.", style="yellow")
            return
        console.print(
            format_results(records, False), markup=False, highlight=False, soft_wrap=True
        )


@cli.command("list-files")
@click.option("--language", "-l", help="Only list files in this language")
@click.pass_context
def list_files(ctx, language: Optional[str]):
    """List the files currently in the index."""
    with _open_service(ctx) as service:
        files = service.list_files(language)
        if not files:
            console.print("No files in the index.", style="yellow")
            return
        console.print(f"{len(files)} files indexed:")
        for file_path in files:
            console.print(file_path, markup=False, highlight=False, soft_wrap=True)


@cli.command()
@click.pass_context
def status(ctx):
    """Show what the index holds."""
    with _open_service(ctx) as service:
        info = service.index_status()

        table = Table(title="codevec index status")
        table.add_column("Component", style="cyan")
        table.add_column("Value")
        table.add_row("Root", str(info.root))
        table.add_row("Store", str(info.store_dir))
        table.add_row("Chunks", str(info.chunk_count))
        table.add_row("Files", str(info.file_count))
        table.add_row("Languages", ", ".join(info.languages) or "-")
        table.add_row("Embedding", f"{info.provider} ({info.model})")
        table.add_row("Reindexing", "yes" if info.reindexing else "no")
        console.print(table)


@cli.command()
@click.argument("path")
@click.pass_context
def read(ctx, path: str):
    """Print a file from the indexed root; PATH is relative to the root."""
    with _open_service(ctx) as service:
        click.echo(service.read_file(path), nl=False)


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n❌ Interrupted by user", style="red")
        sys.exit(1)


if __name__ == "__main__":
    main()
