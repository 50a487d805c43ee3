

import os
from pathlib import Path
from typing import Dict, List, Optional
import typer
from rich.console import Console
from rich.table import Table
from lectern.core.cancel import CancelToken
from lectern.core.chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from lectern.core.embed import Embedder, OpenAIEmbeddingProvider, get_embedding_config
from lectern.core.errors import LecternError, StoreUnavailable
from lectern.core.ingest import ingest_directory, ingest_pdf, ingest_url
from lectern.core.logging_config import configure_logging
from lectern.core.pg_backend import PostgresBackend, get_database_url
from lectern.core.retrieve import DEFAULT_TOP_K, QueryEngine
from lectern.core.store import IndexStore
from lectern.cli.config_manager import SECRET_KEYS, get_config_manager

app = typer.Typer(help="Lectern CLI: PDF lecture indexing and semantic search")
console = Console()

# Persisted settings fill in whatever the environment leaves unset
get_config_manager().export_environment()

# Initialize structured logging
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
)


def _build_backend() -> PostgresBackend:
    return PostgresBackend(get_database_url())


def _build_store() -> IndexStore:
    """Wire the Postgres backend and the OpenAI embedder from the environment."""
    config = get_embedding_config()
    embedder = Embedder(OpenAIEmbeddingProvider(config), config)
    return IndexStore(_build_backend(), embedder)


def _print_error(prefix: str, e: Exception):
    if isinstance(e, LecternError):
        console.print(f"[red]{prefix}:[/] {e.message}")
        if isinstance(e, StoreUnavailable) and e.hint:
            console.print(f"[yellow]Hint:[/] {e.hint}")
    else:
        console.print(f"[red]{prefix}:[/] {e}")


def _parse_meta(pairs: List[str]) -> Dict[str, str]:
    meta = {}
    for pair in pairs:
        if "=" not in pair:
            raise typer.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--meta")
        key, value = pair.split("=", 1)
        meta[key.strip()] = value.strip()
    return meta


@app.command()
def ingest(
    source: str = typer.Argument(..., help="PDF file, folder of PDFs, or http(s) URL"),
    name: Optional[str] = typer.Option(None, help="Name for the new index"),
    index_id: Optional[str] = typer.Option(None, "--index-id", help="Append to an existing index"),
    niveau: Optional[str] = typer.Option(None, help="Level metadata (e.g. PASS, LAS)"),
    matiere: Optional[str] = typer.Option(None, help="Subject metadata"),
    cours: Optional[str] = typer.Option(None, help="Course metadata"),
    meta: List[str] = typer.Option([], "--meta", help="Extra metadata as key=value (repeatable)"),
    chunk_size: int = typer.Option(int(os.getenv("CHUNK_SIZE", DEFAULT_CHUNK_SIZE)), help="Maximum characters per chunk"),
    chunk_overlap: int = typer.Option(int(os.getenv("CHUNK_OVERLAP", DEFAULT_CHUNK_OVERLAP)), help="Characters shared by consecutive chunks"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Folder mode: extract and chunk without writing"),
    timeout: Optional[float] = typer.Option(None, help="Give up after this many seconds"),
):
    """Ingest a PDF (file or URL) into an index, or a folder of PDFs into one index per file."""
    metadata = _parse_meta(meta)
    for key, value in (("niveau", niveau), ("matiere", matiere), ("cours", cours)):
        if value:
            metadata[key] = value

    cancel = CancelToken(timeout=timeout)
    is_url = source.startswith(("http://", "https://"))
    input_path = Path(source)

    if not is_url and not input_path.exists():
        console.print(f"[red]Error:[/] Path {source} does not exist")
        raise typer.Exit(1)

    try:
        if not is_url and input_path.is_dir():
            _ingest_folder(input_path, chunk_size, chunk_overlap, dry_run, cancel)
            return

        store = _build_store()
        options = dict(
            index_name=name,
            index_id=index_id,
            metadata=metadata,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            cancel=cancel,
        )
        with console.status("[bold green]Extracting, chunking and embedding..."):
            if is_url:
                result = ingest_url(source, store, **options)
            else:
                result = ingest_pdf(input_path, store, **options)

        console.print(f"[green]✅ Ingestion complete![/]")
        console.print(f"[bold]Index:[/] {result.index.id}" + (f" ({result.index.name})" if result.index.name else ""))
        console.print(f"[bold]Pages:[/] {result.pages}")
        console.print(f"[bold]Chunks:[/] {result.chunks}")
        if result.chunks == 0:
            console.print("[yellow]No text found; the PDF may be scanned images only.[/]")

    except typer.Exit:
        raise
    except Exception as e:
        _print_error("Error during ingestion", e)
        raise typer.Exit(1)


def _ingest_folder(root: Path, chunk_size: int, chunk_overlap: int, dry_run: bool, cancel: CancelToken):
    store = None if dry_run else _build_store()
    console.print(f"[bold]Ingesting PDFs from:[/] {root}" + (" [dim](dry run)[/]" if dry_run else ""))

    with console.status("[bold green]Processing PDFs..."):
        outcomes = ingest_directory(
            root,
            store,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            dry_run=dry_run,
            cancel=cancel,
        )

    if not outcomes:
        console.print("[yellow]No PDF files found.[/]")
        return

    table = Table(title="Ingestion summary")
    table.add_column("File")
    table.add_column("Niveau")
    table.add_column("Matiere")
    table.add_column("Chunks", justify="right")
    table.add_column("Index / Error")
    for outcome in outcomes:
        status = f"[red]{outcome.error}[/]" if outcome.error else (outcome.index_id or "-")
        table.add_row(outcome.file, outcome.meta["niveau"], outcome.meta["matiere"],
                      str(outcome.chunks), status)
    console.print(table)

    failed = [o for o in outcomes if o.error]
    console.print(f"[bold]Documents processed:[/] {len(outcomes) - len(failed)}/{len(outcomes)}")
    console.print(f"[bold]Total chunks:[/] {sum(o.chunks for o in outcomes)}")
    if failed:
        raise typer.Exit(1)


@app.command()
def search(
    index_id: str = typer.Argument(..., help="Index to search"),
    query: str = typer.Argument(..., help="Natural-language query"),
    k: int = typer.Option(DEFAULT_TOP_K, "-k", "--top-k", help="Maximum number of results"),
    timeout: Optional[float] = typer.Option(None, help="Give up after this many seconds"),
):
    """Find the chunks of an index most similar to a query."""
    try:
        store = _build_store()
        engine = QueryEngine(store, store.embedder)

        with console.status("[bold green]Searching..."):
            hits = engine.search(index_id, query, k=k, cancel=CancelToken(timeout=timeout))

        if not hits:
            console.print("[yellow]No results found.[/]")
            return

        console.print(f"[green]Found {len(hits)} results:[/]")
        console.print()
        for i, hit in enumerate(hits, 1):
            page = hit.page if hit.page is not None else "-"
            console.print(f"[bold]{i}. Page {page}, chunk {hit.ord}[/]  [blue]Score:[/] {hit.score:.3f}")
            if hit.meta.get("source"):
                console.print(f"   [blue]Source:[/] {hit.meta['source']}")
            console.print(f"   [green]Snippet:[/] {hit.text[:300]}")
            console.print()

    except Exception as e:
        _print_error("Error during search", e)
        raise typer.Exit(1)


@app.command()
def indexes():
    """List indices, newest first, with their chunk counts."""
    try:
        store = _build_store()
        all_indexes = store.list_indexes()

        if not all_indexes:
            console.print("[yellow]No indices yet. Run 'lectern ingest' first.[/]")
            return

        table = Table(title="Indices")
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("Created")
        table.add_column("Chunks", justify="right")
        for index in all_indexes:
            table.add_row(index.id, index.name or "-", index.created_at.isoformat(timespec="seconds"),
                          str(store.count_chunks(index.id)))
        console.print(table)

    except Exception as e:
        _print_error("Error listing indices", e)
        raise typer.Exit(1)


@app.command()
def status():
    """Show system status and statistics."""
    try:
        store = _build_store()
        all_indexes = store.list_indexes()
        total_chunks = sum(store.count_chunks(index.id) for index in all_indexes)
        config = store.embedder.config

        console.print("[bold]📚 Lectern System Status[/]")
        console.print()
        console.print(f"  Indices: {len(all_indexes)}")
        console.print(f"  Chunks: {total_chunks}")
        console.print()
        console.print("[bold]🤖 Embedding:[/]")
        console.print(f"  Model: {config.model}")
        console.print(f"  Batch size: {config.batch_size}, concurrency: {config.max_concurrency}, "
                      f"attempts: {config.max_attempts}")
        console.print()
        console.print(f"[bold]🗄️  Database:[/] {get_database_url()}")

    except Exception as e:
        _print_error("Error getting status", e)
        raise typer.Exit(1)


@app.command("init-db")
def init_db():
    """Create the rag_index and rag_chunk tables if they are missing."""
    try:
        _build_backend().create_schema()
        console.print("[green]✅ Database schema is ready[/]")
    except Exception as e:
        _print_error("Error initialising database", e)
        raise typer.Exit(1)


@app.command()
def config(
    action: str = typer.Argument(..., help="Action: show, set, reset, validate"),
    key: Optional[str] = typer.Argument(None, help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Configuration value")
):
    """Manage lectern configuration settings."""
    console.print(f"[bold]🔧 Configuration Management[/]")
    manager = get_config_manager()

    if action == "show":
        _show_configuration(manager)
    elif action == "set":
        if not key or value is None:
            console.print("[red]Error:[/] Both key and value required for 'set' action")
            raise typer.Exit(1)
        try:
            manager.set(key, value)
        except (ValueError, OSError) as e:
            console.print(f"[red]Error:[/] {e}")
            raise typer.Exit(1)
        console.print(f"[green]✅ Set {key}[/]")
    elif action == "reset":
        if not key:
            console.print("[red]Error:[/] Key required for 'reset' action")
            raise typer.Exit(1)
        if manager.reset(key):
            console.print(f"[green]✅ Reset {key} to default[/]")
        else:
            console.print(f"[yellow]Note:[/] {key} has no default")
    elif action == "validate":
        _validate_configuration(manager)
    else:
        console.print(f"[red]Error:[/] Unknown action: {action}")
        console.print("Available actions: show, set, reset, validate")
        raise typer.Exit(1)


def _show_configuration(manager):
    """Display current configuration."""
    console.print("\n[bold]Current Configuration:[/]")
    for key, value in manager.get_all().items():
        if key in SECRET_KEYS:
            value = "***" if value else "Not set"
        console.print(f"  [blue]{key}:[/] {value}")


def _validate_configuration(manager):
    """Validate current configuration and database connectivity."""
    console.print("[bold]Validating configuration...[/]")

    validation = manager.validate()
    issues = list(validation["issues"])

    try:
        _build_backend().ping()
        console.print("[green]✅ Database connection: OK[/]")
    except StoreUnavailable as e:
        issues.append(f"Database check failed: {e.message}" + (f" ({e.hint})" if e.hint else ""))

    for warning in validation["warnings"]:
        console.print(f"[yellow]Warning:[/] {warning}")

    if issues:
        console.print(f"\n[red]❌ Configuration issues found:[/]")
        for issue in issues:
            console.print(f"  • {issue}")
        raise typer.Exit(1)
    else:
        console.print(f"\n[green]✅ Configuration validation passed![/]")


if __name__ == "__main__":
    app()
