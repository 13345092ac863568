"""
Command-line interface for kbsearch.

Commands:
    serve     - Start the FastAPI server
    init-db   - Create the pgvector extension, tables and indexes
    ingest    - Upload and process a file or a directory of files
    search    - Run a hybrid search and print the results
    reprocess - Re-run ingestion for a document
    delete    - Delete a document
    list      - List documents visible to a user

Without DATABASE_URL the store lives in memory, so documents only exist
for the duration of a single command.
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from kbsearch.config import settings

app = typer.Typer(
    name="kbsearch",
    help="Document knowledge base with hybrid retrieval",
    add_completion=False,
)
console = Console()


@app.callback()
def main(
    log_level: str = typer.Option(
        settings.log_level, "--log-level", help="Logging level", envvar="LOG_LEVEL"
    ),
) -> None:
    """Configure logging and tracing for every command."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )

    from kbsearch.tracing import setup_tracing

    setup_tracing()


@app.command()
def serve(
    host: str = typer.Option(settings.api_host, help="Host to bind"),
    port: int = typer.Option(settings.api_port, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Start the FastAPI server."""
    import uvicorn

    console.print(f"[green]Starting kbsearch server on {host}:{port}[/green]")

    uvicorn.run(
        "kbsearch.api.main:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command("init-db")
def init_db_command() -> None:
    """Create the pgvector extension, tables and indexes."""
    if not settings.database_url:
        console.print("[red]DATABASE_URL is not configured.[/red]")
        raise typer.Exit(1)

    from kbsearch.store.schema import get_engine, init_db

    with console.status("[bold green]Initializing database..."):
        init_db(get_engine())

    console.print("[green]✓ Database initialized[/green]")


@app.command()
def ingest(
    path: Path = typer.Argument(..., exists=True, help="File or directory to ingest"),
    user: str = typer.Option(..., "--user", "-u", help="Owner user ID"),
    org: Optional[str] = typer.Option(None, "--org", "-o", help="Organization ID"),
    shared: bool = typer.Option(False, "--shared", help="Share with the organization"),
) -> None:
    """Upload and process a file, or every supported file in a directory."""
    from kbsearch.exceptions import UnsupportedFileError
    from kbsearch.ingestion.extraction import mime_type_for_filename
    from kbsearch.retrieval.resources import get_pipeline

    if shared and not org:
        console.print("[red]--shared requires --org[/red]")
        raise typer.Exit(1)

    pipeline = get_pipeline()

    if path.is_dir():
        # Skip formats the configured extractor cannot read
        files = [
            p for p in sorted(path.rglob("*"))
            if p.is_file() and pipeline.extractor.supports(mime_type_for_filename(p.name) or "")
        ]
    else:
        files = [path] if mime_type_for_filename(path.name) else []
    if not files:
        console.print(f"[red]No supported files found in {path}[/red]")
        raise typer.Exit(1)

    table = Table(title="Ingestion")
    table.add_column("File", style="cyan")
    table.add_column("Document ID")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")

    failures = 0
    for file_path in files:
        try:
            with console.status(f"[bold green]Processing {file_path.name}..."):
                result = pipeline.upload(
                    file_path.read_bytes(),
                    file_path.name,
                    mime_type_for_filename(file_path.name),
                    user_id=user,
                    organization_id=org,
                    shared=shared,
                )
        except UnsupportedFileError as e:
            failures += 1
            table.add_row(file_path.name, "-", f"[red]rejected: {e}[/red]", "-")
            continue

        if result.success:
            table.add_row(file_path.name, result.document_id, "[green]ready[/green]",
                          str(result.chunk_count))
        else:
            failures += 1
            table.add_row(file_path.name, result.document_id, f"[red]failed: {result.error}[/red]",
                          "-")

    console.print(table)
    if failures:
        raise typer.Exit(1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    user: str = typer.Option(..., "--user", "-u", help="Caller user ID"),
    org: Optional[str] = typer.Option(None, "--org", "-o", help="Caller organization ID"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum results"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Minimum similarity"),
    context: bool = typer.Option(False, "--context", "-c", help="Print the assembled context"),
) -> None:
    """Run a hybrid search over the caller's documents."""
    from kbsearch.retrieval.context import format_for_context
    from kbsearch.retrieval.resources import get_retriever

    console.print(f"[blue]Query:[/blue] {query}\n")

    with console.status("[bold green]Searching..."):
        results = get_retriever().search(
            query,
            user_id=user,
            organization_id=org,
            limit=limit,
            threshold=threshold,
        )

    if not results:
        console.print("[yellow]No relevant documents found.[/yellow]")
        return

    table = Table(title=f"{len(results)} results")
    table.add_column("Document", style="cyan")
    table.add_column("Chunk", justify="right")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Match")
    table.add_column("Preview")

    for result in results:
        match = "name" if result.name_match else result.match_type.value
        preview = result.content[:80].replace("\n", " ")
        table.add_row(
            result.document_name,
            str(result.chunk_index),
            f"{result.similarity:.2f}",
            match,
            preview,
        )

    console.print(table)

    if context:
        console.print()
        console.print(format_for_context(results, settings.max_context_tokens), markup=False)


@app.command()
def reprocess(document_id: str = typer.Argument(..., help="Document ID")) -> None:
    """Reset a document to pending and process it again."""
    from kbsearch.exceptions import DocumentNotFoundError
    from kbsearch.retrieval.resources import get_pipeline

    try:
        with console.status("[bold green]Reprocessing..."):
            result = get_pipeline().reprocess_document(document_id)
    except DocumentNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    if not result.success:
        console.print(f"[red]Processing failed: {result.error}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Document {document_id} ready ({result.chunk_count} chunks)[/green]")


@app.command()
def delete(document_id: str = typer.Argument(..., help="Document ID")) -> None:
    """Delete a document, its chunks and its stored binary."""
    from kbsearch.exceptions import DocumentNotFoundError
    from kbsearch.retrieval.resources import get_pipeline

    try:
        get_pipeline().delete_document(document_id)
    except DocumentNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ Deleted document {document_id}[/green]")


@app.command("list")
def list_documents(
    user: str = typer.Option(..., "--user", "-u", help="Caller user ID"),
    org: Optional[str] = typer.Option(None, "--org", "-o", help="Caller organization ID"),
) -> None:
    """List documents visible to a user."""
    from kbsearch.retrieval.resources import get_store

    documents = get_store().list_documents(user, org)
    if not documents:
        console.print("[yellow]No documents.[/yellow]")
        return

    table = Table(title=f"{len(documents)} documents")
    table.add_column("ID")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Shared")
    table.add_column("Error", style="red")

    for doc in documents:
        table.add_row(
            doc.id,
            doc.name,
            doc.status.value,
            str(doc.chunk_count),
            "yes" if doc.shared else "",
            doc.error_message or "",
        )

    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from kbsearch import __version__

    console.print(f"kbsearch v{__version__}")


if __name__ == "__main__":
    app()
