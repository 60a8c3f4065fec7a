"""Vinho Pipeline CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from vinho_pipeline import __version__
from vinho_pipeline.cli.queue import queue_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="vinho-pipeline",
    help="Vinho Pipeline - turns wine-label photos into a deduplicated wine catalog",
    add_completion=False,
)
app.add_typer(queue_app, name="queue")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _check_ai_config() -> None:
    """Check and display AI configuration status."""
    from vinho_pipeline.core.config import get_default_config

    provider = get_default_config().ai.provider.lower()
    key_var = "ANTHROPIC_API_KEY" if provider == "anthropic" else "OPENAI_API_KEY"

    if os.environ.get(key_var):
        typer.echo(f"  AI Provider: {provider} (configured)")
    else:
        typer.echo(f"  AI Provider: {provider} (not configured)")
        typer.echo(f"  Tip: Set {key_var} in .env file to enable label extraction")

    if os.environ.get("JINA_API_KEY"):
        typer.echo("  Image embeddings: Jina (configured)")
    else:
        typer.echo("  Image embeddings: disabled (set JINA_API_KEY to enable)")


@app.command()
def run(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the queue HTTP API."""
    import uvicorn

    typer.echo(f"Starting Vinho Pipeline API on http://{host}:{port}")
    _check_ai_config()
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "vinho_pipeline.web.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def init_db() -> None:
    """Initialize the database (create tables)."""
    from vinho_pipeline.db.engine import init_db as db_init

    typer.echo("Initializing database...")
    db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Vinho Pipeline version."""
    typer.echo(f"Vinho Pipeline v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from vinho_pipeline.core.config import get_default_config
    from vinho_pipeline.db.engine import get_database_url

    config = get_default_config()

    typer.echo("Vinho Pipeline Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    _check_ai_config()

    typer.echo(f"  Database: {get_database_url()}")
    typer.echo(f"  Vector index: {config.vector_index.backend.value}")
    typer.echo(f"  Text embeddings: {config.embeddings.text_provider} ({config.embeddings.text_model})")
    typer.echo(f"  Max retries: {config.queue.max_retries}")
    stale = config.queue.stale_claim_minutes
    typer.echo(f"  Stale reclaim: {f'{stale} min' if stale is not None else 'disabled'}")


if __name__ == "__main__":
    app()
