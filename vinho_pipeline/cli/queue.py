"""
Queue CLI Commands
==================

CLI commands for feeding and draining the pipeline queues.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from vinho_pipeline.core.config import get_default_config
from vinho_pipeline.core.enums import EmbeddingJobType, JobStatus
from vinho_pipeline.core.errors import PipelineError
from vinho_pipeline.db.engine import get_session
from vinho_pipeline.db.repositories import QueueRepository
from vinho_pipeline.ingestion.jobs import (
    run_embedding_queue,
    run_enrichment_queue,
    run_enrichment_schedule,
    run_reclaim,
    run_wine_queue,
)
from vinho_pipeline.ingestion.processor import enqueue_scan
from vinho_pipeline.queue.stats import queue_stats
from vinho_pipeline.services.factory import build_matcher

console = Console()
queue_app = typer.Typer(help="Pipeline queue commands")
enrich_app = typer.Typer(help="Enrichment queue commands")

queue_app.add_typer(enrich_app, name="enrich")

_STATUS_COLORS = {
    JobStatus.PENDING.value: "yellow",
    JobStatus.PROCESSING.value: "blue",
    JobStatus.COMPLETED.value: "green",
    JobStatus.FAILED.value: "red",
}


def _colored(status: str) -> str:
    color = _STATUS_COLORS.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _display_batch(title: str, result: dict) -> None:
    """Display a batch result."""
    rprint(f"\n[bold]{title}[/bold]")
    for key in ("processed", "reused", "retried", "skipped", "failed", "total"):
        if key in result:
            rprint(f"  {key.capitalize()}: {result[key]}")


def _run_or_exit(fn, *args, **kwargs) -> dict:
    """Run a queue runner, turning configuration errors into a clean exit."""
    try:
        return fn(*args, **kwargs)
    except (ValueError, ImportError) as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@queue_app.command("enqueue")
def enqueue(
    user_id: str = typer.Option(..., "--user", "-u", help="User who took the photo"),
    image_url: str = typer.Option(..., "--image-url", "-i", help="URL of the label photo"),
    ocr_text: Optional[str] = typer.Option(None, "--ocr-text", help="OCR text read on device"),
    scan_id: Optional[str] = typer.Option(None, "--scan-id", help="Client scan identifier"),
) -> None:
    """
    Queue a wine-label photo for processing.

    Examples:
        vinho-pipeline queue enqueue -u user-1 -i https://example.com/label.jpg
    """
    with get_session() as session:
        try:
            item, created = enqueue_scan(session, user_id, image_url, ocr_text, scan_id)
        except PipelineError as e:
            rprint(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)

    if created:
        rprint(f"[green]Queued scan[/green] [bold]{item.id}[/bold]")
    else:
        rprint(f"[yellow]Already in flight:[/yellow] [bold]{item.id}[/bold] ({item.status.value})")


@queue_app.command("process")
def process(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Batch size"),
) -> None:
    """
    Claim and process one batch of wine scans.

    Examples:
        vinho-pipeline queue process --limit 5
    """
    with console.status("[bold blue]Processing scans...[/bold blue]"):
        result = _run_or_exit(run_wine_queue, limit)
    _display_batch("Wine scans", result)


@queue_app.command("embeddings")
def embeddings(
    job_type: EmbeddingJobType = typer.Option(
        EmbeddingJobType.IDENTITY, "--type", "-t", help="identity or visual"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Batch size"),
) -> None:
    """
    Claim and process one batch of embedding jobs.

    Examples:
        vinho-pipeline queue embeddings --type visual
    """
    with console.status(f"[bold blue]Embedding ({job_type.value})...[/bold blue]"):
        result = _run_or_exit(run_embedding_queue, job_type, limit)
    _display_batch(f"{job_type.value.capitalize()} embeddings", result)


@enrich_app.command("scan")
def enrich_scan(
    limit: int = typer.Option(100, "--limit", "-l", help="Completed scans to inspect"),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's scans"),
) -> None:
    """
    Queue enrichment for wines that are missing metadata.

    Examples:
        vinho-pipeline queue enrich scan --user user-1
    """
    result = run_enrichment_schedule(limit, user_id=user_id)
    rprint(f"\n[bold]Enrichment scheduling[/bold]")
    rprint(f"  Queued: {result['queued']}")
    rprint(f"  Skipped: {result['skipped']}")
    for error in result["errors"]:
        rprint(f"  [red]•[/red] {error}")


@enrich_app.command("process")
def enrich_process(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Batch size"),
) -> None:
    """
    Claim and process one batch of enrichment jobs.

    Examples:
        vinho-pipeline queue enrich process --limit 10
    """
    with console.status("[bold blue]Enriching...[/bold blue]"):
        result = _run_or_exit(run_enrichment_queue, limit)
    _display_batch("Enrichment", result)


@queue_app.command("reclaim")
def reclaim(
    minutes: Optional[int] = typer.Option(
        None, "--minutes", "-m", help="Claim age (defaults to queue.stale_claim_minutes)"
    ),
) -> None:
    """
    Return stale processing rows to pending without counting a retry.

    Examples:
        vinho-pipeline queue reclaim --minutes 30
    """
    older_than = timedelta(minutes=minutes) if minutes is not None else None
    if older_than is None and get_default_config().queue.stale_claim_minutes is None:
        rprint("[yellow]Stale reclaim is disabled[/yellow]")
        rprint("Pass --minutes or set queue.stale_claim_minutes in config/pipeline.yaml")
        return

    counts = run_reclaim(older_than)
    for queue_name, count in counts.items():
        rprint(f"  {queue_name}: {count}")


@queue_app.command("status")
def status(
    scan_id: str = typer.Argument(..., help="Queue row ID"),
) -> None:
    """
    Show the status of a queued scan.

    Examples:
        vinho-pipeline queue status 3f0c...
    """
    with get_session() as session:
        item = QueueRepository(session).get_by_id(scan_id)

    if item is None:
        rprint(f"[red]Error:[/red] Scan '{scan_id}' not found")
        raise typer.Exit(1)

    rprint(f"\n[bold]Scan: {item.id}[/bold]")
    rprint(f"  Status: {_colored(item.status.value)}")
    rprint(f"  Retries: {item.retry_count}")
    rprint(f"  Image: {item.image_url}")
    if item.error_message:
        rprint(f"  Error: [red]{item.error_message}[/red]")

    data = item.processed_data
    if data is not None:
        rprint("\n[bold]Resolved:[/bold]")
        rprint(f"  Producer: {data.producer_name}")
        rprint(f"  Wine: {data.wine_name}")
        rprint(f"  Year: {data.year or 'NV'}")
        if data.region or data.country:
            rprint(f"  Region: {', '.join(p for p in (data.region, data.country) if p)}")
        if data.varietals:
            rprint(f"  Varietals: {', '.join(data.varietals)}")
        if data.reused:
            rprint("  [dim]Reused from an earlier scan[/dim]")


@queue_app.command("similar")
def similar(
    wine_id: str = typer.Argument(..., help="Wine ID"),
    limit: int = typer.Option(5, "--limit", "-l", help="Maximum recommendations"),
    threshold: Optional[float] = typer.Option(
        None, "--threshold", help="Minimum similarity (never below the recommendation floor)"
    ),
) -> None:
    """
    Recommend wines whose labels look like this wine's.

    Examples:
        vinho-pipeline queue similar 3f0c... --limit 10
    """
    config = get_default_config()
    with get_session() as session:
        matcher = build_matcher(session, config)
        if not matcher.visual_available:
            rprint("[yellow]Visual index is disabled[/yellow]")
            return
        wines = matcher.similar_to_wine(wine_id, limit=limit, min_similarity=threshold)

    if not wines:
        rprint("[yellow]No similar wines found[/yellow]")
        return

    table = Table(title="You might also like")
    table.add_column("Wine", style="bold")
    table.add_column("Producer")
    table.add_column("Match", justify="right")
    table.add_column("Band")

    for wine in wines:
        band = "[green]strong[/green]" if wine.band.value == "strong" else "good"
        table.add_row(wine.wine_name, wine.producer_name, f"{wine.match_percent}%", band)

    console.print(table)


@queue_app.command("stats")
def stats() -> None:
    """
    Show row counts per status for every queue.

    Examples:
        vinho-pipeline queue stats
    """
    with get_session() as session:
        counts = queue_stats(session)

    table = Table(title="Queue Status")
    table.add_column("Queue", style="bold")
    for job_status in JobStatus:
        table.add_column(_colored(job_status.value), justify="right")

    for queue_name, by_status in counts.items():
        table.add_row(queue_name, *(str(by_status[s.value]) for s in JobStatus))

    console.print(table)


@queue_app.command("worker")
def start_worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the arq worker that polls every queue on a schedule.

    Examples:
        vinho-pipeline queue worker
    """
    rprint("[bold]Starting pipeline worker...[/bold]")
    rprint("Press Ctrl+C to stop\n")

    from arq import run_worker

    from vinho_pipeline.ingestion.jobs import WorkerSettings

    try:
        run_worker(WorkerSettings, burst=burst)
    except Exception as e:
        rprint(f"[red]Error:[/red] Worker failed: {e}")
        rprint("\nMake sure Redis is running")
        raise typer.Exit(1)
