"""
Background Jobs Module
======================

arq tasks that poll each pipeline queue. Uses Redis only for scheduling;
the queues themselves live in the database, so every task can also be run
synchronously from the CLI.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import timedelta
from typing import Any

from arq import cron
from arq.connections import RedisSettings

from vinho_pipeline.core.config import PipelineConfig, get_default_config
from vinho_pipeline.core.enums import EmbeddingJobType, JobType
from vinho_pipeline.db.engine import get_session
from vinho_pipeline.enrichment.scheduler import EnrichmentScheduler
from vinho_pipeline.queue.claimer import JobClaimer
from vinho_pipeline.services.factory import (
    build_embedding_worker,
    build_enrichment_worker,
    build_wine_processor,
)

logger = logging.getLogger(__name__)


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


# ============================================================================
# Synchronous runners (shared by the CLI and the arq tasks)
# ============================================================================


def run_wine_queue(limit: int | None = None, config: PipelineConfig | None = None) -> dict[str, Any]:
    """Process one batch of wine scans."""
    config = config or get_default_config()
    with get_session() as session:
        processor = build_wine_processor(session, config)
        return processor.run_batch(limit).to_dict()


def run_embedding_queue(
    job_type: EmbeddingJobType,
    limit: int | None = None,
    config: PipelineConfig | None = None,
) -> dict[str, Any]:
    """Process one batch of identity or visual embedding jobs."""
    config = config or get_default_config()
    with get_session() as session:
        worker = build_embedding_worker(session, config)
        return worker.run_batch(job_type, limit).to_dict()


def run_enrichment_queue(
    limit: int | None = None, config: PipelineConfig | None = None
) -> dict[str, Any]:
    """Process one batch of enrichment jobs."""
    config = config or get_default_config()
    with get_session() as session:
        worker = build_enrichment_worker(session, config)
        return worker.run_batch(limit).to_dict()


def run_enrichment_schedule(limit: int = 100, user_id: str | None = None) -> dict[str, Any]:
    """Queue enrichment for recently completed scans."""
    with get_session() as session:
        return EnrichmentScheduler(session).scan_and_enqueue(limit, user_id=user_id).to_dict()


def run_reclaim(
    older_than: timedelta | None = None, config: PipelineConfig | None = None
) -> dict[str, int]:
    """
    Return stale ``processing`` rows to ``pending`` in every queue.

    Does nothing unless ``older_than`` is given or
    ``queue.stale_claim_minutes`` is configured.
    """
    config = config or get_default_config()
    with get_session() as session:
        claimer = JobClaimer(session, config.queue)
        return {job_type.value: claimer.reclaim_stale(job_type, older_than) for job_type in JobType}


# ============================================================================
# arq tasks
# ============================================================================


async def process_wine_queue(ctx: dict[str, Any]) -> dict[str, Any]:
    """Poll the wine-scan queue."""
    return await asyncio.to_thread(run_wine_queue)


async def process_identity_embeddings(ctx: dict[str, Any]) -> dict[str, Any]:
    """Poll identity embedding jobs."""
    return await asyncio.to_thread(run_embedding_queue, EmbeddingJobType.IDENTITY)


async def process_visual_embeddings(ctx: dict[str, Any]) -> dict[str, Any]:
    """Poll visual embedding jobs."""
    return await asyncio.to_thread(run_embedding_queue, EmbeddingJobType.VISUAL)


async def process_enrichment_queue(ctx: dict[str, Any]) -> dict[str, Any]:
    """Poll the enrichment queue."""
    return await asyncio.to_thread(run_enrichment_queue)


async def schedule_enrichment(ctx: dict[str, Any]) -> dict[str, Any]:
    """Queue enrichment for wines that are missing metadata."""
    return await asyncio.to_thread(run_enrichment_schedule)


async def reclaim_stale_jobs(ctx: dict[str, Any]) -> dict[str, int]:
    """Reclaim stale claims when enabled in configuration."""
    return await asyncio.to_thread(run_reclaim)


def poll_seconds(interval: int) -> set[int]:
    """Seconds-of-minute at which a cron job polling every ``interval`` seconds fires."""
    interval = max(1, min(interval, 60))
    return set(range(0, 60, interval))


def _cron_jobs(config: PipelineConfig) -> list:
    seconds = poll_seconds(config.queue.poll_interval_seconds)
    jobs = [
        cron(process_wine_queue, second=seconds, unique=True),
        cron(process_identity_embeddings, second=seconds, unique=True),
        cron(process_visual_embeddings, second=seconds, unique=True),
        cron(process_enrichment_queue, second=seconds, unique=True),
        cron(schedule_enrichment, minute={0, 30}, second=0, unique=True),
    ]
    if config.queue.stale_claim_minutes is not None:
        jobs.append(cron(reclaim_stale_jobs, second=0, unique=True))
    return jobs


class WorkerSettings:
    """arq worker settings."""

    functions = [
        process_wine_queue,
        process_identity_embeddings,
        process_visual_embeddings,
        process_enrichment_queue,
        schedule_enrichment,
        reclaim_stale_jobs,
    ]
    cron_jobs = _cron_jobs(get_default_config())
    redis_settings = get_redis_settings()
    max_jobs = 4
    job_timeout = 600  # 10 minutes
    keep_result = 3600  # 1 hour
