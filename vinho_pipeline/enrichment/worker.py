"""
Enrichment Queue Worker
=======================

Claims enrichment jobs, asks the AI provider for wine metadata, and writes
it back without overwriting anything already set.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from vinho_pipeline.core.enums import EmbeddingJobType, JobType
from vinho_pipeline.core.errors import ResourceVanishedError
from vinho_pipeline.core.schema import EmbeddingJob, EnrichmentData, EnrichmentJob, WineDescriptor
from vinho_pipeline.db.repositories import EmbeddingJobRepository, EnrichmentJobRepository
from vinho_pipeline.db.repositories_catalog import (
    ProducerRepository,
    VarietalRepository,
    VintageRepository,
    WineRepository,
)
from vinho_pipeline.queue.batch import BatchResult, record_failure
from vinho_pipeline.queue.claimer import JobClaimer
from vinho_pipeline.queue.idempotency import embedding_key
from vinho_pipeline.queue.retry import RetryPolicy
from vinho_pipeline.services.ai.client import AIClient
from vinho_pipeline.services.embeddings.identity import build_identity_text

logger = logging.getLogger(__name__)


class EnrichmentWorker:
    """Processes the enrichment queue."""

    def __init__(
        self,
        session: Session,
        ai_client: AIClient,
        claimer: JobClaimer | None = None,
        retry_policy: RetryPolicy | None = None,
        embedding_version: int = 1,
    ) -> None:
        """
        Initialize the worker.

        Args:
            session: SQLAlchemy database session
            ai_client: Provider used for enrichment
            claimer: Job claimer
            retry_policy: Retry policy
            embedding_version: Version tag for identity re-embeddings
        """
        self.session = session
        self.ai_client = ai_client
        self.claimer = claimer or JobClaimer(session)
        self.retry_policy = retry_policy or RetryPolicy()
        self.embedding_version = embedding_version

        self.jobs = EnrichmentJobRepository(session)
        self.embedding_jobs = EmbeddingJobRepository(session)
        self.producers = ProducerRepository(session)
        self.wines = WineRepository(session)
        self.vintages = VintageRepository(session)
        self.varietals = VarietalRepository(session)

    def run_batch(self, limit: int | None = None) -> BatchResult:
        """Claim and process one batch of enrichment jobs."""
        result = BatchResult()
        jobs: list[EnrichmentJob] = self.claimer.claim(JobType.ENRICHMENT, limit)

        for job in jobs:
            label = f"Enrichment job {job.id} ({job.producer_name} / {job.wine_name})"
            try:
                self.process_job(job)
                result.processed += 1
            except Exception as e:
                outcome = record_failure(
                    self.session, self.jobs, job, e, self.retry_policy, label
                )
                if outcome is not None:
                    result.record(outcome)

        if jobs:
            logger.info(f"Enrichment batch: {result.to_dict()}")
        return result

    def process_job(self, job: EnrichmentJob) -> EnrichmentData:
        """
        Enrich one wine and commit.

        Only wine and producer fields that are still null are written. New
        varietals are linked to the vintage, and the wine's identity
        embedding is queued again when any were added.

        Raises:
            ResourceVanishedError: If the wine or vintage no longer exists
        """
        wine = self.wines.get_by_id(job.wine_id)
        if wine is None:
            raise ResourceVanishedError("wine", str(job.wine_id))
        if self.vintages.get_by_id(job.vintage_id) is None:
            raise ResourceVanishedError("vintage", str(job.vintage_id))

        descriptor = WineDescriptor(
            producer=job.producer_name,
            wine_name=job.wine_name,
            year=job.year,
            region=job.region,
            country=job.country,
            varietals=self.varietals.names_for_vintage(job.vintage_id),
        )
        data = self.ai_client.enrich_wine(descriptor)

        filled = self.wines.fill_missing_fields(job.wine_id, data)
        filled += self.producers.fill_missing_details(wine.producer_id, data.producer_details())
        added = self.varietals.attach_names(job.vintage_id, data.varietals)
        if added:
            self._queue_identity_refresh(job)

        self.jobs.mark_completed(job.id, data)
        self.session.commit()

        logger.info(
            f"Enriched {job.producer_name} / {job.wine_name}: "
            f"filled {filled or 'nothing'}, varietals added {added or 'none'}"
        )
        return data

    def _queue_identity_refresh(self, job: EnrichmentJob) -> None:
        wine = self.wines.get_by_id(job.wine_id)
        producer = self.producers.get_by_id(wine.producer_id)
        text = build_identity_text(
            producer.name if producer else job.producer_name,
            wine.name,
            job.region,
            job.country,
            self.varietals.names_for_wine(job.wine_id),
        )
        self.embedding_jobs.enqueue(
            EmbeddingJob(
                job_type=EmbeddingJobType.IDENTITY,
                wine_id=job.wine_id,
                vintage_id=job.vintage_id,
                input_text=text,
                idempotency_key=embedding_key(
                    EmbeddingJobType.IDENTITY, str(job.wine_id), version=self.embedding_version
                ),
            )
        )
