"""Embedding queue worker."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from vinho_pipeline.core.enums import EmbeddingJobType, JobType
from vinho_pipeline.core.errors import ResourceVanishedError, ValidationError
from vinho_pipeline.core.schema import EmbeddingJob
from vinho_pipeline.db.repositories import EmbeddingJobRepository
from vinho_pipeline.db.repositories_catalog import ProducerRepository, WineRepository
from vinho_pipeline.queue.batch import BatchResult, record_failure
from vinho_pipeline.queue.claimer import JobClaimer
from vinho_pipeline.queue.retry import RetryPolicy
from vinho_pipeline.services.embeddings.generator import EmbeddingGenerator

logger = logging.getLogger(__name__)

_QUEUE_FOR_TYPE = {
    EmbeddingJobType.IDENTITY: JobType.IDENTITY_EMBEDDING,
    EmbeddingJobType.VISUAL: JobType.VISUAL_EMBEDDING,
}


class EmbeddingWorker:
    """Claims embedding jobs and runs them through the generator."""

    def __init__(
        self,
        session: Session,
        generator: EmbeddingGenerator,
        claimer: JobClaimer | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.session = session
        self.generator = generator
        self.claimer = claimer or JobClaimer(session)
        self.retry_policy = retry_policy or RetryPolicy()
        self.jobs = EmbeddingJobRepository(session)

    def run_batch(self, job_type: EmbeddingJobType, limit: int | None = None) -> BatchResult:
        """
        Claim and process one batch of embedding jobs of a single type.

        Args:
            job_type: Identity or visual
            limit: Requested batch size

        Returns:
            BatchResult with per-outcome counts
        """
        result = BatchResult()
        claimed: list[EmbeddingJob] = self.claimer.claim(_QUEUE_FOR_TYPE[job_type], limit)

        for job in claimed:
            label = f"Embedding job {job.id} ({job.job_type.value})"
            try:
                summary = self.process_job(job)
                self.jobs.mark_completed(job.id, summary)
                self.session.commit()
                if summary.get("skipped_reason"):
                    result.skipped += 1
                else:
                    result.processed += 1
            except Exception as e:
                outcome = record_failure(
                    self.session, self.jobs, job, e, self.retry_policy, label
                )
                if outcome is not None:
                    result.record(outcome)

        if claimed:
            logger.info(f"{job_type.value} embedding batch: {result.to_dict()}")
        return result

    def process_job(self, job: EmbeddingJob) -> dict:
        """
        Run one embedding job.

        Returns:
            A JSON-serializable summary stored on the job row
        """
        if job.job_type == EmbeddingJobType.IDENTITY:
            return self._process_identity(job)
        elif job.job_type == EmbeddingJobType.VISUAL:
            return self._process_visual(job)
        else:
            raise ValueError(f"Unknown embedding job type: {job.job_type}")

    def _process_identity(self, job: EmbeddingJob) -> dict:
        if not job.input_text:
            raise ValidationError("Identity job has no input_text")
        if WineRepository(self.session).get_by_id(job.wine_id) is None:
            raise ResourceVanishedError("wine", str(job.wine_id))

        embedding = self.generator.generate_identity(job.wine_id, job.input_text)
        return {
            "model": embedding.model,
            "version": embedding.version,
            "completeness_score": embedding.completeness_score,
        }

    def _process_visual(self, job: EmbeddingJob) -> dict:
        if not job.input_image_url:
            raise ValidationError("Visual job has no input_image_url")
        wine = WineRepository(self.session).get_by_id(job.wine_id)
        if wine is None:
            raise ResourceVanishedError("wine", str(job.wine_id))
        producer = ProducerRepository(self.session).get_by_id(wine.producer_id)

        visual = self.generator.generate_visual(
            wine_id=job.wine_id,
            image_url=job.input_image_url,
            vintage_id=job.vintage_id,
            scan_id=job.scan_id,
            producer_name=producer.name if producer else None,
            wine_name=wine.name,
        )
        return visual.to_dict()
