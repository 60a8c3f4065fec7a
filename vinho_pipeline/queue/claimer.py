"""
Job Claimer
===========

Atomically moves pending jobs to ``processing`` so that concurrent workers
never receive the same job. The claim is one UPDATE whose WHERE clause
re-checks ``status = 'pending'``; the selected ids come from a subquery
that uses FOR UPDATE SKIP LOCKED where the database supports it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from vinho_pipeline.core.config import QueueConfig
from vinho_pipeline.core.enums import EmbeddingJobType, JobStatus, JobType
from vinho_pipeline.db.models import EmbeddingJobDB, EnrichmentJobDB, QueueItemDB
from vinho_pipeline.db.repositories import (
    EmbeddingJobRepository,
    EnrichmentJobRepository,
    QueueRepository,
    _JobRepository,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class _QueueSpec:
    model: Any
    repository: type[_JobRepository]
    embedding_type: EmbeddingJobType | None = None


_QUEUES: dict[JobType, _QueueSpec] = {
    JobType.WINE_SCAN: _QueueSpec(QueueItemDB, QueueRepository),
    JobType.ENRICHMENT: _QueueSpec(EnrichmentJobDB, EnrichmentJobRepository),
    JobType.IDENTITY_EMBEDDING: _QueueSpec(
        EmbeddingJobDB, EmbeddingJobRepository, EmbeddingJobType.IDENTITY
    ),
    JobType.VISUAL_EMBEDDING: _QueueSpec(
        EmbeddingJobDB, EmbeddingJobRepository, EmbeddingJobType.VISUAL
    ),
}


class JobClaimer:
    """
    Claims batches of pending jobs for a worker.

    Each claim runs in its own transaction and is committed before the jobs
    are returned, so the ``processing`` status is visible to other workers
    immediately.
    """

    def __init__(self, session: Session, config: QueueConfig | None = None) -> None:
        """
        Initialize the claimer.

        Args:
            session: SQLAlchemy database session
            config: Queue configuration providing claim limits
        """
        self.session = session
        self.config = config or QueueConfig()

    def clamp_limit(self, job_type: JobType, limit: int | None) -> int:
        """Clamp a requested batch size to ``[1, max_claim]`` for the queue."""
        if limit is None:
            limit = self.config.batch_size(job_type)
        return max(1, min(limit, self.config.max_claim(job_type)))

    def claim(self, job_type: JobType, limit: int | None = None) -> list[Any]:
        """
        Claim up to ``limit`` pending jobs of one type.

        Args:
            job_type: Queue to claim from
            limit: Requested batch size (defaults to the queue's batch size)

        Returns:
            Claimed jobs as domain models, in claim order. Empty when
            nothing is pending.
        """
        spec = _QUEUES[job_type]
        model = spec.model
        limit = self.clamp_limit(job_type, limit)

        candidates = select(model.id).where(model.status == JobStatus.PENDING.value)
        if spec.embedding_type is not None:
            candidates = candidates.where(model.job_type == spec.embedding_type.value)
        if job_type == JobType.ENRICHMENT:
            candidates = candidates.order_by(model.priority.desc(), model.created_at, model.id)
        else:
            candidates = candidates.order_by(model.created_at, model.id)
        candidates = candidates.limit(limit).with_for_update(skip_locked=True)

        stmt = (
            update(model)
            .where(model.id.in_(candidates.scalar_subquery()))
            .where(model.status == JobStatus.PENDING.value)
            .values(status=JobStatus.PROCESSING.value, claimed_at=_utc_now())
            .returning(model.id)
            .execution_options(synchronize_session=False)
        )

        claimed_ids = list(self.session.execute(stmt).scalars().all())
        self.session.commit()

        if not claimed_ids:
            return []

        jobs = spec.repository(self.session).get_many(claimed_ids)
        jobs.sort(key=_claim_order(job_type))
        logger.info(f"Claimed {len(jobs)} {job_type.value} job(s)")
        return jobs

    def reclaim_stale(self, job_type: JobType, older_than: timedelta | None = None) -> int:
        """
        Return jobs stuck in ``processing`` to ``pending``.

        retry_count is left unchanged. Disabled (returns 0) unless
        ``older_than`` is given or ``queue.stale_claim_minutes`` is set.

        Args:
            job_type: Queue to reclaim in
            older_than: Minimum age of the claim

        Returns:
            Number of jobs returned to pending
        """
        if older_than is None:
            if self.config.stale_claim_minutes is None:
                return 0
            older_than = timedelta(minutes=self.config.stale_claim_minutes)

        spec = _QUEUES[job_type]
        model = spec.model
        cutoff = _utc_now() - older_than

        stmt = (
            update(model)
            .where(model.status == JobStatus.PROCESSING.value)
            .where(model.claimed_at < cutoff)
            .values(status=JobStatus.PENDING.value, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        if spec.embedding_type is not None:
            stmt = stmt.where(model.job_type == spec.embedding_type.value)

        result = self.session.execute(stmt)
        self.session.commit()
        count = result.rowcount or 0
        if count:
            logger.warning(f"Reclaimed {count} stale {job_type.value} job(s)")
        return count


def _claim_order(job_type: JobType):
    if job_type == JobType.ENRICHMENT:
        return lambda job: (-job.priority, job.created_at, str(job.id))
    return lambda job: (job.created_at, str(job.id))
