"""Repository classes for the pipeline work queues."""

import json
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from vinho_pipeline.core.enums import EmbeddingJobType, JobStatus
from vinho_pipeline.core.errors import ResourceVanishedError
from vinho_pipeline.core.schema import (
    EmbeddingJob,
    EnrichmentData,
    EnrichmentJob,
    ProcessedData,
    QueueItem,
)
from vinho_pipeline.db.models import (
    EmbeddingJobDB,
    EnrichmentJobDB,
    QueueItemDB,
    in_flight_where,
)
from vinho_pipeline.db.upsert import insert_or_ignore
from vinho_pipeline.queue.retry import RetryOutcome


IN_FLIGHT_STATUSES = [status.value for status in JobStatus if status.is_in_flight]


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class _JobRepository:
    """Operations shared by every queue table."""

    model: type[QueueItemDB] | type[EnrichmentJobDB] | type[EmbeddingJobDB]
    resource_name: str

    def __init__(self, session: Session):
        self.session = session

    def _get_db(self, job_id: UUID | str):
        stmt = select(self.model).where(self.model.id == str(job_id))
        return self.session.execute(stmt).scalar_one_or_none()

    def _require_db(self, job_id: UUID | str):
        db_item = self._get_db(job_id)
        if db_item is None:
            raise ResourceVanishedError(self.resource_name, str(job_id))
        return db_item

    def get_by_id(self, job_id: UUID | str):
        """Get a job by ID."""
        db_item = self._get_db(job_id)
        return self._to_domain(db_item) if db_item else None

    def get_many(self, job_ids: list[str]) -> list:
        """
        Load jobs by ID, refreshing anything already in the identity map.

        Results follow the order of ``job_ids``.
        """
        if not job_ids:
            return []
        stmt = (
            select(self.model)
            .where(self.model.id.in_(job_ids))
            .execution_options(populate_existing=True)
        )
        by_id = {row.id: row for row in self.session.execute(stmt).scalars().all()}
        return [self._to_domain(by_id[job_id]) for job_id in job_ids if job_id in by_id]

    def apply_outcome(self, job_id: UUID | str, outcome: RetryOutcome) -> None:
        """
        Persist a retry-policy decision for a failed attempt.

        Raises:
            ResourceVanishedError: If the job row no longer exists
        """
        db_item = self._require_db(job_id)
        db_item.status = outcome.status.value
        db_item.retry_count = outcome.retry_count
        db_item.error_message = outcome.error_message
        if outcome.status.is_terminal:
            db_item.processed_at = _utc_now()
        else:
            db_item.claimed_at = None
        self.session.flush()

    def count_by_status(self) -> dict[str, int]:
        """Count jobs in each status; every status is present in the result."""
        stmt = select(self.model.status, func.count()).group_by(self.model.status)
        counts = {status.value: 0 for status in JobStatus}
        for status, count in self.session.execute(stmt).all():
            counts[status] = count
        return counts

    def _to_domain(self, db_item):
        raise NotImplementedError


class QueueRepository(_JobRepository):
    """Repository for wine-label scan rows."""

    model = QueueItemDB
    resource_name = "wine_queue row"

    def enqueue(
        self,
        user_id: str,
        image_url: str,
        idempotency_key: str,
        ocr_text: str | None = None,
        scan_id: str | None = None,
    ) -> tuple[QueueItem, bool]:
        """
        Insert a pending scan unless the same user already has one in flight.

        Returns:
            Tuple of (row, created). ``created`` is False when an existing
            pending or processing row with the same key was returned.
        """
        for _ in range(2):
            new_id = insert_or_ignore(
                self.session,
                QueueItemDB,
                values={
                    "id": str(uuid4()),
                    "user_id": user_id,
                    "image_url": image_url,
                    "ocr_text": ocr_text,
                    "scan_id": scan_id,
                    "status": JobStatus.PENDING.value,
                    "retry_count": 0,
                    "idempotency_key": idempotency_key,
                    "created_at": _utc_now(),
                },
                conflict_columns=["user_id", "idempotency_key"],
                conflict_where=in_flight_where(),
            )
            if new_id is not None:
                return self.get_by_id(new_id), True

            existing = self.get_in_flight_by_key(user_id, idempotency_key)
            if existing is not None:
                return existing, False
            # The conflicting row finished between the insert and the lookup.

        raise RuntimeError(f"Could not enqueue scan for key {idempotency_key}")

    def get_in_flight_by_key(self, user_id: str, idempotency_key: str) -> QueueItem | None:
        """Get the pending or processing row for a user's key, if any."""
        stmt = select(QueueItemDB).where(
            QueueItemDB.user_id == user_id,
            QueueItemDB.idempotency_key == idempotency_key,
            QueueItemDB.status.in_(IN_FLIGHT_STATUSES),
        )
        db_item = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_item) if db_item else None

    def find_completed_by_key(
        self, idempotency_key: str, exclude_id: UUID | str | None = None
    ) -> QueueItem | None:
        """Find the most recent completed row with processed data for a key."""
        stmt = (
            select(QueueItemDB)
            .where(
                QueueItemDB.idempotency_key == idempotency_key,
                QueueItemDB.status == JobStatus.COMPLETED.value,
                QueueItemDB.processed_data_json.is_not(None),
            )
            .order_by(QueueItemDB.processed_at.desc())
        )
        if exclude_id is not None:
            stmt = stmt.where(QueueItemDB.id != str(exclude_id))
        db_item = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_item) if db_item else None

    def mark_completed(self, item_id: UUID | str, processed_data: ProcessedData) -> QueueItem:
        """
        Mark a scan completed with its resolution payload.

        Raises:
            ResourceVanishedError: If the row no longer exists
        """
        db_item = self._require_db(item_id)
        db_item.status = JobStatus.COMPLETED.value
        db_item.processed_data_json = processed_data.model_dump_json()
        db_item.error_message = None
        db_item.processed_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def list_completed(self, limit: int = 100, user_id: str | None = None) -> list[QueueItem]:
        """List completed scans with processed data, newest first, optionally for one user."""
        stmt = select(QueueItemDB).where(
            QueueItemDB.status == JobStatus.COMPLETED.value,
            QueueItemDB.processed_data_json.is_not(None),
        )
        if user_id is not None:
            stmt = stmt.where(QueueItemDB.user_id == user_id)
        stmt = stmt.order_by(QueueItemDB.processed_at.desc()).limit(limit)
        result = self.session.execute(stmt).scalars().all()
        return [self._to_domain(item) for item in result]

    def _to_domain(self, db_item: QueueItemDB) -> QueueItem:
        """Convert DB model to domain model."""
        processed = (
            ProcessedData.model_validate_json(db_item.processed_data_json)
            if db_item.processed_data_json
            else None
        )
        return QueueItem(
            id=UUID(db_item.id),
            user_id=db_item.user_id,
            image_url=db_item.image_url,
            ocr_text=db_item.ocr_text,
            scan_id=db_item.scan_id,
            status=JobStatus(db_item.status),
            retry_count=db_item.retry_count,
            processed_data=processed,
            error_message=db_item.error_message,
            idempotency_key=db_item.idempotency_key,
            created_at=db_item.created_at,
            claimed_at=db_item.claimed_at,
            processed_at=db_item.processed_at,
        )


class EnrichmentJobRepository(_JobRepository):
    """Repository for enrichment jobs."""

    model = EnrichmentJobDB
    resource_name = "enrichment job"

    def enqueue(self, job: EnrichmentJob) -> tuple[EnrichmentJob, bool]:
        """
        Insert a pending enrichment job unless its key is already in flight.

        Returns:
            Tuple of (job, created)
        """
        new_id = insert_or_ignore(
            self.session,
            EnrichmentJobDB,
            values={
                "id": str(job.id),
                "vintage_id": str(job.vintage_id),
                "wine_id": str(job.wine_id),
                "user_id": job.user_id,
                "producer_name": job.producer_name,
                "wine_name": job.wine_name,
                "year": job.year,
                "region": job.region,
                "country": job.country,
                "status": JobStatus.PENDING.value,
                "priority": job.priority,
                "retry_count": 0,
                "idempotency_key": job.idempotency_key,
                "created_at": job.created_at,
            },
            conflict_columns=["idempotency_key"],
            conflict_where=in_flight_where(),
        )
        if new_id is not None:
            return self.get_by_id(new_id), True

        existing = self.get_in_flight_by_key(job.idempotency_key)
        if existing is None:
            raise RuntimeError(f"Could not enqueue enrichment for key {job.idempotency_key}")
        return existing, False

    def get_in_flight_by_key(self, idempotency_key: str) -> EnrichmentJob | None:
        """Get the pending or processing job for a key, if any."""
        stmt = select(EnrichmentJobDB).where(
            EnrichmentJobDB.idempotency_key == idempotency_key,
            EnrichmentJobDB.status.in_(IN_FLIGHT_STATUSES),
        )
        db_item = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_item) if db_item else None

    def mark_completed(self, job_id: UUID | str, data: EnrichmentData) -> EnrichmentJob:
        """Mark a job completed and keep the enrichment payload on it."""
        db_item = self._require_db(job_id)
        db_item.status = JobStatus.COMPLETED.value
        db_item.enrichment_data_json = data.model_dump_json()
        db_item.error_message = None
        db_item.processed_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def _to_domain(self, db_item: EnrichmentJobDB) -> EnrichmentJob:
        """Convert DB model to domain model."""
        data = (
            EnrichmentData.model_validate_json(db_item.enrichment_data_json)
            if db_item.enrichment_data_json
            else None
        )
        return EnrichmentJob(
            id=UUID(db_item.id),
            vintage_id=UUID(db_item.vintage_id),
            wine_id=UUID(db_item.wine_id),
            user_id=db_item.user_id,
            producer_name=db_item.producer_name,
            wine_name=db_item.wine_name,
            year=db_item.year,
            region=db_item.region,
            country=db_item.country,
            status=JobStatus(db_item.status),
            priority=db_item.priority,
            retry_count=db_item.retry_count,
            idempotency_key=db_item.idempotency_key,
            enrichment_data=data,
            error_message=db_item.error_message,
            created_at=db_item.created_at,
            claimed_at=db_item.claimed_at,
            processed_at=db_item.processed_at,
        )


class EmbeddingJobRepository(_JobRepository):
    """Repository for identity and visual embedding jobs."""

    model = EmbeddingJobDB
    resource_name = "embedding job"

    def enqueue(self, job: EmbeddingJob) -> tuple[EmbeddingJob, bool]:
        """
        Insert a pending embedding job unless its key is already in flight.

        Returns:
            Tuple of (job, created)
        """
        new_id = insert_or_ignore(
            self.session,
            EmbeddingJobDB,
            values={
                "id": str(job.id),
                "job_type": job.job_type.value,
                "wine_id": str(job.wine_id),
                "vintage_id": str(job.vintage_id) if job.vintage_id else None,
                "scan_id": job.scan_id,
                "input_text": job.input_text,
                "input_image_url": job.input_image_url,
                "status": JobStatus.PENDING.value,
                "retry_count": 0,
                "idempotency_key": job.idempotency_key,
                "created_at": job.created_at,
            },
            conflict_columns=["idempotency_key"],
            conflict_where=in_flight_where(),
        )
        if new_id is not None:
            return self.get_by_id(new_id), True

        existing = self.get_in_flight_by_key(job.idempotency_key)
        if existing is None:
            raise RuntimeError(f"Could not enqueue embedding job for key {job.idempotency_key}")
        return existing, False

    def get_in_flight_by_key(self, idempotency_key: str) -> EmbeddingJob | None:
        """Get the pending or processing job for a key, if any."""
        stmt = select(EmbeddingJobDB).where(
            EmbeddingJobDB.idempotency_key == idempotency_key,
            EmbeddingJobDB.status.in_(IN_FLIGHT_STATUSES),
        )
        db_item = self.session.execute(stmt).scalars().first()
        return self._to_domain(db_item) if db_item else None

    def mark_completed(self, job_id: UUID | str, result: dict) -> EmbeddingJob:
        """Mark a job completed with a small JSON result summary."""
        db_item = self._require_db(job_id)
        db_item.status = JobStatus.COMPLETED.value
        db_item.result_json = json.dumps(result)
        db_item.error_message = None
        db_item.processed_at = _utc_now()
        self.session.flush()
        return self._to_domain(db_item)

    def count_by_type_and_status(self) -> dict[str, dict[str, int]]:
        """Count jobs per embedding type and status."""
        stmt = select(EmbeddingJobDB.job_type, EmbeddingJobDB.status, func.count()).group_by(
            EmbeddingJobDB.job_type, EmbeddingJobDB.status
        )
        counts = {
            job_type.value: {status.value: 0 for status in JobStatus}
            for job_type in EmbeddingJobType
        }
        for job_type, status, count in self.session.execute(stmt).all():
            counts.setdefault(job_type, {s.value: 0 for s in JobStatus})[status] = count
        return counts

    def _to_domain(self, db_item: EmbeddingJobDB) -> EmbeddingJob:
        """Convert DB model to domain model."""
        return EmbeddingJob(
            id=UUID(db_item.id),
            job_type=EmbeddingJobType(db_item.job_type),
            wine_id=UUID(db_item.wine_id),
            vintage_id=UUID(db_item.vintage_id) if db_item.vintage_id else None,
            scan_id=db_item.scan_id,
            input_text=db_item.input_text,
            input_image_url=db_item.input_image_url,
            status=JobStatus(db_item.status),
            retry_count=db_item.retry_count,
            idempotency_key=db_item.idempotency_key,
            result=json.loads(db_item.result_json) if db_item.result_json else None,
            error_message=db_item.error_message,
            created_at=db_item.created_at,
            claimed_at=db_item.claimed_at,
            processed_at=db_item.processed_at,
        )
