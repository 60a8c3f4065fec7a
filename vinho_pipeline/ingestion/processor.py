"""
Wine Queue Processor
====================

Turns pending wine-label scans into resolved catalog entries:

1. Claim a batch of pending scans
2. Reuse the result of an earlier completed scan with the same key, or
3. Extract the label and fill what it did not show from the enrichment model
4. Resolve it to producer / wine / vintage, and queue identity and visual
   embedding jobs for the result
5. Mark the scan completed, or apply the retry policy on failure
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from vinho_pipeline.core.enums import EmbeddingJobType, JobType
from vinho_pipeline.core.errors import ValidationError
from vinho_pipeline.core.schema import EmbeddingJob, ExtractedLabel, ProcessedData, QueueItem
from vinho_pipeline.db.repositories import EmbeddingJobRepository, QueueRepository
from vinho_pipeline.ingestion.resolver import EntityResolver, ResolutionResult
from vinho_pipeline.queue.batch import BatchResult, record_failure
from vinho_pipeline.queue.claimer import JobClaimer
from vinho_pipeline.queue.idempotency import embedding_key, scan_idempotency_key
from vinho_pipeline.queue.retry import RetryPolicy
from vinho_pipeline.services.ai.extraction import LabelExtractor
from vinho_pipeline.services.ai.prompts import PROMPT_VERSION

logger = logging.getLogger(__name__)


class WineQueueProcessor:
    """Processes the wine-scan queue."""

    def __init__(
        self,
        session: Session,
        extractor: LabelExtractor,
        resolver: EntityResolver,
        claimer: JobClaimer | None = None,
        retry_policy: RetryPolicy | None = None,
        embedding_version: int = 1,
    ) -> None:
        """
        Initialize the processor.

        Args:
            session: SQLAlchemy database session
            extractor: Label extractor
            resolver: Entity resolver
            claimer: Job claimer (defaults to one with default limits)
            retry_policy: Retry policy (defaults to 3 retries)
            embedding_version: Version tag for queued identity embeddings
        """
        self.session = session
        self.extractor = extractor
        self.resolver = resolver
        self.claimer = claimer or JobClaimer(session)
        self.retry_policy = retry_policy or RetryPolicy()
        self.embedding_version = embedding_version
        self.queue = QueueRepository(session)
        self.embedding_jobs = EmbeddingJobRepository(session)

    def enqueue_scan(
        self,
        user_id: str,
        image_url: str,
        ocr_text: str | None = None,
        scan_id: str | None = None,
    ) -> tuple[QueueItem, bool]:
        """
        Queue a label photo for processing.

        While a scan with the same image and OCR text is pending or
        processing for this user, that row is returned instead of a new one.

        Returns:
            Tuple of (queue row, created)

        Raises:
            ValidationError: If user_id or image_url is blank
        """
        return enqueue_scan(self.session, user_id, image_url, ocr_text, scan_id)

    def run_batch(self, limit: int | None = None) -> BatchResult:
        """
        Claim and process one batch of pending scans.

        Args:
            limit: Requested batch size (clamped to the configured maximum)

        Returns:
            BatchResult with processed / failed / retried / reused / skipped counts
        """
        result = BatchResult()
        items: list[QueueItem] = self.claimer.claim(JobType.WINE_SCAN, limit)

        for item in items:
            label = f"Scan {item.id}"
            try:
                data = self.process_job(item)
                result.processed += 1
                if data.reused:
                    result.reused += 1
            except Exception as e:
                outcome = record_failure(
                    self.session, self.queue, item, e, self.retry_policy, label
                )
                if outcome is not None:
                    result.record(outcome)

        if items:
            logger.info(f"Wine scan batch: {result.to_dict()}")
        return result

    def process_job(self, item: QueueItem) -> ProcessedData:
        """
        Process one claimed scan and commit the result.

        Returns:
            The ProcessedData stored on the row
        """
        previous = self.queue.find_completed_by_key(item.idempotency_key, exclude_id=item.id)
        if previous is not None and previous.processed_data is not None:
            data = previous.processed_data.model_copy(update={"reused": True})
            self.queue.mark_completed(item.id, data)
            self.session.commit()
            logger.info(f"Scan {item.id} reused result of scan {previous.id}")
            return data

        extracted = self.extractor.extract(item.image_url, ocr_text=item.ocr_text)
        extracted, enriched_fields = self.extractor.complete(extracted)
        resolution = self.resolver.resolve(extracted)
        self._queue_embeddings(item, resolution)

        data = self._processed_data(extracted, resolution)
        data.enriched_fields = enriched_fields
        self.queue.mark_completed(item.id, data)
        self.session.commit()

        logger.info(
            f"Scan {item.id} resolved to {resolution.producer_name} / "
            f"{resolution.wine_name} ({extracted.year or 'NV'})"
        )
        return data

    def _queue_embeddings(self, item: QueueItem, resolution: ResolutionResult) -> None:
        """Queue the identity embedding for the wine and the visual one for the photo."""
        wine_id = str(resolution.wine_id)

        _, created = self.embedding_jobs.enqueue(
            EmbeddingJob(
                job_type=EmbeddingJobType.IDENTITY,
                wine_id=resolution.wine_id,
                vintage_id=resolution.vintage_id,
                input_text=resolution.identity_text,
                idempotency_key=embedding_key(
                    EmbeddingJobType.IDENTITY, wine_id, version=self.embedding_version
                ),
            )
        )
        if not created:
            logger.debug(f"Identity embedding for wine {wine_id} already queued")

        self.embedding_jobs.enqueue(
            EmbeddingJob(
                job_type=EmbeddingJobType.VISUAL,
                wine_id=resolution.wine_id,
                vintage_id=resolution.vintage_id,
                scan_id=item.scan_id,
                input_image_url=item.image_url,
                idempotency_key=embedding_key(
                    EmbeddingJobType.VISUAL, wine_id, scan_id=item.scan_id
                ),
            )
        )

    @staticmethod
    def _processed_data(label: ExtractedLabel, resolution: ResolutionResult) -> ProcessedData:
        return ProcessedData(
            producer_id=resolution.producer_id,
            wine_id=resolution.wine_id,
            vintage_id=resolution.vintage_id,
            region_id=resolution.region_id,
            producer_name=resolution.producer_name,
            wine_name=resolution.wine_name,
            year=label.year,
            region=resolution.region,
            country=resolution.country,
            varietals=resolution.varietals,
            abv_percent=label.abv_percent,
            confidence=label.confidence,
            identity_decision=resolution.identity_decision,
            prompt_version=PROMPT_VERSION,
        )


def enqueue_scan(
    session: Session,
    user_id: str,
    image_url: str,
    ocr_text: str | None = None,
    scan_id: str | None = None,
) -> tuple[QueueItem, bool]:
    """
    Queue a label photo and commit.

    Needs no provider access, so the HTTP surface and CLI can enqueue
    without AI credentials.

    Returns:
        Tuple of (queue row, created)

    Raises:
        ValidationError: If user_id or image_url is blank
    """
    if not user_id or not user_id.strip():
        raise ValidationError("user_id is required")
    if not image_url or not image_url.strip():
        raise ValidationError("image_url is required")

    key = scan_idempotency_key(image_url, ocr_text)
    item, created = QueueRepository(session).enqueue(
        user_id=user_id,
        image_url=image_url,
        idempotency_key=key,
        ocr_text=ocr_text,
        scan_id=scan_id,
    )
    session.commit()

    if created:
        logger.info(f"Queued scan {item.id} for user {user_id}")
    else:
        logger.info(f"Scan already in flight for user {user_id}: {item.id}")
    return item, created
