"""Finds resolved wines with missing metadata and queues them for enrichment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from vinho_pipeline.core.schema import EnrichmentJob, QueueItem
from vinho_pipeline.db.repositories import EnrichmentJobRepository, QueueRepository
from vinho_pipeline.db.repositories_catalog import (
    VarietalRepository,
    VintageRepository,
    WineRepository,
)
from vinho_pipeline.queue.idempotency import enrichment_key

logger = logging.getLogger(__name__)

# Bulk backfills run behind anything queued with a higher priority.
BULK_PRIORITY = 0


@dataclass
class ScheduleResult:
    """Counts from one scheduling pass."""

    queued: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"queued": self.queued, "skipped": self.skipped, "errors": self.errors[:5]}


class EnrichmentScheduler:
    """Queues enrichment for wines that completed scans left incomplete."""

    def __init__(self, session: Session, priority: int = BULK_PRIORITY) -> None:
        self.session = session
        self.priority = priority
        self.queue = QueueRepository(session)
        self.jobs = EnrichmentJobRepository(session)
        self.wines = WineRepository(session)
        self.vintages = VintageRepository(session)
        self.varietals = VarietalRepository(session)

    def scan_and_enqueue(self, limit: int = 100, user_id: str | None = None) -> ScheduleResult:
        """
        Walk recent completed scans and queue enrichment where needed.

        A scan's wine needs enrichment when any of wine_type, color, style or
        food_pairings is unset, or when its vintage has no varietals. Scans
        whose key already has a pending or processing job are skipped.

        Args:
            limit: Number of recent completed scans to inspect
            user_id: Restrict to one user's scans

        Returns:
            ScheduleResult with queued and skipped counts
        """
        result = ScheduleResult()
        items = self.queue.list_completed(limit=limit, user_id=user_id)

        for item in items:
            try:
                if self._enqueue_for_scan(item):
                    self.session.commit()
                    result.queued += 1
                else:
                    result.skipped += 1
            except Exception as e:
                self.session.rollback()
                logger.exception(f"Could not schedule enrichment for scan {item.id}")
                result.errors.append(f"Scan {item.id}: {e}")

        logger.info(f"Enrichment scheduling: {result.queued} queued, {result.skipped} skipped")
        return result

    def _enqueue_for_scan(self, item: QueueItem) -> bool:
        data = item.processed_data
        if data is None:
            return False

        wine = self.wines.get_by_id(data.wine_id)
        vintage = self.vintages.get_by_id(data.vintage_id)
        if wine is None or vintage is None:
            logger.debug(f"Scan {item.id} points at a missing wine or vintage")
            return False

        needs_varietals = not self.varietals.names_for_vintage(vintage.id)
        if not wine.missing_metadata and not needs_varietals:
            return False

        job, created = self.jobs.enqueue(
            EnrichmentJob(
                vintage_id=vintage.id,
                wine_id=wine.id,
                user_id=item.user_id,
                producer_name=data.producer_name,
                wine_name=wine.name,
                year=vintage.year,
                region=data.region,
                country=data.country,
                priority=self.priority,
                idempotency_key=enrichment_key(
                    item.user_id, data.producer_name, wine.name, vintage.year
                ),
            )
        )
        if created:
            logger.info(
                f"Queued enrichment {job.id} for {data.producer_name} / {wine.name} "
                f"(missing: {', '.join(wine.missing_metadata) or 'varietals'})"
            )
        return created
