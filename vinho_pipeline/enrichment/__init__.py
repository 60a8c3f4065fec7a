"""Metadata enrichment for resolved wines."""

from vinho_pipeline.enrichment.scheduler import EnrichmentScheduler, ScheduleResult
from vinho_pipeline.enrichment.worker import EnrichmentWorker

__all__ = ["EnrichmentScheduler", "EnrichmentWorker", "ScheduleResult"]
