"""Batch bookkeeping shared by the queue workers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from vinho_pipeline.core.errors import PipelineError, ResourceVanishedError
from vinho_pipeline.queue.retry import RetryOutcome, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Counts for one claimed batch."""

    processed: int = 0
    failed: int = 0
    retried: int = 0
    reused: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.failed + self.retried + self.skipped

    def record(self, outcome: RetryOutcome) -> None:
        """Count a failure outcome."""
        if outcome.skipped:
            self.skipped += 1
        elif outcome.will_retry:
            self.retried += 1
        else:
            self.failed += 1
        self.errors.append(outcome.error_message)

    def to_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "retried": self.retried,
            "reused": self.reused,
            "skipped": self.skipped,
            "total": self.total,
        }


def record_failure(
    session: Session,
    repository: Any,
    job: Any,
    error: BaseException,
    policy: RetryPolicy,
    job_label: str,
) -> RetryOutcome | None:
    """
    Roll back a failed attempt and persist the retry decision.

    Returns:
        The outcome, or None if the job row itself has vanished.
    """
    session.rollback()
    if not isinstance(error, PipelineError):
        logger.exception(f"{job_label} raised an unexpected error", exc_info=error)

    outcome = policy.apply(job.retry_count, error)
    try:
        repository.apply_outcome(job.id, outcome)
        session.commit()
    except ResourceVanishedError:
        session.rollback()
        logger.warning(f"{job_label} row vanished before its failure could be recorded")
        return None

    policy.log_outcome(job_label, outcome)
    return outcome
